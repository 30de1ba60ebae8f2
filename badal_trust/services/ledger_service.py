"""
Ledger Service - append-only ritual proof events per booking

Steps are recorded strictly in sequence: the next event for a booking
must carry step_order = highest recorded order + 1. Re-sending an order or
step name that is already recorded is DuplicateStep; skipping ahead or
going backwards past the sequence is OutOfOrder. The unique constraints on
(booking_id, step_order) and (booking_id, ritual_step) enforce the same
rule for concurrent appends.

After append the only permitted change is the human verification record.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from badal_trust.config import PolicyConfig, get_policy
from badal_trust.db.models import MediaType, RitualEvent
from badal_trust.services.authorization import Caller, authorize
from badal_trust.services.errors import (
    DuplicateStep, InvalidTransition, NotFound, OutOfOrder, Unauthorized, unit_of_work
)
from badal_trust.services.fraud_signal_service import FraudSignalService, fraud_signal_service
from badal_trust.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

EVIDENCE_FIELDS = (
    "media_type",
    "media_ref",
    "media_hash",
    "geo_lat",
    "geo_lng",
    "geo_accuracy",
    "device_fingerprint",
    "device_change_reason",
    "exif_data",
    "dua_transcript",
    "dua_audio_ref",
    "beneficiary_name_mentioned",
)


class LedgerService:
    """Service for recording and verifying ritual proof events"""

    def __init__(
        self,
        fraud: FraudSignalService = fraud_signal_service,
        policy: Optional[PolicyConfig] = None
    ):
        self.fraud = fraud
        self._policy = policy

    @property
    def policy(self) -> PolicyConfig:
        return self._policy or get_policy()

    def list_events(self, db: Session, booking_id: str) -> List[RitualEvent]:
        return db.query(RitualEvent).filter(
            RitualEvent.booking_id == booking_id
        ).order_by(RitualEvent.step_order.asc()).all()

    def append_event(
        self,
        db: Session,
        caller: Caller,
        booking_id: str,
        beneficiary_id: str,
        ritual_step: str,
        step_order: int,
        evidence: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        service_type: Optional[str] = None
    ) -> RitualEvent:
        """Append one ritual step and run the fraud rules on it."""
        provider_id = caller.id if caller else None
        authorize(caller, "append_event", provider_id)

        evidence = dict(evidence or {})
        unknown = set(evidence) - set(EVIDENCE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown evidence fields: {', '.join(sorted(unknown))}")
        if evidence.get("media_type") is not None:
            evidence["media_type"] = MediaType(evidence["media_type"]).value
        evidence["beneficiary_name_mentioned"] = bool(evidence.get("beneficiary_name_mentioned"))

        if step_order < 1:
            raise OutOfOrder("Step order starts at 1")

        try:
            with unit_of_work(db):
                prior = self.list_events(db, booking_id)
                if prior and prior[0].provider_id != provider_id:
                    raise Unauthorized("Booking is being performed by another provider")
                if prior and prior[0].beneficiary_id != beneficiary_id:
                    raise InvalidTransition("Beneficiary does not match earlier steps of this booking")

                highest = prior[-1].step_order if prior else 0
                if step_order <= highest:
                    raise DuplicateStep(f"Step {step_order} is already recorded for this booking")
                if any(p.ritual_step == ritual_step for p in prior):
                    raise DuplicateStep(f"Step '{ritual_step}' is already recorded for this booking")
                if step_order != highest + 1:
                    raise OutOfOrder(
                        f"Expected step {highest + 1}, received step {step_order}"
                    )
                self._check_catalog(service_type, ritual_step, step_order)

                event = RitualEvent(
                    booking_id=booking_id,
                    provider_id=provider_id,
                    beneficiary_id=beneficiary_id,
                    ritual_step=ritual_step,
                    step_order=step_order,
                    timestamp=to_naive_utc(timestamp) or utcnow(),
                    verified=False,
                    **evidence
                )

                hash_matches = []
                if event.media_hash:
                    self._lock_media_hash(db, event.media_hash)
                    hash_matches = db.query(RitualEvent).filter(
                        RitualEvent.media_hash == event.media_hash
                    ).all()

                assessment = self.fraud.evaluate(event, prior, hash_matches)
                event.is_flagged = assessment.is_flagged
                event.flag_reason = assessment.flag_reason
                event.fraud_signals = [
                    {"signal": s.value, "details": assessment.details.get(s.value, {})}
                    for s in assessment.signals
                ]

                db.add(event)
                db.flush()
        except IntegrityError as e:
            raise DuplicateStep(
                f"Step {step_order} ('{ritual_step}') was recorded concurrently for this booking"
            ) from e

        db.refresh(event)
        if event.is_flagged:
            logger.warning(
                f"Ritual event {event.id} for booking {booking_id} flagged: {event.flag_reason}"
            )
        else:
            logger.info(f"Ritual event {event.id} recorded for booking {booking_id} step {step_order}")
        return event

    def _lock_media_hash(self, db: Session, media_hash: str) -> None:
        """
        Hold appends carrying the same media hash until this transaction ends,
        so the reuse lookup sees every committed recording. SQLite already
        serializes writers through BEGIN IMMEDIATE.
        """
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:media_hash))"),
                {"media_hash": media_hash}
            )

    def _check_catalog(self, service_type: Optional[str], ritual_step: str, step_order: int) -> None:
        if not service_type:
            return
        catalog = self.policy.ritual_step_catalog.get(service_type)
        if not catalog:
            return
        if step_order > len(catalog):
            raise OutOfOrder(f"{service_type} has only {len(catalog)} steps")
        expected = catalog[step_order - 1]
        if expected.step != ritual_step:
            raise OutOfOrder(
                f"Step {step_order} of {service_type} is '{expected.step}', not '{ritual_step}'"
            )

    def mark_verified(
        self,
        db: Session,
        caller: Caller,
        event_id: int,
        notes: Optional[str] = None
    ) -> RitualEvent:
        """
        Record a reviewer's verification of an event. Flags are left as
        raised; the decision is recorded alongside them.
        """
        authorize(caller, "verify_event")
        with unit_of_work(db):
            event = db.query(RitualEvent).filter(RitualEvent.id == event_id).with_for_update().first()
            if not event:
                raise NotFound(f"Ritual event {event_id} not found")
            if not event.verified:
                event.verified = True
                event.verified_by = caller.id
                event.verified_at = utcnow()
                event.verification_notes = notes.strip() if notes and notes.strip() else None

        db.refresh(event)
        logger.info(
            f"Ritual event {event_id} verified by {caller.id}"
            + (f" (flagged: {event.flag_reason})" if event.is_flagged else "")
        )
        return event

    def list_flagged(
        self,
        db: Session,
        caller: Caller,
        include_verified: bool = False,
        limit: int = 100
    ) -> List[RitualEvent]:
        authorize(caller, "review_queue")
        query = db.query(RitualEvent).filter(RitualEvent.is_flagged == True)  # noqa: E712
        if not include_verified:
            query = query.filter(RitualEvent.verified == False)  # noqa: E712
        return query.order_by(RitualEvent.created_at.asc(), RitualEvent.id.asc()).limit(limit).all()

    def ritual_progress(
        self,
        db: Session,
        booking_id: str,
        service_type: str,
        caller: Optional[Caller] = None
    ) -> Dict[str, Any]:
        """Recorded steps against the service's step catalog"""
        events = self.list_events(db, booking_id)
        if caller is not None and events:
            authorize(caller, "view", events[0].provider_id)
        catalog = self.policy.ritual_step_catalog.get(service_type, [])
        recorded = [e.ritual_step for e in events]
        next_step = next((s for s in catalog if s.step not in recorded), None)
        return {
            "booking_id": booking_id,
            "service_type": service_type,
            "recorded_steps": recorded,
            "total_steps": len(catalog),
            "next_step": next_step.model_dump() if next_step else None,
            "is_complete": bool(catalog) and next_step is None,
            "flagged_steps": [e.ritual_step for e in events if e.is_flagged],
            "unverified_steps": [e.ritual_step for e in events if not e.verified],
        }


ledger_service = LedgerService()
