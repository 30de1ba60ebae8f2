"""
Certificate Service - completion certificates for verified proxy rituals

Issuance is exactly-once per booking. The booking id is the idempotency
key: a repeated or concurrent call returns the certificate already stored
(the unique constraint on booking_id settles races, and the losing call is
retried and finds the winner's row). The certificate insert, the trust
update and the slot release commit together, so a retried call can never
apply the side effects twice.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from badal_trust.config import PolicyConfig, get_policy
from badal_trust.db.database import storage_retry, transaction
from badal_trust.db.models import CertificateSequence, CompletionCertificate, RitualEvent
from badal_trust.services.capacity_service import CapacityService, capacity_service
from badal_trust.services.errors import (
    BookingNotCompleted, InvalidTransition, NotAllStepsVerified, NotFound
)
from badal_trust.services.ledger_service import LedgerService, ledger_service
from badal_trust.services.trust_score_service import TrustScoreService, trust_score_service
from badal_trust.utils import utcnow

logger = logging.getLogger(__name__)

BOOKING_COMPLETED = "completed"


@dataclass
class BookingCompletion:
    """Booking context supplied by the booking lifecycle service"""
    booking_id: str
    pilgrim_id: str
    booking_status: str
    beneficiary_name: str
    service_type: str
    completed_date: date
    beneficiary_name_ar: Optional[str] = None
    hijri_date: Optional[str] = None
    location: Optional[str] = None


class CertificateService:
    """Service for issuing completion certificates"""

    def __init__(
        self,
        ledger: LedgerService = ledger_service,
        trust: TrustScoreService = trust_score_service,
        capacity: CapacityService = capacity_service,
        policy: Optional[PolicyConfig] = None
    ):
        self.ledger = ledger
        self.trust = trust
        self.capacity = capacity
        self._policy = policy

    @property
    def policy(self) -> PolicyConfig:
        return self._policy or get_policy()

    def get_by_booking(self, db: Session, booking_id: str) -> Optional[CompletionCertificate]:
        return db.query(CompletionCertificate).filter(
            CompletionCertificate.booking_id == booking_id
        ).first()

    def get_by_booking_or_404(self, db: Session, booking_id: str) -> CompletionCertificate:
        cert = self.get_by_booking(db, booking_id)
        if not cert:
            raise NotFound(f"No certificate issued for booking {booking_id}")
        return cert

    def certificate_blockers(
        self,
        events: Sequence[RitualEvent],
        service_type: str
    ) -> List[str]:
        """Plain-language reasons a booking cannot yet receive a certificate"""
        if not events:
            return ["No ritual steps have been recorded"]

        blockers = []
        for e in events:
            if e.verified:
                continue
            if e.is_flagged:
                blockers.append(
                    f"Step {e.step_order} '{e.ritual_step}' is flagged ({e.flag_reason}) and awaits review"
                )
            elif self.policy.require_verification_of_unflagged_events:
                blockers.append(f"Step {e.step_order} '{e.ritual_step}' awaits verification")

        recorded = {e.ritual_step for e in events}
        for step in self.policy.required_steps_by_service.get(service_type, []):
            if step not in recorded:
                blockers.append(f"Required step '{step}' has not been recorded")
        return blockers

    def _next_certificate_number(self, db: Session, year: int) -> str:
        scope = f"{self.policy.certificate_number_prefix}-{year}"
        result = db.execute(
            update(CertificateSequence)
            .where(CertificateSequence.scope == scope)
            .values(last_value=CertificateSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.add(CertificateSequence(scope=scope, last_value=1))
            db.flush()
            value = 1
        else:
            value = db.query(CertificateSequence.last_value).filter(
                CertificateSequence.scope == scope
            ).scalar()
        return f"{scope}-{value:06d}"

    @staticmethod
    def _new_verification_code() -> str:
        # Independent of booking id and certificate number; 256 bits of entropy
        return secrets.token_urlsafe(32)

    @storage_retry
    def issue_certificate(
        self,
        db: Session,
        completion: BookingCompletion
    ) -> Tuple[CompletionCertificate, bool]:
        """
        Issue the certificate for a completed booking.

        Returns (certificate, created). created is False when the booking
        already had a certificate, which is returned unchanged.
        """
        booking_id = completion.booking_id

        with transaction(db):
            existing = self.get_by_booking(db, booking_id)
            if existing:
                return existing, False

            if completion.booking_status != BOOKING_COMPLETED:
                raise BookingNotCompleted(
                    f"Booking {booking_id} is {completion.booking_status}, not completed"
                )

            events = self.ledger.list_events(db, booking_id)
            if any(e.provider_id != completion.pilgrim_id for e in events):
                raise InvalidTransition(
                    "Ritual steps for this booking were recorded by a different provider"
                )
            blockers = self.certificate_blockers(events, completion.service_type)
            if blockers:
                raise NotAllStepsVerified("; ".join(blockers))

            now = utcnow()
            certificate = CompletionCertificate(
                booking_id=booking_id,
                pilgrim_id=completion.pilgrim_id,
                certificate_number=self._next_certificate_number(db, now.year),
                qr_verification_code=self._new_verification_code(),
                beneficiary_name=completion.beneficiary_name,
                beneficiary_name_ar=completion.beneficiary_name_ar,
                service_type=completion.service_type,
                completed_date=completion.completed_date,
                hijri_date=completion.hijri_date,
                location=completion.location,
                all_steps_verified=all(e.verified for e in events),
                issued_at=now,
            )
            db.add(certificate)
            db.flush()

            self.trust.apply_ritual_completed_db(db, completion.pilgrim_id)
            released = self.capacity.release_booking_slots(
                db, completion.pilgrim_id, booking_id, reason="completed"
            )

        db.refresh(certificate)
        logger.info(
            f"Certificate {certificate.certificate_number} issued for booking {booking_id} "
            f"(pilgrim {completion.pilgrim_id}, released {released} slot(s))"
        )
        return certificate, True


certificate_service = CertificateService()
