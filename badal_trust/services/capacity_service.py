"""
Capacity Service - active Badal slot allocation

The race this service exists to prevent: two bookings accepted at the same
moment both read current_active_badal == max_active_badal - 1 and both write
current + 1, leaving the pilgrim over-committed. A read-then-write can never
be made safe here, so a slot is only ever granted by a single conditional
UPDATE on the certification row:

    UPDATE pilgrim_certifications
       SET current_active_badal = current_active_badal + 1
     WHERE provider_id = :p
       AND status = 'verified'
       AND current_active_badal < max_active_badal

The slot is granted iff exactly one row matched. The database re-evaluates
the WHERE clause under its row lock, so the check and the increment are one
atomic step no matter how many callers race. The CHECK constraint on the
table backs the invariant at the storage layer as well.

Release flips the reservation row from active to released with the same
conditional pattern and only decrements when that flip matched, so repeated
or unknown releases are harmless no-ops.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from badal_trust.db.database import storage_retry, transaction
from badal_trust.db.models import (
    BadalReservation, CertificationStatus, PilgrimCertification, ReservationStatus
)
from badal_trust.services.errors import CapacityExceeded, Ineligible
from badal_trust.utils import utcnow

logger = logging.getLogger(__name__)

RELEASE_REASONS = {"completed", "cancelled", "reconciled"}


class CapacityService:
    """Service for reserving and releasing active Badal slots"""

    @storage_retry
    def try_reserve_slot(
        self,
        db: Session,
        provider_id: str,
        booking_id: Optional[str] = None
    ) -> BadalReservation:
        """
        Reserve one slot for a booking whose proxy assignment became active.

        Raises Ineligible if the pilgrim is not verified and
        CapacityExceeded if every slot is taken. A repeated call for a
        booking that already holds an active slot returns that reservation.
        """
        with transaction(db):
            if booking_id is not None:
                existing = db.query(BadalReservation).filter(
                    BadalReservation.booking_id == booking_id,
                    BadalReservation.status == ReservationStatus.ACTIVE.value
                ).first()
                if existing:
                    if existing.provider_id != provider_id:
                        raise Ineligible(
                            f"Booking {booking_id} already holds a slot with another provider"
                        )
                    return existing

            result = db.execute(
                update(PilgrimCertification)
                .where(
                    PilgrimCertification.provider_id == provider_id,
                    PilgrimCertification.status == CertificationStatus.VERIFIED.value,
                    PilgrimCertification.current_active_badal < PilgrimCertification.max_active_badal
                )
                .values(current_active_badal=PilgrimCertification.current_active_badal + 1)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                cert = db.query(PilgrimCertification).filter(
                    PilgrimCertification.provider_id == provider_id
                ).first()
                if cert is None or cert.status != CertificationStatus.VERIFIED.value:
                    raise Ineligible()
                raise CapacityExceeded(
                    f"All {cert.max_active_badal} Badal slots are in use"
                )

            reservation = BadalReservation(
                id=str(uuid.uuid4()),
                provider_id=provider_id,
                booking_id=booking_id,
                status=ReservationStatus.ACTIVE.value,
                reserved_at=utcnow(),
            )
            db.add(reservation)

        logger.info(
            f"Reserved Badal slot {reservation.id} for provider {provider_id} "
            f"(booking {booking_id})"
        )
        return reservation

    def _release(
        self,
        db: Session,
        provider_id: str,
        reservation_id: str,
        reason: str
    ) -> bool:
        """Release inside the caller's transaction; True if a slot was freed."""
        result = db.execute(
            update(BadalReservation)
            .where(
                BadalReservation.id == reservation_id,
                BadalReservation.provider_id == provider_id,
                BadalReservation.status == ReservationStatus.ACTIVE.value
            )
            .values(
                status=ReservationStatus.RELEASED.value,
                released_at=utcnow(),
                release_reason=reason
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        db.execute(
            update(PilgrimCertification)
            .where(
                PilgrimCertification.provider_id == provider_id,
                PilgrimCertification.current_active_badal > 0
            )
            .values(current_active_badal=PilgrimCertification.current_active_badal - 1)
            .execution_options(synchronize_session=False)
        )
        return True

    @storage_retry
    def release_slot(
        self,
        db: Session,
        provider_id: str,
        reservation_id: str,
        reason: str = "completed"
    ) -> bool:
        """
        Release a reservation. Releasing an unknown or already released
        reservation is a no-op and returns False.
        """
        if reason not in RELEASE_REASONS:
            raise ValueError(f"Unknown release reason: {reason}")
        with transaction(db):
            released = self._release(db, provider_id, reservation_id, reason)

        if released:
            logger.info(f"Released Badal slot {reservation_id} for provider {provider_id} ({reason})")
        else:
            logger.debug(f"Release of {reservation_id} for provider {provider_id} was a no-op")
        return released

    def release_booking_slots(
        self,
        db: Session,
        provider_id: str,
        booking_id: str,
        reason: str = "completed"
    ) -> int:
        """Release every active slot held for a booking, inside the caller's transaction."""
        reservation_ids = [
            r.id for r in db.query(BadalReservation.id).filter(
                BadalReservation.provider_id == provider_id,
                BadalReservation.booking_id == booking_id,
                BadalReservation.status == ReservationStatus.ACTIVE.value
            ).all()
        ]
        return sum(
            1 for rid in reservation_ids if self._release(db, provider_id, rid, reason)
        )

    def list_active_reservations(self, db: Session, provider_id: str) -> List[BadalReservation]:
        return db.query(BadalReservation).filter(
            BadalReservation.provider_id == provider_id,
            BadalReservation.status == ReservationStatus.ACTIVE.value
        ).order_by(BadalReservation.reserved_at.asc()).all()

    def release_orphaned_reservations(
        self,
        db: Session,
        older_than: timedelta,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Force-release active reservations held longer than older_than.
        Used by the reconciliation sweep when the booking service never
        reported a terminal state.
        """
        cutoff = (now or utcnow()) - older_than
        stale = [
            (r.id, r.provider_id, r.booking_id)
            for r in db.query(BadalReservation).filter(
                BadalReservation.status == ReservationStatus.ACTIVE.value,
                BadalReservation.reserved_at < cutoff
            ).all()
        ]
        db.rollback()

        released = []
        for reservation_id, provider_id, booking_id in stale:
            if self.release_slot(db, provider_id, reservation_id, reason="reconciled"):
                released.append({
                    "reservation_id": reservation_id,
                    "provider_id": provider_id,
                    "booking_id": booking_id,
                })

        if released:
            logger.warning(f"Reconciliation released {len(released)} orphaned Badal slots")
        return released

    def capacity_usage(self, db: Session, provider_id: str) -> Optional[Dict[str, Any]]:
        cert = db.query(PilgrimCertification).filter(
            PilgrimCertification.provider_id == provider_id
        ).first()
        if cert is None:
            return None
        eligible = cert.status == CertificationStatus.VERIFIED.value
        return {
            "provider_id": provider_id,
            "status": cert.status,
            "current_active_badal": cert.current_active_badal,
            "max_active_badal": cert.max_active_badal,
            "available": max(0, cert.max_active_badal - cert.current_active_badal) if eligible else 0,
            "eligible": eligible,
        }


capacity_service = CapacityService()
