"""
Certification Service - pilgrim certification records and their state machine

States and legal transitions:

    pending | inactive --submit--> under_review
    under_review --approve--> verified
    under_review --return--> pending              (notes required)
    any but suspended --suspend--> suspended      (reason required)
    suspended --reinstate--> pending | inactive   (super admin only)

Every transition is checked here against the caller's role; an illegal
transition raises, it is never silently ignored.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from badal_trust.db.models import CertificationStatus, PilgrimCertification
from badal_trust.services.authorization import Caller, authorize
from badal_trust.services.errors import (
    InvalidTransition, NotFound, NotReady, NotesRequired, unit_of_work
)
from badal_trust.services.readiness_service import (
    SUBMITTABLE_STATUSES, ReadinessService, readiness_service
)
from badal_trust.services.trust_score_service import TrustScoreService, trust_score_service
from badal_trust.utils import utcnow

logger = logging.getLogger(__name__)

S = CertificationStatus

TRANSITIONS: Dict[str, Dict[str, str]] = {
    "submit": {S.PENDING.value: S.UNDER_REVIEW.value, S.INACTIVE.value: S.UNDER_REVIEW.value},
    "approve": {S.UNDER_REVIEW.value: S.VERIFIED.value},
    "return": {S.UNDER_REVIEW.value: S.PENDING.value},
    "suspend": {
        S.PENDING.value: S.SUSPENDED.value,
        S.UNDER_REVIEW.value: S.SUSPENDED.value,
        S.VERIFIED.value: S.SUSPENDED.value,
        S.INACTIVE.value: S.SUSPENDED.value,
    },
    "reinstate": {S.SUSPENDED.value: S.PENDING.value},
}

REINSTATE_TARGETS = {S.PENDING.value, S.INACTIVE.value}

# Fields a provider may edit before submission
PROVIDER_EDITABLE_FIELDS = {
    "government_id_ref",
    "photo_ref",
    "has_own_umrah",
    "own_umrah_date",
    "has_own_hajj",
    "own_hajj_date",
    "umrah_permit_history",
    "video_oath_ref",
    "video_oath_transcript",
}

# Columns that hold a value from creation on and cannot be cleared
NON_NULLABLE_FIELDS = {"has_own_umrah", "has_own_hajj", "umrah_permit_history"}

# Replacing an evidence reference invalidates its earlier verification
EVIDENCE_VERIFICATION_FLAGS = {
    "government_id_ref": "government_id_verified",
    "photo_ref": "photo_verified",
    "video_oath_ref": "video_oath_verified",
}


class CertificationService:
    """Service for pilgrim certification records"""

    def __init__(
        self,
        readiness: ReadinessService = readiness_service,
        trust: TrustScoreService = trust_score_service
    ):
        self.readiness = readiness
        self.trust = trust

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, db: Session, provider_id: str, for_update: bool = False) -> Optional[PilgrimCertification]:
        query = db.query(PilgrimCertification).filter(
            PilgrimCertification.provider_id == provider_id
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get(self, db: Session, provider_id: str, for_update: bool = False) -> PilgrimCertification:
        cert = self.find(db, provider_id, for_update=for_update)
        if not cert:
            raise NotFound(f"No certification found for provider {provider_id}")
        return cert

    def get_for_caller(self, db: Session, caller: Caller, provider_id: str) -> PilgrimCertification:
        authorize(caller, "view", provider_id)
        return self.get(db, provider_id)

    def list_certifications(
        self,
        db: Session,
        caller: Caller,
        status: Optional[CertificationStatus] = None,
        suspension_recommended: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[PilgrimCertification]:
        """Scholar queue, oldest submission first"""
        authorize(caller, "review_queue")
        query = db.query(PilgrimCertification)
        if status is not None:
            query = query.filter(PilgrimCertification.status == CertificationStatus(status).value)
        if suspension_recommended is not None:
            query = query.filter(
                PilgrimCertification.suspension_recommended == suspension_recommended
            )
        return query.order_by(
            PilgrimCertification.submitted_at.asc(),
            PilgrimCertification.id.asc()
        ).offset(offset).limit(limit).all()

    def readiness_summary(self, db: Session, caller: Caller, provider_id: str) -> Dict[str, Any]:
        authorize(caller, "view", provider_id)
        return self.readiness.summary(self.find(db, provider_id))

    # ------------------------------------------------------------------
    # Provider edits
    # ------------------------------------------------------------------

    def upsert_certification(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        updates: Dict[str, Any]
    ) -> PilgrimCertification:
        """Create the record on first attempt, or update its evidence fields."""
        authorize(caller, "update", provider_id)

        unknown = set(updates) - PROVIDER_EDITABLE_FIELDS
        if unknown:
            raise InvalidTransition(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        cleared = sorted(f for f in NON_NULLABLE_FIELDS if f in updates and updates[f] is None)
        if cleared:
            raise InvalidTransition(f"Fields cannot be cleared: {', '.join(cleared)}")

        with unit_of_work(db):
            cert = self.find(db, provider_id, for_update=True)
            if cert is None:
                cert = PilgrimCertification(
                    provider_id=provider_id,
                    status=S.PENDING.value,
                    trust_score=0,
                    total_completed_rituals=0,
                    violation_count=0,
                    violations=[],
                    umrah_permit_history=[],
                    max_active_badal=0,
                    current_active_badal=0,
                )
                db.add(cert)
                logger.info(f"Certification created for provider {provider_id}")
            elif cert.status not in SUBMITTABLE_STATUSES:
                raise InvalidTransition(
                    f"Certification cannot be edited while {cert.status.replace('_', ' ')}"
                )

            for field, value in updates.items():
                flag = EVIDENCE_VERIFICATION_FLAGS.get(field)
                if flag and getattr(cert, field) != value:
                    setattr(cert, flag, False)
                setattr(cert, field, value)

        db.refresh(cert)
        return cert

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, cert: PilgrimCertification, action: str, target: Optional[str] = None) -> str:
        allowed = TRANSITIONS[action]
        if cert.status not in allowed:
            raise InvalidTransition(
                f"Cannot {action} a certification that is {cert.status.replace('_', ' ')}"
            )
        previous = cert.status
        cert.status = target or allowed[cert.status]
        return previous

    def submit(self, db: Session, caller: Caller, provider_id: str) -> PilgrimCertification:
        authorize(caller, "submit", provider_id)
        with unit_of_work(db):
            cert = self.get(db, provider_id, for_update=True)
            if cert.status not in TRANSITIONS["submit"]:
                raise InvalidTransition(
                    f"Cannot submit a certification that is {cert.status.replace('_', ' ')}"
                )
            if not self.readiness.is_ready_for_submission(cert):
                missing = self.readiness.missing_requirements(cert)
                raise NotReady(
                    "Certification is incomplete: " + "; ".join(missing),
                    missing=missing
                )

            previous = self._transition(cert, "submit")
            cert.submitted_at = utcnow()

        db.refresh(cert)
        logger.info(f"Certification {provider_id} submitted by {caller.id}: {previous} -> {cert.status}")
        return cert

    def approve(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        notes: Optional[str] = None
    ) -> PilgrimCertification:
        """Approve a reviewed certification; re-approving a verified one is a no-op."""
        authorize(caller, "approve")
        with unit_of_work(db):
            cert = self.get(db, provider_id, for_update=True)
            if cert.status == S.VERIFIED.value:
                return cert

            first_verification = cert.verified_at is None
            previous = self._transition(cert, "approve")
            now = utcnow()
            cert.scholar_approved = True
            cert.scholar_id = caller.id
            cert.scholar_approval_date = now
            cert.verified_at = now
            if notes and notes.strip():
                cert.scholar_notes = notes.strip()
            # Re-verification after reinstatement keeps the earned score
            if first_verification:
                self.trust.apply_initial_verification(cert)

        db.refresh(cert)
        logger.info(
            f"Certification {provider_id} approved by {caller.id}: {previous} -> {cert.status} "
            f"score={cert.trust_score} capacity={cert.max_active_badal}"
        )
        return cert

    def return_for_revision(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        notes: Optional[str]
    ) -> PilgrimCertification:
        authorize(caller, "return")
        if not notes or not notes.strip():
            raise NotesRequired("Notes are required when returning a certification for revision")
        with unit_of_work(db):
            cert = self.get(db, provider_id, for_update=True)
            previous = self._transition(cert, "return")
            cert.scholar_notes = notes.strip()
            cert.scholar_id = caller.id

        db.refresh(cert)
        logger.info(f"Certification {provider_id} returned by {caller.id}: {previous} -> {cert.status}")
        return cert

    def suspend(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        reason: Optional[str]
    ) -> PilgrimCertification:
        """
        Suspend a pilgrim. New reservations stop immediately because the
        allocator only grants slots to verified rows; slots already held are
        released normally as their bookings finish.
        """
        authorize(caller, "suspend")
        if not reason or not reason.strip():
            raise NotesRequired("A reason is required to suspend a certification")
        with unit_of_work(db):
            cert = self.get(db, provider_id, for_update=True)
            previous = self._transition(cert, "suspend")
            cert.suspended_at = utcnow()
            cert.suspension_reason = reason.strip()
            cert.suspension_recommended = False

        db.refresh(cert)
        logger.info(
            f"Certification {provider_id} suspended by {caller.id}: {previous} -> {cert.status} "
            f"({cert.current_active_badal} active bookings continue)"
        )
        return cert

    def reinstate(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        target: CertificationStatus = CertificationStatus.PENDING,
        notes: Optional[str] = None
    ) -> PilgrimCertification:
        authorize(caller, "reinstate")
        target_value = CertificationStatus(target).value
        if target_value not in REINSTATE_TARGETS:
            raise InvalidTransition("Reinstatement must return to pending or inactive")
        with unit_of_work(db):
            cert = self.get(db, provider_id, for_update=True)
            previous = self._transition(cert, "reinstate", target=target_value)
            cert.scholar_approved = False
            cert.reinstated_at = utcnow()
            cert.reinstated_by = caller.id
            cert.suspension_recommended = False
            cert.suspension_recommendation_reason = None
            cert.suspension_recommended_at = None
            if notes and notes.strip():
                cert.scholar_notes = notes.strip()

        db.refresh(cert)
        logger.info(f"Certification {provider_id} reinstated by {caller.id}: {previous} -> {cert.status}")
        return cert

    def verify_documents(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        government_id: Optional[bool] = None,
        photo: Optional[bool] = None,
        video_oath: Optional[bool] = None
    ) -> PilgrimCertification:
        """Record a reviewer's check of uploaded evidence; absent evidence stays unverified."""
        authorize(caller, "verify_documents")
        with unit_of_work(db):
            cert = self.get(db, provider_id, for_update=True)
            if government_id is not None:
                cert.government_id_verified = government_id and bool(cert.government_id_ref)
            if photo is not None:
                cert.photo_verified = photo and bool(cert.photo_ref)
            if video_oath is not None:
                cert.video_oath_verified = video_oath and bool(cert.video_oath_ref)
                if cert.video_oath_verified:
                    cert.video_oath_verified_by = caller.id
                    cert.video_oath_verified_at = utcnow()
                else:
                    cert.video_oath_verified_by = None
                    cert.video_oath_verified_at = None

        db.refresh(cert)
        return cert


certification_service = CertificationService()
