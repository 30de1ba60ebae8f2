"""
SQLAlchemy ORM Models for the Badal Trust service
"""
import enum

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime,
    Date, JSON, UniqueConstraint, Index, CheckConstraint, event, inspect
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func, text
from badal_trust.db.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class CertificationStatus(str, enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class ViolationSeverity(str, enum.Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    RELEASED = "released"


class MediaType(str, enum.Enum):
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"


class ServiceType(str, enum.Enum):
    UMRAH = "umrah"
    HAJJ = "hajj"
    ZIYARAT = "ziyarat"


class PilgrimCertification(Base):
    __tablename__ = "pilgrim_certifications"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(String(64), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=CertificationStatus.PENDING.value, index=True)

    # Identity
    government_id_ref = Column(Text)
    government_id_verified = Column(Boolean, nullable=False, default=False)
    photo_ref = Column(Text)
    photo_verified = Column(Boolean, nullable=False, default=False)

    # Religious qualification
    has_own_umrah = Column(Boolean, nullable=False, default=False)
    own_umrah_date = Column(Date)
    has_own_hajj = Column(Boolean, nullable=False, default=False)
    own_hajj_date = Column(Date)
    umrah_permit_history = Column(JSONType, default=list)

    # Video oath
    video_oath_ref = Column(Text)
    video_oath_transcript = Column(Text)
    video_oath_verified = Column(Boolean, nullable=False, default=False)
    video_oath_verified_by = Column(String(64))
    video_oath_verified_at = Column(DateTime)

    # Scholar decision
    scholar_approved = Column(Boolean, nullable=False, default=False)
    scholar_id = Column(String(64))
    scholar_approval_date = Column(DateTime)
    scholar_notes = Column(Text)

    # Lifecycle
    submitted_at = Column(DateTime)
    verified_at = Column(DateTime)
    suspended_at = Column(DateTime)
    suspension_reason = Column(Text)
    reinstated_at = Column(DateTime)
    reinstated_by = Column(String(64))

    # Trust
    trust_score = Column(Integer, nullable=False, default=0)
    total_completed_rituals = Column(Integer, nullable=False, default=0)
    policy_version = Column(String(32))

    # Violations
    violation_count = Column(Integer, nullable=False, default=0)
    last_violation_date = Column(DateTime)
    violations = Column(JSONType, default=list)  # [{date, reason, severity, recorded_by}]
    suspension_recommended = Column(Boolean, nullable=False, default=False)
    suspension_recommendation_reason = Column(Text)
    suspension_recommended_at = Column(DateTime)

    # Capacity
    max_active_badal = Column(Integer, nullable=False, default=0)
    current_active_badal = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "current_active_badal >= 0 AND current_active_badal <= max_active_badal",
            name="ck_active_badal_within_capacity"
        ),
        CheckConstraint("trust_score >= 0 AND trust_score <= 100", name="ck_trust_score_range"),
        CheckConstraint("total_completed_rituals >= 0", name="ck_completed_rituals_non_negative"),
        CheckConstraint("violation_count >= 0", name="ck_violation_count_non_negative"),
    )

    __mapper_args__ = {"version_id_col": version}


class BadalReservation(Base):
    __tablename__ = "badal_reservations"

    id = Column(String(36), primary_key=True)
    provider_id = Column(String(64), nullable=False)
    booking_id = Column(String(64), index=True)
    status = Column(String(20), nullable=False, default=ReservationStatus.ACTIVE.value)
    reserved_at = Column(DateTime, nullable=False)
    released_at = Column(DateTime)
    release_reason = Column(String(50))  # completed, cancelled, reconciled

    __table_args__ = (
        Index("idx_reservation_provider_status", "provider_id", "status"),
        # At most one active slot per booking
        Index(
            "uq_active_reservation_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class RitualEvent(Base):
    __tablename__ = "ritual_events"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(64), nullable=False, index=True)
    provider_id = Column(String(64), nullable=False, index=True)
    beneficiary_id = Column(String(64), nullable=False)
    ritual_step = Column(String(100), nullable=False)
    step_order = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False)

    # Evidence
    media_type = Column(String(10))
    media_ref = Column(Text)
    media_hash = Column(String(128), index=True)
    geo_lat = Column(Float)
    geo_lng = Column(Float)
    geo_accuracy = Column(Float)
    device_fingerprint = Column(String(255))
    device_change_reason = Column(Text)
    exif_data = Column(JSONType)
    dua_transcript = Column(Text)
    dua_audio_ref = Column(Text)
    beneficiary_name_mentioned = Column(Boolean, nullable=False, default=False)

    # Fraud signals
    is_flagged = Column(Boolean, nullable=False, default=False, index=True)
    flag_reason = Column(String(50))
    fraud_signals = Column(JSONType, default=list)

    # Human verification
    verified = Column(Boolean, nullable=False, default=False)
    verified_by = Column(String(64))
    verified_at = Column(DateTime)
    verification_notes = Column(Text)

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("booking_id", "step_order", name="unique_booking_step_order"),
        UniqueConstraint("booking_id", "ritual_step", name="unique_booking_ritual_step"),
        CheckConstraint("step_order >= 1", name="ck_step_order_positive"),
    )


class CompletionCertificate(Base):
    __tablename__ = "completion_certificates"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(64), unique=True, nullable=False)
    pilgrim_id = Column(String(64), nullable=False, index=True)
    certificate_number = Column(String(32), unique=True, nullable=False)
    qr_verification_code = Column(String(64), unique=True, nullable=False)
    beneficiary_name = Column(String(255), nullable=False)
    beneficiary_name_ar = Column(String(255))
    service_type = Column(String(20), nullable=False)
    completed_date = Column(Date, nullable=False)
    hijri_date = Column(String(64))
    location = Column(String(255))
    all_steps_verified = Column(Boolean, nullable=False, default=False)
    issued_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class CertificateSequence(Base):
    __tablename__ = "certificate_sequences"

    scope = Column(String(32), primary_key=True)  # e.g. "BDL-2026"
    last_value = Column(Integer, nullable=False, default=0)


RITUAL_EVENT_MUTABLE_FIELDS = frozenset(
    {"verified", "verified_by", "verified_at", "verification_notes"}
)


@event.listens_for(RitualEvent, "before_update")
def _ritual_event_append_only(mapper, connection, target):
    state = inspect(target)
    for attr in state.attrs:
        if attr.key not in RITUAL_EVENT_MUTABLE_FIELDS and attr.history.has_changes():
            raise ValueError(f"ritual event field '{attr.key}' is immutable after append")


@event.listens_for(CompletionCertificate, "before_update")
def _certificate_immutable(mapper, connection, target):
    raise ValueError("completion certificates are immutable once issued")
