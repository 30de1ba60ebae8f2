"""
Certifications API - pilgrim certification records and scholar review

Provides:
- PUT  /certifications/{provider_id}: create or update certification evidence
- GET  /certifications/{provider_id}: get a certification record
- GET  /certifications/{provider_id}/readiness: completion percentage and missing items
- GET  /certifications/{provider_id}/capacity: active Badal slot usage
- POST /certifications/{provider_id}/submit: submit for scholar review
- POST /certifications/{provider_id}/approve|return|suspend|reinstate: review decisions
- POST /certifications/{provider_id}/documents/verify: mark evidence as checked
- POST /certifications/{provider_id}/violations: record a violation
- GET  /certifications: scholar queue
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from badal_trust.db.models import CertificationStatus, ViolationSeverity
from badal_trust.dependencies import get_caller, get_db
from badal_trust.services.authorization import Caller, authorize
from badal_trust.services.capacity_service import capacity_service
from badal_trust.services.certification_service import certification_service
from badal_trust.services.errors import NotFound
from badal_trust.services.trust_score_service import trust_score_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/certifications", tags=["Certifications"])


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================

class CertificationUpdateRequest(BaseModel):
    """Evidence a provider may submit before review"""
    government_id_ref: Optional[str] = Field(None, description="Storage reference of the government ID")
    photo_ref: Optional[str] = Field(None, description="Storage reference of the verification photo")
    has_own_umrah: Optional[bool] = None
    own_umrah_date: Optional[date] = None
    has_own_hajj: Optional[bool] = None
    own_hajj_date: Optional[date] = None
    umrah_permit_history: Optional[List[Dict[str, Any]]] = None
    video_oath_ref: Optional[str] = Field(None, description="Storage reference of the video oath")
    video_oath_transcript: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "government_id_ref": "media://ids/7f3a",
            "photo_ref": "media://photos/91bc",
            "has_own_umrah": True,
            "own_umrah_date": "2023-03-14",
            "video_oath_ref": "media://oaths/22de"
        }
    })

    @field_validator("has_own_umrah", "has_own_hajj", "umrah_permit_history")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null; omit the field to leave it unchanged")
        return v


class ViolationEntry(BaseModel):
    date: datetime
    reason: str
    severity: ViolationSeverity
    recorded_by: Optional[str] = None
    policy_version: Optional[str] = None


class CertificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: str
    status: CertificationStatus
    government_id_ref: Optional[str] = None
    government_id_verified: bool
    photo_ref: Optional[str] = None
    photo_verified: bool
    has_own_umrah: bool
    own_umrah_date: Optional[date] = None
    has_own_hajj: bool
    own_hajj_date: Optional[date] = None
    umrah_permit_history: Optional[List[Dict[str, Any]]] = None
    video_oath_ref: Optional[str] = None
    video_oath_transcript: Optional[str] = None
    video_oath_verified: bool
    scholar_approved: bool
    scholar_id: Optional[str] = None
    scholar_approval_date: Optional[datetime] = None
    scholar_notes: Optional[str] = None
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None
    suspension_reason: Optional[str] = None
    trust_score: int
    total_completed_rituals: int
    violation_count: int
    last_violation_date: Optional[datetime] = None
    violations: Optional[List[ViolationEntry]] = None
    suspension_recommended: bool
    suspension_recommendation_reason: Optional[str] = None
    max_active_badal: int
    current_active_badal: int


class ReadinessResponse(BaseModel):
    ready: bool
    completion_percentage: int
    status: Optional[CertificationStatus] = None
    missing: List[str]
    hajj_attested: bool


class CapacityUsageResponse(BaseModel):
    provider_id: str
    status: CertificationStatus
    current_active_badal: int
    max_active_badal: int
    available: int
    eligible: bool


class ReviewRequest(BaseModel):
    notes: Optional[str] = Field(None, description="Scholar notes; required when returning")


class SuspendRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Reason for suspension (required)")


class ReinstateRequest(BaseModel):
    target: CertificationStatus = CertificationStatus.PENDING
    notes: Optional[str] = None


class DocumentVerificationRequest(BaseModel):
    government_id: Optional[bool] = None
    photo: Optional[bool] = None
    video_oath: Optional[bool] = None


class ViolationRequest(BaseModel):
    reason: str = Field(..., description="What happened")
    severity: ViolationSeverity


class ViolationResponse(BaseModel):
    certification: CertificationResponse
    violations_in_window: int
    suspension_recommended: bool
    recommendation_reason: Optional[str] = None


# ============================================================
# PROVIDER ENDPOINTS
# ============================================================

@router.put("/{provider_id}", response_model=CertificationResponse)
def upsert_certification(
    provider_id: str,
    request: CertificationUpdateRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """Create the certification on first call, then update its evidence fields."""
    updates = request.model_dump(exclude_unset=True)
    return certification_service.upsert_certification(db, caller, provider_id, updates)


@router.get("/{provider_id}", response_model=CertificationResponse)
def get_certification(
    provider_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.get_for_caller(db, caller, provider_id)


@router.get("/{provider_id}/readiness", response_model=ReadinessResponse)
def get_readiness(
    provider_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """
    Completion percentage and plain-language list of what is still missing.
    Works before the certification exists (0%).
    """
    return certification_service.readiness_summary(db, caller, provider_id)


@router.get("/{provider_id}/capacity", response_model=CapacityUsageResponse)
def get_capacity_usage(
    provider_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    authorize(caller, "view", provider_id)
    usage = capacity_service.capacity_usage(db, provider_id)
    if usage is None:
        raise NotFound(f"No certification found for provider {provider_id}")
    return usage


@router.post("/{provider_id}/submit", response_model=CertificationResponse)
def submit_certification(
    provider_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.submit(db, caller, provider_id)


# ============================================================
# SCHOLAR / ADMIN ENDPOINTS
# ============================================================

@router.get("", response_model=List[CertificationResponse])
def list_certifications(
    status: Optional[CertificationStatus] = Query(None, description="Filter by status"),
    suspension_recommended: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.list_certifications(
        db, caller, status=status, suspension_recommended=suspension_recommended,
        limit=limit, offset=offset
    )


@router.post("/{provider_id}/approve", response_model=CertificationResponse)
def approve_certification(
    provider_id: str,
    request: ReviewRequest = ReviewRequest(),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.approve(db, caller, provider_id, notes=request.notes)


@router.post("/{provider_id}/return", response_model=CertificationResponse)
def return_certification(
    provider_id: str,
    request: ReviewRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.return_for_revision(db, caller, provider_id, request.notes)


@router.post("/{provider_id}/suspend", response_model=CertificationResponse)
def suspend_certification(
    provider_id: str,
    request: SuspendRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.suspend(db, caller, provider_id, request.reason)


@router.post("/{provider_id}/reinstate", response_model=CertificationResponse)
def reinstate_certification(
    provider_id: str,
    request: ReinstateRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.reinstate(
        db, caller, provider_id, target=request.target, notes=request.notes
    )


@router.post("/{provider_id}/documents/verify", response_model=CertificationResponse)
def verify_documents(
    provider_id: str,
    request: DocumentVerificationRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return certification_service.verify_documents(
        db, caller, provider_id,
        government_id=request.government_id,
        photo=request.photo,
        video_oath=request.video_oath
    )


@router.post("/{provider_id}/violations", response_model=ViolationResponse)
def record_violation(
    provider_id: str,
    request: ViolationRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """
    Record a violation. The trust score drops by severity; when policy
    thresholds are crossed the record is marked for suspension review,
    but suspension itself still needs an explicit scholar action.
    """
    cert, outcome = trust_score_service.record_violation(
        db, caller, provider_id, request.reason, request.severity
    )
    return {
        "certification": cert,
        "violations_in_window": outcome.violations_in_window,
        "suspension_recommended": outcome.recommend_suspension,
        "recommendation_reason": outcome.recommendation_reason,
    }
