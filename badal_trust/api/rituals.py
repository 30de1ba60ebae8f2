"""
Rituals API - proof-of-ritual ledger

Provides:
- POST /rituals/bookings/{booking_id}/events: append the next ritual step
- GET  /rituals/bookings/{booking_id}/events: all recorded steps in order
- GET  /rituals/bookings/{booking_id}/progress: steps recorded against the catalog
- GET  /rituals/flagged: review queue of flagged steps
- POST /rituals/events/{event_id}/verify: record a reviewer's verification
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from badal_trust.db.models import MediaType, ServiceType
from badal_trust.dependencies import get_caller, get_db
from badal_trust.services.authorization import Caller, authorize
from badal_trust.services.ledger_service import ledger_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/rituals", tags=["Rituals"])


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================

class RitualEvidence(BaseModel):
    media_type: Optional[MediaType] = None
    media_ref: Optional[str] = None
    media_hash: Optional[str] = Field(None, max_length=128)
    geo_lat: Optional[float] = Field(None, ge=-90, le=90)
    geo_lng: Optional[float] = Field(None, ge=-180, le=180)
    geo_accuracy: Optional[float] = Field(None, ge=0, description="GPS accuracy in meters")
    device_fingerprint: Optional[str] = None
    device_change_reason: Optional[str] = Field(
        None, description="Declared reason when the device differs from the previous step"
    )
    exif_data: Optional[Dict[str, Any]] = None
    dua_transcript: Optional[str] = None
    dua_audio_ref: Optional[str] = None
    beneficiary_name_mentioned: bool = False


class AppendEventRequest(BaseModel):
    beneficiary_id: str
    ritual_step: str = Field(..., description="e.g. ihram, tawaf, sai")
    step_order: int = Field(..., description="1-based position in the ritual")
    timestamp: Optional[datetime] = None
    service_type: Optional[ServiceType] = None
    evidence: RitualEvidence = RitualEvidence()

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "beneficiary_id": "ben-118",
            "ritual_step": "ihram",
            "step_order": 1,
            "service_type": "umrah",
            "evidence": {
                "media_type": "video",
                "media_ref": "media://rituals/a1",
                "media_hash": "9c1f0e",
                "geo_lat": 21.3891,
                "geo_lng": 39.8579,
                "geo_accuracy": 12.0,
                "device_fingerprint": "dev-4471",
                "dua_transcript": "Labbayk Allahumma an Fatima bint Ahmad",
                "beneficiary_name_mentioned": True
            }
        }
    })


class FraudSignalEntry(BaseModel):
    signal: str
    details: Dict[str, Any] = {}


class RitualEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: str
    provider_id: str
    beneficiary_id: str
    ritual_step: str
    step_order: int
    timestamp: datetime
    media_type: Optional[str] = None
    media_ref: Optional[str] = None
    media_hash: Optional[str] = None
    geo_lat: Optional[float] = None
    geo_lng: Optional[float] = None
    geo_accuracy: Optional[float] = None
    device_fingerprint: Optional[str] = None
    device_change_reason: Optional[str] = None
    dua_transcript: Optional[str] = None
    beneficiary_name_mentioned: bool
    is_flagged: bool
    flag_reason: Optional[str] = None
    fraud_signals: Optional[List[FraudSignalEntry]] = None
    verified: bool
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None


class RitualStepInfo(BaseModel):
    step: str
    order: int
    label_en: str
    label_ar: Optional[str] = None


class RitualProgressResponse(BaseModel):
    booking_id: str
    service_type: str
    recorded_steps: List[str]
    total_steps: int
    next_step: Optional[RitualStepInfo] = None
    is_complete: bool
    flagged_steps: List[str]
    unverified_steps: List[str]


class VerifyEventRequest(BaseModel):
    notes: Optional[str] = None


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("/bookings/{booking_id}/events", response_model=RitualEventResponse)
def append_event(
    booking_id: str,
    request: AppendEventRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    """
    Append the next ritual step for a booking.

    Fraud rules run on every append. A flagged event is still recorded;
    the flag holds the booking's certificate until a scholar reviews it.
    """
    try:
        return ledger_service.append_event(
            db,
            caller,
            booking_id,
            beneficiary_id=request.beneficiary_id,
            ritual_step=request.ritual_step,
            step_order=request.step_order,
            evidence=request.evidence.model_dump(mode="json", exclude_none=True),
            timestamp=request.timestamp,
            service_type=request.service_type.value if request.service_type else None
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/bookings/{booking_id}/events", response_model=List[RitualEventResponse])
def list_events(
    booking_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    events = ledger_service.list_events(db, booking_id)
    if events:
        authorize(caller, "view", events[0].provider_id)
    return events


@router.get("/bookings/{booking_id}/progress", response_model=RitualProgressResponse)
def get_progress(
    booking_id: str,
    service_type: ServiceType = Query(ServiceType.UMRAH),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return ledger_service.ritual_progress(db, booking_id, service_type.value, caller=caller)


@router.get("/flagged", response_model=List[RitualEventResponse])
def list_flagged(
    include_verified: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return ledger_service.list_flagged(db, caller, include_verified=include_verified, limit=limit)


@router.post("/events/{event_id}/verify", response_model=RitualEventResponse)
def verify_event(
    event_id: int,
    request: VerifyEventRequest = VerifyEventRequest(),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db)
):
    return ledger_service.mark_verified(db, caller, event_id, notes=request.notes)
