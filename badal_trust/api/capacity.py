"""
Capacity API - Badal slot reservation for the booking lifecycle service

All endpoints are internal and require X-API-Key.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from badal_trust.config import settings
from badal_trust.dependencies import get_db, verify_api_key
from badal_trust.services.capacity_service import capacity_service

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/capacity",
    tags=["Capacity"],
    dependencies=[Depends(verify_api_key)]
)


class ReserveRequest(BaseModel):
    provider_id: str
    booking_id: Optional[str] = Field(None, description="Booking the slot is held for")


class ReleaseRequest(BaseModel):
    provider_id: str
    reservation_id: str
    reason: str = Field("completed", pattern="^(completed|cancelled)$")


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: str
    booking_id: Optional[str] = None
    status: str
    reserved_at: datetime
    released_at: Optional[datetime] = None
    release_reason: Optional[str] = None


class ReconcileRequest(BaseModel):
    older_than_hours: Optional[int] = Field(None, ge=1)


@router.post("/reserve", response_model=ReservationResponse)
def reserve_slot(request: ReserveRequest, db: Session = Depends(get_db)):
    """
    Atomically take one slot. 409 ineligible when the pilgrim is not
    verified, 409 capacity_exceeded when every slot is in use.
    """
    return capacity_service.try_reserve_slot(db, request.provider_id, request.booking_id)


@router.post("/release")
def release_slot(request: ReleaseRequest, db: Session = Depends(get_db)):
    released = capacity_service.release_slot(
        db, request.provider_id, request.reservation_id, reason=request.reason
    )
    return {
        "reservation_id": request.reservation_id,
        "released": released,
    }


@router.get("/{provider_id}/reservations", response_model=List[ReservationResponse])
def list_reservations(provider_id: str, db: Session = Depends(get_db)):
    return capacity_service.list_active_reservations(db, provider_id)


@router.post("/reconcile")
def reconcile(request: ReconcileRequest = ReconcileRequest(), db: Session = Depends(get_db)):
    """Release slots whose booking never reported a terminal state."""
    hours = request.older_than_hours or settings.RESERVATION_ORPHAN_TIMEOUT_HOURS
    released = capacity_service.release_orphaned_reservations(db, timedelta(hours=hours))
    return {
        "older_than_hours": hours,
        "released_count": len(released),
        "released": released,
    }
