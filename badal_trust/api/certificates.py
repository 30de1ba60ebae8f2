"""
Certificates API - completion certificate issuance

Called by the booking lifecycle service once a booking reaches completed.
Internal, requires X-API-Key.
"""
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from badal_trust.db.models import ServiceType
from badal_trust.dependencies import get_db, verify_api_key
from badal_trust.services.certificate_service import BookingCompletion, certificate_service

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/certificates",
    tags=["Certificates"],
    dependencies=[Depends(verify_api_key)]
)


class IssueCertificateRequest(BaseModel):
    booking_id: str
    pilgrim_id: str
    booking_status: str = Field(..., description="Status reported by the booking service")
    beneficiary_name: str
    beneficiary_name_ar: Optional[str] = None
    service_type: ServiceType
    completed_date: date
    hijri_date: Optional[str] = Field(None, description="e.g. 14 Ramadan 1447")
    location: Optional[str] = None


class CertificateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    pilgrim_id: str
    certificate_number: str
    qr_verification_code: str
    beneficiary_name: str
    beneficiary_name_ar: Optional[str] = None
    service_type: str
    completed_date: date
    hijri_date: Optional[str] = None
    location: Optional[str] = None
    all_steps_verified: bool
    issued_at: datetime


class IssueCertificateResponse(BaseModel):
    certificate: CertificateResponse
    already_issued: bool


@router.post("/issue", response_model=IssueCertificateResponse)
def issue_certificate(request: IssueCertificateRequest, db: Session = Depends(get_db)):
    """
    Issue the certificate for a completed booking. Safe to repeat: a second
    call returns the stored certificate with already_issued=true.
    """
    completion = BookingCompletion(
        booking_id=request.booking_id,
        pilgrim_id=request.pilgrim_id,
        booking_status=request.booking_status,
        beneficiary_name=request.beneficiary_name,
        beneficiary_name_ar=request.beneficiary_name_ar,
        service_type=request.service_type.value,
        completed_date=request.completed_date,
        hijri_date=request.hijri_date,
        location=request.location,
    )
    certificate, created = certificate_service.issue_certificate(db, completion)
    return {"certificate": certificate, "already_issued": not created}


@router.get("/bookings/{booking_id}", response_model=CertificateResponse)
def get_certificate(booking_id: str, db: Session = Depends(get_db)):
    return certificate_service.get_by_booking_or_404(db, booking_id)
