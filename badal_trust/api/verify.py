"""
Public certificate verification

Unauthenticated. Unknown and malformed codes get the same 404 body.
"""
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from badal_trust.dependencies import get_db
from badal_trust.services.verification_service import verification_service

router = APIRouter(tags=["Verification"])

NOT_FOUND_BODY = {"valid": False, "detail": "Certificate not found"}


class PilgrimPublicView(BaseModel):
    certified: bool
    total_completed_rituals: int


class CertificatePublicView(BaseModel):
    valid: bool = True
    certificate_number: str
    beneficiary_name: str
    beneficiary_name_ar: Optional[str] = None
    service_type: str
    completed_date: date
    hijri_date: Optional[str] = None
    location: Optional[str] = None
    all_steps_verified: bool
    issued_at: datetime
    pilgrim: PilgrimPublicView


@router.get(
    "/verify",
    response_model=CertificatePublicView,
    responses={404: {"description": "Certificate not found"}}
)
def verify_certificate(
    code: Optional[str] = Query(None, description="Certificate number or QR verification code"),
    db: Session = Depends(get_db)
):
    result = verification_service.verify(db, code)
    if result is None:
        return JSONResponse(status_code=404, content=NOT_FOUND_BODY)
    return result
