"""
Verification Service - public certificate lookup

Unauthenticated. Accepts a certificate number or a QR verification code
and returns a redacted view. Malformed and unknown codes go down the same
path: the input is normalized, one indexed query runs, and a miss returns
None. No syntax check short-circuits before the query, so response time
and response body are the same for both.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from badal_trust.config import settings
from badal_trust.db.models import CertificationStatus, CompletionCertificate, PilgrimCertification

logger = logging.getLogger(__name__)


class VerificationService:
    """Service for the public certificate verification lookup"""

    def __init__(self, max_code_length: int = settings.VERIFY_CODE_MAX_LENGTH):
        self.max_code_length = max_code_length

    def _normalize(self, code: Optional[str]) -> str:
        return (code or "").strip()[:self.max_code_length]

    def verify(self, db: Session, code: Optional[str]) -> Optional[Dict[str, Any]]:
        lookup = self._normalize(code)
        certificate = db.query(CompletionCertificate).filter(
            or_(
                CompletionCertificate.certificate_number == lookup,
                CompletionCertificate.qr_verification_code == lookup
            )
        ).first()

        if certificate is None:
            logger.info("Public verification lookup: miss")
            return None

        logger.info("Public verification lookup: hit")
        pilgrim = db.query(PilgrimCertification).filter(
            PilgrimCertification.provider_id == certificate.pilgrim_id
        ).first()
        return self.public_view(certificate, pilgrim)

    @staticmethod
    def public_view(
        certificate: CompletionCertificate,
        pilgrim: Optional[PilgrimCertification]
    ) -> Dict[str, Any]:
        """Redacted view: no internal ids besides the certificate number, no contact data"""
        return {
            "certificate_number": certificate.certificate_number,
            "beneficiary_name": certificate.beneficiary_name,
            "beneficiary_name_ar": certificate.beneficiary_name_ar,
            "service_type": certificate.service_type,
            "completed_date": certificate.completed_date,
            "hijri_date": certificate.hijri_date,
            "location": certificate.location,
            "all_steps_verified": certificate.all_steps_verified,
            "issued_at": certificate.issued_at,
            "pilgrim": {
                "certified": pilgrim is not None
                and pilgrim.status == CertificationStatus.VERIFIED.value,
                "total_completed_rituals": pilgrim.total_completed_rituals if pilgrim else 0,
            },
        }


verification_service = VerificationService()
