"""
Readiness Service - decides whether a certification can be submitted for review

Pure functions over a certification record; nothing here touches the
database, so it can be called on unsaved drafts.
"""
from typing import Any, Dict, List, Optional, Tuple

from badal_trust.db.models import CertificationStatus

SUBMITTABLE_STATUSES = {
    CertificationStatus.PENDING.value,
    CertificationStatus.INACTIVE.value,
}


class ReadinessService:
    """Gating checks shown to providers before they submit"""

    REQUIREMENTS: List[Tuple[str, str]] = [
        ("government_id", "Upload a government-issued ID"),
        ("photo", "Upload a verification photo"),
        ("own_umrah", "Confirm you have performed your own Umrah, including its date"),
        ("video_oath", "Record and upload the video oath"),
    ]

    def requirement_checks(self, cert: Any) -> Dict[str, bool]:
        """Evaluate each required item; Hajj attestation is informational only."""
        if cert is None:
            return {key: False for key, _ in self.REQUIREMENTS}
        return {
            "government_id": bool(cert.government_id_ref),
            "photo": bool(cert.photo_ref),
            "own_umrah": bool(cert.has_own_umrah) and cert.own_umrah_date is not None,
            "video_oath": bool(cert.video_oath_ref),
        }

    def missing_requirements(self, cert: Any) -> List[str]:
        checks = self.requirement_checks(cert)
        return [message for key, message in self.REQUIREMENTS if not checks[key]]

    def completion_percentage(self, cert: Any) -> int:
        checks = self.requirement_checks(cert)
        completed = sum(1 for ok in checks.values() if ok)
        return round(completed * 100 / len(checks))

    def is_ready_for_submission(self, cert: Any) -> bool:
        if cert is None or cert.status not in SUBMITTABLE_STATUSES:
            return False
        return all(self.requirement_checks(cert).values())

    def summary(self, cert: Optional[Any]) -> Dict[str, Any]:
        missing = self.missing_requirements(cert)
        status = cert.status if cert is not None else None
        reasons = list(missing)
        if cert is not None and status not in SUBMITTABLE_STATUSES:
            reasons.append(f"Certification is already {status.replace('_', ' ')}")
        return {
            "ready": self.is_ready_for_submission(cert),
            "completion_percentage": self.completion_percentage(cert),
            "status": status,
            "missing": reasons,
            "hajj_attested": bool(cert.has_own_hajj) if cert is not None else False,
        }


readiness_service = ReadinessService()
