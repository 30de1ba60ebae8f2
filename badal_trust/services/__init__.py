"""
Services package - Business logic layer
"""
from badal_trust.services.readiness_service import readiness_service
from badal_trust.services.trust_score_service import trust_score_service
from badal_trust.services.certification_service import certification_service
from badal_trust.services.capacity_service import capacity_service
from badal_trust.services.fraud_signal_service import fraud_signal_service
from badal_trust.services.ledger_service import ledger_service
from badal_trust.services.certificate_service import certificate_service
from badal_trust.services.verification_service import verification_service

__all__ = [
    "readiness_service",
    "trust_score_service",
    "certification_service",
    "capacity_service",
    "fraud_signal_service",
    "ledger_service",
    "certificate_service",
    "verification_service"
]
