"""
API routers package
"""
from badal_trust.api import (
    system,
    certifications,
    capacity,
    rituals,
    certificates,
    verify
)

__all__ = [
    "system",
    "certifications",
    "capacity",
    "rituals",
    "certificates",
    "verify"
]
