"""
Error taxonomy for the trust and ritual verification engine.

Every error here is a caller-correctable condition and carries a
plain-language message suitable for showing to providers and scholars.
"""
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from badal_trust.db.database import transaction


class PilgrimTrustError(Exception):
    """Base class for engine errors"""

    code = "error"
    status_code = 400
    default_message = "The request could not be completed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotReady(PilgrimTrustError):
    code = "not_ready"
    status_code = 409
    default_message = "Certification is not complete enough to submit for review"

    def __init__(self, message: str = None, missing: list = None):
        self.missing = missing or []
        super().__init__(message)


class Unauthorized(PilgrimTrustError):
    code = "unauthorized"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class NotesRequired(PilgrimTrustError):
    code = "notes_required"
    status_code = 422
    default_message = "A written reason is required for this action"


class InvalidTransition(PilgrimTrustError):
    code = "invalid_transition"
    status_code = 409
    default_message = "This action is not allowed in the certification's current state"


class Ineligible(PilgrimTrustError):
    code = "ineligible"
    status_code = 409
    default_message = "Provider is not verified and cannot take proxy bookings"


class CapacityExceeded(PilgrimTrustError):
    code = "capacity_exceeded"
    status_code = 409
    default_message = "Provider has no free Badal slot"


class OutOfOrder(PilgrimTrustError):
    code = "out_of_order"
    status_code = 409
    default_message = "Ritual step recorded out of order"


class DuplicateStep(PilgrimTrustError):
    code = "duplicate_step"
    status_code = 409
    default_message = "Ritual step has already been recorded for this booking"


class NotAllStepsVerified(PilgrimTrustError):
    code = "not_all_steps_verified"
    status_code = 409
    default_message = "Not every ritual step for this booking has been verified"


class BookingNotCompleted(PilgrimTrustError):
    code = "booking_not_completed"
    status_code = 409
    default_message = "Booking has not been completed"


class NotFound(PilgrimTrustError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class ConcurrentModification(PilgrimTrustError):
    code = "concurrent_modification"
    status_code = 409
    default_message = "The record was changed by another request, please retry"


@contextmanager
def unit_of_work(db):
    """
    One transaction for a non-idempotent state change. Optimistic-lock
    conflicts surface to the caller instead of being retried.
    """
    try:
        with transaction(db):
            yield db
    except StaleDataError as e:
        raise ConcurrentModification() from e
