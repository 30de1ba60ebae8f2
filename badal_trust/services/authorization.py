"""
Role checks for certification and ledger actions.

Caller identity and role come from the identity collaborator; this module
only decides whether that role may perform a given action.
"""
import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from badal_trust.services.errors import Unauthorized


class Role(str, enum.Enum):
    PROVIDER = "provider"
    SCHOLAR = "scholar"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


@dataclass(frozen=True)
class Caller:
    id: str
    role: Role


REVIEWERS = frozenset({Role.SCHOLAR, Role.ADMIN})

ACTION_ROLES: Dict[str, FrozenSet[Role]] = {
    "update": frozenset({Role.PROVIDER}),
    "submit": frozenset({Role.PROVIDER}),
    "approve": REVIEWERS,
    "return": REVIEWERS,
    "suspend": REVIEWERS,
    "verify_documents": REVIEWERS,
    "record_violation": REVIEWERS,
    "reinstate": frozenset({Role.SUPER_ADMIN}),
    "append_event": frozenset({Role.PROVIDER}),
    "verify_event": REVIEWERS,
    "review_queue": frozenset({Role.SCHOLAR, Role.ADMIN, Role.SUPER_ADMIN}),
    "view": frozenset({Role.PROVIDER, Role.SCHOLAR, Role.ADMIN, Role.SUPER_ADMIN}),
}

# Actions a provider may only take on their own records
OWNER_ONLY_ACTIONS = frozenset({"update", "submit", "append_event", "view"})


def authorize(caller: Optional[Caller], action: str, provider_id: Optional[str] = None) -> None:
    """Raise Unauthorized unless caller's role may perform action."""
    if caller is None:
        raise Unauthorized("Caller identity is required")
    allowed = ACTION_ROLES.get(action, frozenset())
    if caller.role not in allowed:
        raise Unauthorized(
            f"Role '{caller.role.value}' may not {action.replace('_', ' ')}"
        )
    if (
        caller.role == Role.PROVIDER
        and action in OWNER_ONLY_ACTIONS
        and provider_id is not None
        and caller.id != provider_id
    ):
        raise Unauthorized("Providers may only act on their own records")
