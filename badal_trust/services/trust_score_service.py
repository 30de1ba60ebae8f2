"""
Trust Score Service - reputation and permitted capacity of certified pilgrims

Score math is exposed as pure methods taking the current values and the
event, so it can be tested without a database. The *_db methods apply the
same math to a locked certification row; they are the only writers of
trust_score, total_completed_rituals and max_active_badal.

Policy (see PolicyConfig):
- Verification: fixed initial score and capacity.
- Completed ritual: +ritual_score_increment (cap 100); every
  capacity_growth_every_n_rituals completions adds one slot, up to
  max_active_badal_ceiling.
- Violation: deduction by severity (floor 0). Falling below
  suspension_score_threshold, or more than violation_ceiling violations
  within violation_window_days, produces a suspension recommendation.
  Suspension itself always stays a human action.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from badal_trust.config import PolicyConfig, get_policy
from badal_trust.db.models import PilgrimCertification, ViolationSeverity
from badal_trust.services.authorization import Caller, authorize
from badal_trust.services.errors import NotFound, NotesRequired, unit_of_work
from badal_trust.utils import utcnow

logger = logging.getLogger(__name__)

MAX_TRUST_SCORE = 100
MIN_TRUST_SCORE = 0


@dataclass(frozen=True)
class RitualOutcome:
    trust_score: int
    total_completed_rituals: int
    max_active_badal: int


@dataclass(frozen=True)
class ViolationOutcome:
    trust_score: int
    violation_count: int
    violations_in_window: int
    recommend_suspension: bool
    recommendation_reason: Optional[str] = None


class TrustScoreService:
    """Service for computing and applying trust score changes"""

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self._policy = policy

    @property
    def policy(self) -> PolicyConfig:
        return self._policy or get_policy()

    # ------------------------------------------------------------------
    # Pure score math
    # ------------------------------------------------------------------

    def initial_score_on_verification(self) -> Tuple[int, int]:
        """Starting (trust_score, max_active_badal) for a newly verified pilgrim"""
        return self.policy.initial_trust_score, self.policy.initial_max_active_badal

    def on_ritual_completed(
        self,
        trust_score: int,
        total_completed_rituals: int,
        max_active_badal: int
    ) -> RitualOutcome:
        policy = self.policy
        total = total_completed_rituals + 1
        score = min(MAX_TRUST_SCORE, trust_score + policy.ritual_score_increment)
        capacity = max_active_badal
        if total % policy.capacity_growth_every_n_rituals == 0:
            capacity = min(policy.max_active_badal_ceiling, capacity + 1)
        return RitualOutcome(
            trust_score=score,
            total_completed_rituals=total,
            max_active_badal=max(capacity, max_active_badal),
        )

    def deduction_for(self, severity: ViolationSeverity) -> int:
        return getattr(self.policy.violation_deductions, ViolationSeverity(severity).value)

    def on_violation_recorded(
        self,
        trust_score: int,
        violation_count: int,
        severity: ViolationSeverity,
        occurred_at: datetime,
        prior_violation_dates: Iterable[datetime] = ()
    ) -> ViolationOutcome:
        policy = self.policy
        score = max(MIN_TRUST_SCORE, trust_score - self.deduction_for(severity))
        window_start = occurred_at - timedelta(days=policy.violation_window_days)
        in_window = 1 + sum(1 for d in prior_violation_dates if d >= window_start)

        reason = None
        if score < policy.suspension_score_threshold:
            reason = (
                f"Trust score {score} fell below the suspension threshold "
                f"{policy.suspension_score_threshold}"
            )
        elif in_window > policy.violation_ceiling:
            reason = (
                f"{in_window} violations in the last {policy.violation_window_days} days "
                f"exceeds the limit of {policy.violation_ceiling}"
            )

        return ViolationOutcome(
            trust_score=score,
            violation_count=violation_count + 1,
            violations_in_window=in_window,
            recommend_suspension=reason is not None,
            recommendation_reason=reason,
        )

    # ------------------------------------------------------------------
    # Atomic update paths
    # ------------------------------------------------------------------

    def apply_initial_verification(self, cert: PilgrimCertification) -> None:
        """Set the initial score and capacity on a row locked by the caller"""
        score, capacity = self.initial_score_on_verification()
        cert.trust_score = score
        cert.max_active_badal = max(capacity, cert.current_active_badal)
        cert.policy_version = self.policy.policy_version

    def apply_ritual_completed_db(self, db: Session, provider_id: str) -> PilgrimCertification:
        """
        Record one completed ritual inside the caller's transaction.
        The caller commits.
        """
        cert = db.query(PilgrimCertification).filter(
            PilgrimCertification.provider_id == provider_id
        ).with_for_update().first()
        if not cert:
            raise NotFound(f"No certification found for provider {provider_id}")

        outcome = self.on_ritual_completed(
            cert.trust_score, cert.total_completed_rituals, cert.max_active_badal
        )
        cert.trust_score = outcome.trust_score
        cert.total_completed_rituals = outcome.total_completed_rituals
        cert.max_active_badal = outcome.max_active_badal
        cert.policy_version = self.policy.policy_version
        logger.info(
            f"Ritual completed for provider {provider_id}: score={outcome.trust_score} "
            f"completed={outcome.total_completed_rituals} capacity={outcome.max_active_badal}"
        )
        return cert

    def record_violation(
        self,
        db: Session,
        caller: Caller,
        provider_id: str,
        reason: str,
        severity: ViolationSeverity
    ) -> Tuple[PilgrimCertification, ViolationOutcome]:
        """Append a violation, deduct score and surface a suspension recommendation"""
        authorize(caller, "record_violation")
        if not reason or not reason.strip():
            raise NotesRequired("A reason is required to record a violation")

        with unit_of_work(db):
            cert = db.query(PilgrimCertification).filter(
                PilgrimCertification.provider_id == provider_id
            ).with_for_update().first()
            if not cert:
                raise NotFound(f"No certification found for provider {provider_id}")

            now = utcnow()
            history = list(cert.violations or [])
            prior_dates = [datetime.fromisoformat(v["date"]) for v in history]
            outcome = self.on_violation_recorded(
                cert.trust_score, cert.violation_count, severity, now, prior_dates
            )

            history.append({
                "date": now.isoformat(),
                "reason": reason.strip(),
                "severity": ViolationSeverity(severity).value,
                "recorded_by": caller.id,
                "policy_version": self.policy.policy_version,
            })
            cert.violations = history
            cert.violation_count = outcome.violation_count
            cert.last_violation_date = now
            cert.trust_score = outcome.trust_score
            cert.policy_version = self.policy.policy_version
            if outcome.recommend_suspension:
                cert.suspension_recommended = True
                cert.suspension_recommendation_reason = outcome.recommendation_reason
                cert.suspension_recommended_at = now

        db.refresh(cert)
        logger.info(
            f"Violation recorded for provider {provider_id} by {caller.id}: "
            f"severity={ViolationSeverity(severity).value} score={outcome.trust_score} "
            f"recommend_suspension={outcome.recommend_suspension}"
        )
        if outcome.recommend_suspension:
            logger.warning(
                f"Suspension recommended for provider {provider_id}: {outcome.recommendation_reason}"
            )
        return cert, outcome


trust_score_service = TrustScoreService()
