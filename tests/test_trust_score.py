from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from badal_trust.config import PolicyConfig
from badal_trust.db.models import ViolationSeverity
from badal_trust.services.errors import NotesRequired, Unauthorized
from badal_trust.services.trust_score_service import TrustScoreService, trust_score_service

from conftest import provider, scholar

NOW = datetime(2026, 5, 1, 12, 0, 0)


def test_initial_values_on_verification():
    assert TrustScoreService(PolicyConfig()).initial_score_on_verification() == (50, 3)


def test_ritual_completion_increments_score():
    outcome = TrustScoreService(PolicyConfig()).on_ritual_completed(50, 0, 3)
    assert outcome.trust_score == 52
    assert outcome.total_completed_rituals == 1
    assert outcome.max_active_badal == 3


def test_score_is_capped_at_100():
    outcome = TrustScoreService(PolicyConfig()).on_ritual_completed(99, 4, 3)
    assert outcome.trust_score == 100


def test_capacity_grows_every_n_rituals_up_to_ceiling():
    service = TrustScoreService(PolicyConfig(capacity_growth_every_n_rituals=10, max_active_badal_ceiling=4))
    assert service.on_ritual_completed(60, 8, 3).max_active_badal == 3
    assert service.on_ritual_completed(60, 9, 3).max_active_badal == 4
    assert service.on_ritual_completed(60, 19, 4).max_active_badal == 4


@pytest.mark.parametrize("severity,expected", [
    (ViolationSeverity.MINOR, 45),
    (ViolationSeverity.MAJOR, 35),
    (ViolationSeverity.CRITICAL, 10),
])
def test_violation_deduction_by_severity(severity, expected):
    outcome = TrustScoreService(PolicyConfig()).on_violation_recorded(50, 0, severity, NOW)
    assert outcome.trust_score == expected
    assert outcome.violation_count == 1


def test_score_never_goes_below_zero():
    outcome = TrustScoreService(PolicyConfig()).on_violation_recorded(
        10, 2, ViolationSeverity.CRITICAL, NOW
    )
    assert outcome.trust_score == 0
    assert outcome.recommend_suspension is True


def test_low_score_recommends_suspension():
    outcome = TrustScoreService(PolicyConfig()).on_violation_recorded(
        50, 0, ViolationSeverity.CRITICAL, NOW
    )
    assert outcome.trust_score == 10
    assert outcome.recommend_suspension is True
    assert "threshold" in outcome.recommendation_reason


def test_too_many_violations_in_window_recommends_suspension():
    service = TrustScoreService(PolicyConfig())
    recent = [NOW - timedelta(days=d) for d in (5, 20, 40)]
    outcome = service.on_violation_recorded(90, 3, ViolationSeverity.MINOR, NOW, recent)
    assert outcome.violations_in_window == 4
    assert outcome.recommend_suspension is True


def test_violations_outside_window_do_not_count():
    service = TrustScoreService(PolicyConfig())
    old = [NOW - timedelta(days=d) for d in (100, 200, 300)]
    outcome = service.on_violation_recorded(90, 3, ViolationSeverity.MINOR, NOW, old)
    assert outcome.violations_in_window == 1
    assert outcome.recommend_suspension is False


def test_policy_rejects_decreasing_deductions():
    with pytest.raises(ValidationError):
        PolicyConfig(violation_deductions={"minor": 20, "major": 10, "critical": 40})


def test_record_violation_updates_record_without_suspending(db, verified_provider):
    cert, outcome = trust_score_service.record_violation(
        db, scholar(), "pilgrim-1", "Late arrival at Miqat", ViolationSeverity.CRITICAL
    )
    assert cert.trust_score == 10
    assert cert.violation_count == 1
    assert cert.last_violation_date is not None
    assert cert.violations[0]["severity"] == "critical"
    assert cert.violations[0]["recorded_by"] == "scholar-1"
    assert cert.suspension_recommended is True
    assert cert.status == "verified"
    assert outcome.recommend_suspension is True


def test_record_violation_requires_reason_and_reviewer(db, verified_provider):
    with pytest.raises(NotesRequired):
        trust_score_service.record_violation(db, scholar(), "pilgrim-1", " ", ViolationSeverity.MINOR)
    with pytest.raises(Unauthorized):
        trust_score_service.record_violation(
            db, provider(), "pilgrim-1", "self report", ViolationSeverity.MINOR
        )


def test_apply_ritual_completed_db(db, verified_provider):
    cert = trust_score_service.apply_ritual_completed_db(db, "pilgrim-1")
    db.commit()
    assert cert.trust_score == 52
    assert cert.total_completed_rituals == 1
