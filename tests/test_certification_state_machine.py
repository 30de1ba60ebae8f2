import pytest

from badal_trust.db.models import CertificationStatus
from badal_trust.services.authorization import Caller, Role
from badal_trust.services.certification_service import certification_service
from badal_trust.services.errors import (
    InvalidTransition, NotFound, NotReady, NotesRequired, Unauthorized
)

from conftest import COMPLETE_EVIDENCE, make_verified_provider, provider, scholar, super_admin


def test_first_update_creates_pending_record(db):
    cert = certification_service.upsert_certification(
        db, provider(), "pilgrim-1", {"government_id_ref": "media://ids/1"}
    )
    assert cert.status == CertificationStatus.PENDING.value
    assert cert.trust_score == 0
    assert cert.max_active_badal == 0
    assert cert.current_active_badal == 0


def test_provider_cannot_edit_another_providers_record(db):
    with pytest.raises(Unauthorized):
        certification_service.upsert_certification(
            db, provider("pilgrim-2"), "pilgrim-1", {"photo_ref": "x"}
        )


def test_provider_cannot_set_review_fields(db):
    with pytest.raises(InvalidTransition):
        certification_service.upsert_certification(
            db, provider(), "pilgrim-1", {"trust_score": 100}
        )


def test_submit_incomplete_lists_missing_items(db):
    certification_service.upsert_certification(
        db, provider(), "pilgrim-1", {"government_id_ref": "media://ids/1"}
    )
    with pytest.raises(NotReady) as exc:
        certification_service.submit(db, provider(), "pilgrim-1")
    assert "Upload a verification photo" in exc.value.missing
    assert len(exc.value.missing) == 3
    assert certification_service.get(db, "pilgrim-1").status == CertificationStatus.PENDING.value


def test_submit_unknown_provider_is_not_found(db):
    with pytest.raises(NotFound):
        certification_service.submit(db, provider(), "pilgrim-1")


def test_submit_then_approve_sets_initial_trust(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    cert = certification_service.submit(db, provider(), "pilgrim-1")
    assert cert.status == CertificationStatus.UNDER_REVIEW.value
    assert cert.submitted_at is not None

    cert = certification_service.approve(db, scholar(), "pilgrim-1", notes="Oath heard in full")
    assert cert.status == CertificationStatus.VERIFIED.value
    assert cert.scholar_approved is True
    assert cert.scholar_id == "scholar-1"
    assert cert.trust_score == 50
    assert cert.max_active_badal == 3
    assert cert.policy_version == "2026.1"


def test_approve_twice_is_a_noop(db):
    cert = make_verified_provider(db)
    approved_at = cert.scholar_approval_date
    again = certification_service.approve(db, scholar("scholar-2"), "pilgrim-1")
    assert again.status == CertificationStatus.VERIFIED.value
    assert again.scholar_id == "scholar-1"
    assert again.scholar_approval_date == approved_at


def test_provider_cannot_approve(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    certification_service.submit(db, provider(), "pilgrim-1")
    with pytest.raises(Unauthorized):
        certification_service.approve(db, provider(), "pilgrim-1")


def test_cannot_approve_pending(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    with pytest.raises(InvalidTransition):
        certification_service.approve(db, scholar(), "pilgrim-1")


def test_return_requires_notes_and_goes_back_to_pending(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    certification_service.submit(db, provider(), "pilgrim-1")

    with pytest.raises(NotesRequired):
        certification_service.return_for_revision(db, scholar(), "pilgrim-1", "   ")

    cert = certification_service.return_for_revision(
        db, scholar(), "pilgrim-1", "Video oath is inaudible"
    )
    assert cert.status == CertificationStatus.PENDING.value
    assert cert.scholar_notes == "Video oath is inaudible"


def test_cannot_edit_while_under_review(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    certification_service.submit(db, provider(), "pilgrim-1")
    with pytest.raises(InvalidTransition):
        certification_service.upsert_certification(db, provider(), "pilgrim-1", {"photo_ref": "new"})


def test_replacing_evidence_clears_its_verification(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    cert = certification_service.verify_documents(db, scholar(), "pilgrim-1", photo=True)
    assert cert.photo_verified is True

    cert = certification_service.upsert_certification(
        db, provider(), "pilgrim-1", {"photo_ref": "media://photos/2"}
    )
    assert cert.photo_verified is False


def test_verify_documents_ignores_absent_evidence(db):
    certification_service.upsert_certification(
        db, provider(), "pilgrim-1", {"government_id_ref": "media://ids/1"}
    )
    cert = certification_service.verify_documents(
        db, scholar(), "pilgrim-1", government_id=True, video_oath=True
    )
    assert cert.government_id_verified is True
    assert cert.video_oath_verified is False


def test_required_flags_cannot_be_cleared(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", {"has_own_umrah": True})
    with pytest.raises(InvalidTransition):
        certification_service.upsert_certification(db, provider(), "pilgrim-1", {"has_own_umrah": None})
    assert certification_service.get(db, "pilgrim-1").has_own_umrah is True


def test_rejected_video_oath_carries_no_reviewer_stamp(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    cert = certification_service.verify_documents(db, scholar(), "pilgrim-1", video_oath=False)
    assert cert.video_oath_verified is False
    assert cert.video_oath_verified_by is None
    assert cert.video_oath_verified_at is None

    cert = certification_service.verify_documents(db, scholar(), "pilgrim-1", video_oath=True)
    assert cert.video_oath_verified_by == "scholar-1"
    assert cert.video_oath_verified_at is not None

    cert = certification_service.verify_documents(db, scholar(), "pilgrim-1", video_oath=False)
    assert cert.video_oath_verified_by is None


def test_suspend_requires_reason(db):
    make_verified_provider(db)
    with pytest.raises(NotesRequired):
        certification_service.suspend(db, scholar(), "pilgrim-1", "")


def test_suspend_and_reinstate(db):
    make_verified_provider(db)
    cert = certification_service.suspend(db, scholar(), "pilgrim-1", "Unverified ritual claims")
    assert cert.status == CertificationStatus.SUSPENDED.value
    assert cert.suspension_reason == "Unverified ritual claims"

    with pytest.raises(InvalidTransition):
        certification_service.suspend(db, scholar(), "pilgrim-1", "again")

    with pytest.raises(Unauthorized):
        certification_service.reinstate(db, scholar(), "pilgrim-1")

    cert = certification_service.reinstate(db, super_admin(), "pilgrim-1", notes="Appeal upheld")
    assert cert.status == CertificationStatus.PENDING.value
    assert cert.scholar_approved is False
    assert cert.reinstated_by == "root-1"


def test_reinstate_to_inactive_then_resubmit_keeps_score(db):
    make_verified_provider(db)
    certification_service.suspend(db, scholar(), "pilgrim-1", "Paused for audit")
    cert = certification_service.reinstate(
        db, super_admin(), "pilgrim-1", target=CertificationStatus.INACTIVE
    )
    assert cert.status == CertificationStatus.INACTIVE.value

    certification_service.submit(db, provider(), "pilgrim-1")
    cert = certification_service.approve(db, scholar(), "pilgrim-1")
    assert cert.status == CertificationStatus.VERIFIED.value
    assert cert.trust_score == 50


def test_reinstate_cannot_jump_to_verified(db):
    make_verified_provider(db)
    certification_service.suspend(db, scholar(), "pilgrim-1", "Audit")
    with pytest.raises(InvalidTransition):
        certification_service.reinstate(
            db, super_admin(), "pilgrim-1", target=CertificationStatus.VERIFIED
        )


def test_review_queue_is_scholar_only(db):
    certification_service.upsert_certification(db, provider(), "pilgrim-1", dict(COMPLETE_EVIDENCE))
    certification_service.submit(db, provider(), "pilgrim-1")

    with pytest.raises(Unauthorized):
        certification_service.list_certifications(db, provider())

    queue = certification_service.list_certifications(
        db, scholar(), status=CertificationStatus.UNDER_REVIEW
    )
    assert [c.provider_id for c in queue] == ["pilgrim-1"]


def test_admin_may_view_any_record(db):
    make_verified_provider(db)
    admin = Caller(id="admin-1", role=Role.ADMIN)
    assert certification_service.get_for_caller(db, admin, "pilgrim-1").provider_id == "pilgrim-1"
    with pytest.raises(Unauthorized):
        certification_service.get_for_caller(db, provider("pilgrim-9"), "pilgrim-1")
