import redis

from badal_trust.api import system

from conftest import caller_headers

PROVIDER = caller_headers("pilgrim-1", "provider")
SCHOLAR = caller_headers("scholar-1", "scholar")

EVIDENCE = {
    "government_id_ref": "media://ids/1",
    "photo_ref": "media://photos/1",
    "has_own_umrah": True,
    "own_umrah_date": "2023-03-14",
    "video_oath_ref": "media://oaths/1",
}


def _verify_provider(client):
    assert client.put("/certifications/pilgrim-1", json=EVIDENCE, headers=PROVIDER).status_code == 200
    assert client.post("/certifications/pilgrim-1/submit", headers=PROVIDER).status_code == 200
    response = client.post("/certifications/pilgrim-1/approve", json={}, headers=SCHOLAR)
    assert response.status_code == 200
    return response.json()


def test_root(client):
    assert client.get("/").json()["service"] == "Badal Trust"


def test_health_reports_database(client, monkeypatch):
    def unreachable(*args, **kwargs):
        raise redis.ConnectionError("unreachable")

    monkeypatch.setattr(system.redis, "from_url", unreachable)
    body = client.get("/health").json()
    assert body["database"] == "healthy"
    assert body["redis"] == "unhealthy"
    assert body["policy_version"] == "2026.1"


def test_caller_identity_is_required(client):
    assert client.get("/certifications/pilgrim-1").status_code == 401
    response = client.get(
        "/certifications/pilgrim-1", headers=caller_headers("pilgrim-1", "pilot")
    )
    assert response.status_code == 401


def test_readiness_before_and_after_evidence(client):
    body = client.get("/certifications/pilgrim-1/readiness", headers=PROVIDER).json()
    assert body["completion_percentage"] == 0
    assert body["ready"] is False

    client.put(
        "/certifications/pilgrim-1",
        json={"government_id_ref": "media://ids/1", "photo_ref": "media://photos/1"},
        headers=PROVIDER,
    )
    body = client.get("/certifications/pilgrim-1/readiness", headers=PROVIDER).json()
    assert body["completion_percentage"] == 50
    assert len(body["missing"]) == 2


def test_submit_incomplete_returns_missing_list(client):
    client.put("/certifications/pilgrim-1", json={"photo_ref": "p"}, headers=PROVIDER)
    response = client.post("/certifications/pilgrim-1/submit", headers=PROVIDER)
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "not_ready"
    assert len(body["missing"]) == 3


def test_certification_flow(client):
    body = _verify_provider(client)
    assert body["status"] == "verified"
    assert body["trust_score"] == 50
    assert body["max_active_badal"] == 3

    response = client.post("/certifications/pilgrim-1/approve", json={}, headers=PROVIDER)
    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"


def test_return_without_notes_is_rejected(client):
    client.put("/certifications/pilgrim-1", json=EVIDENCE, headers=PROVIDER)
    client.post("/certifications/pilgrim-1/submit", headers=PROVIDER)
    response = client.post("/certifications/pilgrim-1/return", json={"notes": ""}, headers=SCHOLAR)
    assert response.status_code == 422
    assert response.json()["error"] == "notes_required"


def test_violation_endpoint(client):
    _verify_provider(client)
    response = client.post(
        "/certifications/pilgrim-1/violations",
        json={"reason": "Skipped Sa'i evidence", "severity": "critical"},
        headers=SCHOLAR,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["certification"]["trust_score"] == 10
    assert body["suspension_recommended"] is True
    assert body["certification"]["status"] == "verified"

    queue = client.get(
        "/certifications", params={"suspension_recommended": True}, headers=SCHOLAR
    ).json()
    assert [c["provider_id"] for c in queue] == ["pilgrim-1"]


def test_capacity_endpoints_require_api_key(client):
    response = client.post("/capacity/reserve", json={"provider_id": "pilgrim-1"})
    assert response.status_code == 401


def test_reserve_and_release_over_http(client, api_key_headers):
    _verify_provider(client)
    ids = []
    for i in range(3):
        response = client.post(
            "/capacity/reserve",
            json={"provider_id": "pilgrim-1", "booking_id": f"booking-{i}"},
            headers=api_key_headers,
        )
        assert response.status_code == 200
        ids.append(response.json()["id"])

    response = client.post(
        "/capacity/reserve",
        json={"provider_id": "pilgrim-1", "booking_id": "booking-9"},
        headers=api_key_headers,
    )
    assert response.status_code == 409
    assert response.json()["error"] == "capacity_exceeded"

    usage = client.get("/certifications/pilgrim-1/capacity", headers=PROVIDER).json()
    assert usage["available"] == 0

    release = {"provider_id": "pilgrim-1", "reservation_id": ids[0], "reason": "cancelled"}
    assert client.post("/capacity/release", json=release, headers=api_key_headers).json()["released"] is True
    assert client.post("/capacity/release", json=release, headers=api_key_headers).json()["released"] is False

    active = client.get("/capacity/pilgrim-1/reservations", headers=api_key_headers).json()
    assert sorted(r["id"] for r in active) == sorted(ids[1:])


def test_unverified_provider_cannot_reserve(client, api_key_headers):
    response = client.post(
        "/capacity/reserve", json={"provider_id": "pilgrim-1"}, headers=api_key_headers
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ineligible"


def test_ritual_to_certificate_to_public_verification(client, api_key_headers):
    _verify_provider(client)
    client.post(
        "/capacity/reserve",
        json={"provider_id": "pilgrim-1", "booking_id": "booking-1"},
        headers=api_key_headers,
    )

    event_ids = []
    for order, step in enumerate(["ihram", "tawaf_start", "tawaf_complete"], start=1):
        response = client.post(
            "/rituals/bookings/booking-1/events",
            json={
                "beneficiary_id": "beneficiary-1",
                "ritual_step": step,
                "step_order": order,
                "service_type": "umrah",
                "timestamp": f"2026-05-01T06:{10 * order:02d}:00Z",
                "evidence": {
                    "media_type": "video",
                    "media_hash": f"hash-{order}",
                    "device_fingerprint": "device-a",
                    "beneficiary_name_mentioned": True,
                },
            },
            headers=PROVIDER,
        )
        assert response.status_code == 200, response.text
        assert response.json()["is_flagged"] is False
        event_ids.append(response.json()["id"])

    duplicate = client.post(
        "/rituals/bookings/booking-1/events",
        json={"beneficiary_id": "beneficiary-1", "ritual_step": "tawaf_start", "step_order": 2},
        headers=PROVIDER,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "duplicate_step"

    progress = client.get("/rituals/bookings/booking-1/progress", headers=PROVIDER).json()
    assert progress["next_step"]["step"] == "maqam_ibrahim"

    issue_request = {
        "booking_id": "booking-1",
        "pilgrim_id": "pilgrim-1",
        "booking_status": "completed",
        "beneficiary_name": "Fatima Ahmad",
        "service_type": "umrah",
        "completed_date": "2026-05-01",
    }
    blocked = client.post("/certificates/issue", json=issue_request, headers=api_key_headers)
    assert blocked.status_code == 409
    assert blocked.json()["error"] == "not_all_steps_verified"

    for event_id in event_ids:
        response = client.post(f"/rituals/events/{event_id}/verify", json={}, headers=SCHOLAR)
        assert response.json()["verified"] is True

    issued = client.post("/certificates/issue", json=issue_request, headers=api_key_headers)
    assert issued.status_code == 200
    assert issued.json()["already_issued"] is False
    certificate = issued.json()["certificate"]

    again = client.post("/certificates/issue", json=issue_request, headers=api_key_headers).json()
    assert again["already_issued"] is True
    assert again["certificate"]["certificate_number"] == certificate["certificate_number"]

    cert = client.get("/certifications/pilgrim-1", headers=PROVIDER).json()
    assert cert["trust_score"] == 52
    assert cert["total_completed_rituals"] == 1
    assert cert["current_active_badal"] == 0

    public = client.get("/verify", params={"code": certificate["qr_verification_code"]})
    assert public.status_code == 200
    assert public.json()["certificate_number"] == certificate["certificate_number"]
    assert "pilgrim_id" not in public.json()


def test_public_verification_miss_is_uniform(client):
    unknown = client.get("/verify", params={"code": "BDL-2026-000404"})
    malformed = client.get("/verify", params={"code": "%%%not-a-code"})
    missing = client.get("/verify")
    for response in (unknown, malformed, missing):
        assert response.status_code == 404
        assert response.json() == {"valid": False, "detail": "Certificate not found"}


def test_null_for_required_evidence_flag_is_rejected(client):
    response = client.put("/certifications/pilgrim-1", json={"has_own_umrah": True}, headers=PROVIDER)
    assert response.status_code == 200

    response = client.put("/certifications/pilgrim-1", json={"has_own_umrah": None}, headers=PROVIDER)
    assert response.status_code == 422
    body = client.get("/certifications/pilgrim-1", headers=PROVIDER).json()
    assert body["has_own_umrah"] is True


def test_progress_of_another_providers_booking_is_forbidden(client):
    client.post(
        "/rituals/bookings/booking-1/events",
        json={"beneficiary_id": "beneficiary-1", "ritual_step": "ihram", "step_order": 1},
        headers=PROVIDER,
    )
    other = caller_headers("pilgrim-2", "provider")

    assert client.get("/rituals/bookings/booking-1/events", headers=other).status_code == 403
    response = client.get("/rituals/bookings/booking-1/progress", headers=other)
    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"

    response = client.get("/rituals/bookings/booking-1/progress", headers=SCHOLAR)
    assert response.status_code == 200
    assert response.json()["recorded_steps"] == ["ihram"]
