from __future__ import annotations

from tests.conftest import RESOURCE

SUBJECT = {"X-Subject-Id": "patient-1"}


def _book(client, subject="patient-1", time_slot="16:00", resource_key=RESOURCE):
    response = client.post(
        "/api/v1/bookings",
        json={"resource_key": resource_key, "booking_date": "2026-03-02", "time_slot": time_slot},
        headers={"X-Subject-Id": subject},
    )
    assert response.status_code == 201
    return response.json()


def test_token_check_in(client) -> None:
    created = _book(client)

    response = client.post(
        "/api/v1/checkin/token", json={"token": created["token"]}, headers={"X-Staff-Id": "desk-1"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "checked_in"
    assert body["booking"]["checkin_status"] == "checked_in"
    assert body["booking"]["checked_in_by"] == "desk-1"


def test_repeat_scan_is_still_ok(client) -> None:
    token = _book(client)["token"]
    client.post("/api/v1/checkin/token", json={"token": token})

    response = client.post("/api/v1/checkin/token", json={"token": token})

    assert response.status_code == 200
    assert response.json()["outcome"] == "already_checked_in"


def test_invalid_token_advises_manual_lookup(client) -> None:
    response = client.post("/api/v1/checkin/token", json={"token": "ct1.AAAA"})

    assert response.status_code == 422
    body = response.json()
    assert body["outcome"] == "invalid_token"
    assert body["manual_lookup_advised"] is True
    assert body["booking"] is None


def test_manual_check_in(client) -> None:
    _book(client)

    response = client.post("/api/v1/checkin/manual", json={"subject_id": "patient-1"})

    assert response.status_code == 200
    assert response.json()["outcome"] == "checked_in"


def test_manual_check_in_not_found(client) -> None:
    response = client.post(
        "/api/v1/checkin/manual", json={"subject_id": "patient-404", "booking_date": "2026-03-02"}
    )

    assert response.status_code == 404
    assert response.json()["outcome"] == "not_found"


def test_manual_check_in_ambiguous_lists_candidates(client) -> None:
    _book(client)
    _book(client, resource_key="dr-le@district-7")

    response = client.post("/api/v1/checkin/manual", json={"subject_id": "patient-1"})

    assert response.status_code == 409
    body = response.json()
    assert body["outcome"] == "ambiguous"
    assert len(body["candidates"]) == 2


def test_admin_key_is_enforced_when_configured(client, monkeypatch) -> None:
    from pydantic import SecretStr

    from clinic_booking.core.config import settings

    monkeypatch.setattr(settings, "admin_api_key", SecretStr("desk-secret"))

    denied = client.post("/api/v1/checkin/manual", json={"subject_id": "patient-1"})
    allowed = client.post(
        "/api/v1/checkin/manual",
        json={"subject_id": "patient-1"},
        headers={"X-Admin-Key": "desk-secret"},
    )

    assert denied.status_code == 401
    assert denied.json()["code"] == "ADMIN_KEY_INVALID"
    assert allowed.status_code == 404


def test_staff_endpoints_fail_closed_in_production_without_key(client, monkeypatch) -> None:
    from clinic_booking.core.config import settings

    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "admin_api_key", None)

    response = client.post("/api/v1/checkin/manual", json={"subject_id": "patient-1"})
    sweep = client.post("/api/v1/admin/no-show-sweep")

    assert response.status_code == 401
    assert response.json()["code"] == "ADMIN_KEY_REQUIRED"
    assert sweep.status_code == 401
