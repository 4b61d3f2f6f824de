from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from linkboard.core.config import get_settings
from linkboard.main import app
from linkboard.services.repository import get_repository
from linkboard.services.scanning import get_scan_dispatcher
from linkboard.services.store import InMemoryLinkRepository

ADMIN_HEADERS = {"Authorization": "Bearer admin-secret"}
SCAN_HEADERS = {"X-API-Key": "scan-key"}


class NullDispatcher:
    def dispatch(self, link_id: str, url: str) -> None:
        return None


@pytest.fixture
def repository() -> InMemoryLinkRepository:
    return InMemoryLinkRepository()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, repository: InMemoryLinkRepository) -> TestClient:
    monkeypatch.setenv("LB_ADMIN_PASSWORD", "admin-secret")
    monkeypatch.setenv("LB_SCAN_CALLBACK_KEY", "scan-key")
    get_settings.cache_clear()

    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_scan_dispatcher] = lambda: NullDispatcher()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_settings.cache_clear()


def _create(client: TestClient, **overrides: Any) -> str:
    payload: dict[str, Any] = {
        "from": "Mika",
        "message": "Palette generator",
        "url": "https://example.com/palette",
        "tags": ["design"],
    }
    payload.update(overrides)
    response = client.post("/links", json=payload)
    assert response.status_code == 201
    return response.json()["id"]


def test_admin_routes_require_bearer_token(client: TestClient) -> None:
    link_id = _create(client)

    missing = client.get("/admin/links")
    assert missing.status_code == 401
    assert missing.json()["detail"] == "admin auth requires bearer token"

    wrong = client.patch(
        f"/admin/links/{link_id}",
        json={"status": "rejected"},
        headers={"Authorization": "Bearer nope"},
    )
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Unauthorized"

    assert client.get(f"/links/{link_id}").status_code == 200


def test_admin_routes_fail_closed_without_configured_password(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("LB_ADMIN_PASSWORD")
    get_settings.cache_clear()

    response = client.get("/admin/links", headers={"Authorization": "Bearer "})
    assert response.status_code == 503


def test_reader_credential_can_read_but_not_moderate(
    client: TestClient, repository: InMemoryLinkRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LB_ADMIN_READER_PASSWORD", "reader-secret")
    get_settings.cache_clear()
    reader_headers = {"Authorization": "Bearer reader-secret"}
    link_id = _create(client)

    assert client.get("/admin/links", headers=reader_headers).status_code == 200
    assert client.get("/admin/links/stats", headers=reader_headers).status_code == 200
    assert client.get(f"/admin/links/{link_id}/events", headers=reader_headers).status_code == 200

    patch = client.patch(f"/admin/links/{link_id}", json={"status": "rejected"}, headers=reader_headers)
    assert patch.status_code == 403
    assert "links:moderate" in patch.json()["detail"]
    assert client.post(f"/admin/links/{link_id}/toggle-flag", headers=reader_headers).status_code == 403
    assert client.delete(f"/admin/links/{link_id}", headers=reader_headers).status_code == 403

    assert repository.links[link_id]["status"] == "approved"
    assert client.patch(f"/admin/links/{link_id}", json={"status": "rejected"}, headers=ADMIN_HEADERS).status_code == 200


def test_patch_applies_allow_listed_fields_and_drops_unknown(
    client: TestClient, repository: InMemoryLinkRepository
) -> None:
    link_id = _create(client)

    response = client.patch(
        f"/admin/links/{link_id}",
        json={"status": "flagged", "notAField": "x", "reportCount": 40, "securityStatus": "safe"},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "flagged"
    assert body["reportCount"] == 0
    assert body["securityStatus"] == "pending"
    stored = repository.links[link_id]
    assert "not_a_field" not in stored
    assert "notAField" not in stored
    assert client.get(f"/links/{link_id}").status_code == 404


def test_patch_edits_content_fields(client: TestClient) -> None:
    link_id = _create(client)

    response = client.patch(
        f"/admin/links/{link_id}",
        json={
            "from": "  Ren ",
            "message": "Updated palette tool",
            "url": "https://example.org/palette",
            "tags": ["design", "tools"],
            "isVerified": True,
        },
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["from"] == "Ren"
    assert body["message"] == "Updated palette tool"
    assert body["url"] == "https://example.org/palette"
    assert body["tags"] == ["design", "tools"]
    assert body["isVerified"] is True


@pytest.mark.parametrize(
    "payload",
    [
        {"tags": []},
        {"tags": ["bogus"]},
        {"status": "deleted"},
        {"url": "javascript:alert(1)"},
    ],
)
def test_patch_rejects_invalid_values(client: TestClient, payload: dict[str, Any]) -> None:
    link_id = _create(client)
    response = client.patch(f"/admin/links/{link_id}", json=payload, headers=ADMIN_HEADERS)
    assert response.status_code == 422


def test_patch_missing_link_returns_not_found(client: TestClient) -> None:
    response = client.patch(
        "/admin/links/00000000-0000-0000-0000-000000000000",
        json={"status": "approved"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 404


def test_toggle_flag_hides_and_restores_link(client: TestClient) -> None:
    link_id = _create(client)

    flagged = client.post(f"/admin/links/{link_id}/toggle-flag", headers=ADMIN_HEADERS)
    assert flagged.json()["status"] == "flagged"
    assert client.get(f"/links/{link_id}").status_code == 404

    restored = client.post(f"/admin/links/{link_id}/toggle-flag", headers=ADMIN_HEADERS)
    assert restored.json()["status"] == "approved"
    assert client.get(f"/links/{link_id}").status_code == 200


def test_admin_view_exposes_moderation_fields_and_clear_reports(client: TestClient) -> None:
    link_id = _create(client)
    client.post(f"/links/{link_id}/reports", json={"reporterId": "r1", "reason": "spam"})
    client.post(f"/links/{link_id}/reports", json={"reporterId": "r2", "reason": "spam"})

    detail = client.get(f"/admin/links/{link_id}", headers=ADMIN_HEADERS).json()
    assert detail["reportCount"] == 2
    assert detail["reportedBy"] == ["r1", "r2"]
    assert detail["securityStatus"] == "pending"
    assert detail["securityScan"] is None

    cleared = client.post(f"/admin/links/{link_id}/reports/clear", headers=ADMIN_HEADERS).json()
    assert cleared["reportCount"] == 0
    assert cleared["reportedBy"] == []

    again = client.post(f"/links/{link_id}/reports", json={"reporterId": "r1", "reason": "spam"})
    assert again.json() == {"success": True, "reportCount": 1}


def test_admin_list_filters_and_stats(client: TestClient) -> None:
    plain_id = _create(client, message="plain")
    reported_id = _create(client, message="reported")
    flagged_id = _create(client, message="flagged")
    scanned_id = _create(client, message="scanned")

    client.post(f"/links/{reported_id}/reports", json={"reporterId": "r1", "reason": "spam"})
    client.post(f"/admin/links/{flagged_id}/toggle-flag", headers=ADMIN_HEADERS)
    client.patch(f"/admin/links/{plain_id}", json={"isVerified": True}, headers=ADMIN_HEADERS)
    for link_id in (plain_id, reported_id, flagged_id):
        client.post(f"/scans/{link_id}/result", json={"verdict": "safe"}, headers=SCAN_HEADERS)
    client.post(f"/scans/{scanned_id}/result", json={"verdict": "suspicious"}, headers=SCAN_HEADERS)

    def messages(link_filter: str) -> set[str]:
        response = client.get("/admin/links", params={"filter": link_filter}, headers=ADMIN_HEADERS)
        assert response.status_code == 200
        return {row["message"] for row in response.json()}

    assert messages("all") == {"plain", "reported", "flagged", "scanned"}
    assert messages("reported") == {"reported"}
    assert messages("flagged") == {"flagged"}
    assert messages("security") == {"scanned"}
    assert messages("verified") == {"plain"}
    assert messages("notverified") == {"reported", "flagged", "scanned"}

    bad_filter = client.get("/admin/links", params={"filter": "everything"}, headers=ADMIN_HEADERS)
    assert bad_filter.status_code == 422

    stats = client.get("/admin/links/stats", headers=ADMIN_HEADERS).json()
    assert stats == {"total": 4, "reported": 1, "flagged": 1, "securityReview": 1, "verified": 1}


def test_events_record_moderation_history(client: TestClient) -> None:
    link_id = _create(client)
    client.post(f"/links/{link_id}/reports", json={"reporterId": "r1", "reason": "spam"})
    client.post(f"/scans/{link_id}/result", json={"verdict": "safe"}, headers=SCAN_HEADERS)
    client.post(f"/admin/links/{link_id}/toggle-flag", headers=ADMIN_HEADERS)

    response = client.get(f"/admin/links/{link_id}/events", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    events = response.json()
    assert [event["eventType"] for event in events] == ["created", "reported", "scan_applied", "flag_toggled"]
    assert all(event["linkId"] == link_id for event in events)


def test_delete_removes_link_everywhere(client: TestClient) -> None:
    link_id = _create(client)

    deleted = client.delete(f"/admin/links/{link_id}", headers=ADMIN_HEADERS)
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}

    assert client.delete(f"/admin/links/{link_id}", headers=ADMIN_HEADERS).status_code == 404
    assert client.get(f"/admin/links/{link_id}", headers=ADMIN_HEADERS).status_code == 404
    assert client.get(f"/links/{link_id}").status_code == 404

    late_scan = client.post(f"/scans/{link_id}/result", json={"verdict": "safe"}, headers=SCAN_HEADERS)
    assert late_scan.status_code == 404
