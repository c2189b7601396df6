"""
HTTP tests for the API routes.

Requests go through httpx's ASGI transport so the app and the test share one
event loop; the database dependency is pointed at the test engine.
"""
import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shuttle_ledger.api.main import app
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.services import auth_service


@pytest_asyncio.fixture
async def client(session_maker):
    """Async HTTP client with the database dependency overridden."""

    async def override_get_db_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def other_headers(other_organizer_id):
    token = auth_service.create_organizer_token(other_organizer_id)
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Health and authentication
# ============================================================================

@pytest.mark.asyncio
async def test_health_check(client):
    """Test the health endpoint reports a connected database."""
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "connected"


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client):
    """Test requests without credentials are refused."""
    response = await client.get("/api/players")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client):
    """Test a token signed with another key is refused."""
    response = await client.get(
        "/api/players", headers={"Authorization": "Bearer not-a-real-token"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication token"


# ============================================================================
# Players and error mapping
# ============================================================================

@pytest.mark.asyncio
async def test_create_and_list_players(client, auth_headers):
    """Test players created over HTTP are listed by name."""
    for name in ("Bob", "Alice"):
        response = await client.post("/api/players", json={"name": name}, headers=auth_headers)
        assert response.status_code == 200

    response = await client.get("/api/players", headers=auth_headers)
    assert [p["name"] for p in response.json()] == ["Alice", "Bob"]

    response = await client.get("/api/players", params={"q": "ali"}, headers=auth_headers)
    assert [p["name"] for p in response.json()] == ["Alice"]


@pytest.mark.asyncio
async def test_service_errors_map_to_status_codes(client, auth_headers, other_headers):
    """Test validation, not-found and ownership errors map to 400, 404 and 403."""
    response = await client.post(
        "/api/players", json={"name": "Alice", "phone_number": "91234567"}, headers=auth_headers
    )
    alice = response.json()

    response = await client.post(
        "/api/players", json={"name": "Bob", "phone_number": "91234567"}, headers=auth_headers
    )
    assert response.status_code == 400
    assert "already registered" in response.json()["detail"]

    response = await client.get("/api/players/missing", headers=auth_headers)
    assert response.status_code == 404

    response = await client.get(f"/api/players/{alice['id']}", headers=other_headers)
    assert response.status_code == 403

    response = await client.post("/api/players", json={"name": ""}, headers=auth_headers)
    assert response.status_code == 422


# ============================================================================
# Sessions, payments and balances
# ============================================================================

@pytest.mark.asyncio
async def test_session_payment_and_balance_flow(client, auth_headers):
    """Test recording a session and a payment updates the balance endpoint."""
    ids = []
    for name in ("Alice", "Bob", "Carol", "Dave"):
        response = await client.post("/api/players", json={"name": name}, headers=auth_headers)
        ids.append(response.json()["id"])

    response = await client.post(
        "/api/sessions",
        json={"session_date": "2026-02-01", "participant_ids": ids, "court_cost": 74},
        headers=auth_headers,
    )
    assert response.status_code == 200
    session = response.json()
    assert session["cost_per_player"] == 18.5
    assert session["player_count"] == 4

    response = await client.get(f"/api/players/{ids[0]}/balance", headers=auth_headers)
    balance = response.json()
    assert balance["current_balance"] == 18.5
    assert balance["status"] == "debt"
    assert balance["suggestions"] == {
        "settle_debt": 18.5,
        "round_up_amount": 20.0,
        "minimum_payment": 9.25,
    }

    response = await client.post(
        "/api/payments",
        json={"player_id": ids[0], "amount": 20, "payment_method": "paynow"},
        headers=auth_headers,
    )
    assert response.status_code == 200

    response = await client.get("/api/balances", headers=auth_headers)
    by_name = {b["player_name"]: b["current_balance"] for b in response.json()}
    assert by_name == {"Alice": -1.5, "Bob": 18.5, "Carol": 18.5, "Dave": 18.5}

    response = await client.get("/api/balances/summary", headers=auth_headers)
    assert response.status_code == 200

    response = await client.post(
        "/api/payments", json={"player_id": ids[0], "amount": 0}, headers=auth_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_calculate_and_rates(client, auth_headers):
    """Test the cost preview and rate lookups."""
    response = await client.post(
        "/api/sessions/calculate",
        json={
            "hours": 2,
            "court_rate": 25,
            "shuttlecocks": 4,
            "shuttlecock_rate": 2,
            "player_count": 4,
        },
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["total_cost"] == 58.0

    response = await client.post(
        "/api/sessions/calculate",
        json={
            "hours": 0,
            "court_rate": 25,
            "shuttlecocks": 4,
            "shuttlecock_rate": 2,
            "player_count": 4,
        },
        headers=auth_headers,
    )
    assert response.status_code == 400

    response = await client.get(
        "/api/rates", params={"court_type": "outdoor"}, headers=auth_headers
    )
    assert response.json()["court_rate"] == 15.0

    response = await client.get("/api/rates/presets", headers=auth_headers)
    assert {p["name"] for p in response.json()} == {
        "indoor_peak",
        "indoor_off_peak",
        "outdoor",
        "community",
    }


# ============================================================================
# Backup and reset
# ============================================================================

@pytest.mark.asyncio
async def test_export_download_and_import_upload(client, auth_headers, other_headers, ledger):
    """Test an exported file can be uploaded into another organizer."""
    response = await client.post("/api/backup/export", json={}, headers=auth_headers)
    assert response.status_code == 200
    disposition = response.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="badminton-backup-')
    archive = response.json()
    assert archive["metadata"]["total_records"] == 24

    response = await client.get("/api/backup/export/preview", headers=auth_headers)
    assert response.json()["total_records"] == 24

    content = json.dumps(archive).encode("utf-8")
    response = await client.post(
        "/api/backup/validate",
        files={"file": ("backup.json", content, "application/json")},
        headers=other_headers,
    )
    assert response.status_code == 200
    assert response.json()["validate_only"] is True

    response = await client.post(
        "/api/backup/import",
        files={"file": ("backup.json", content, "application/json")},
        data={"conflict_resolution": "skip_duplicates", "clear_existing_data": "false"},
        headers=other_headers,
    )
    assert response.status_code == 200
    result = response.json()
    assert result["success"] is True
    assert result["records_created"]["players"] == 4

    response = await client.get("/api/players", headers=other_headers)
    assert [p["name"] for p in response.json()] == ["Alice", "Bob", "Carol", "Dave"]


@pytest.mark.asyncio
async def test_backup_upload_errors(client, auth_headers):
    """Test a non-JSON upload is rejected and cancel needs a running import."""
    response = await client.post(
        "/api/backup/import",
        files={"file": ("backup.csv", b"a,b", "text/csv")},
        headers=auth_headers,
    )
    assert response.status_code == 400

    response = await client.post(
        "/api/backup/validate",
        files={"file": ("backup.json", b"{broken", "application/json")},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid JSON format"

    response = await client.post("/api/backup/import/cancel", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reset_requires_confirmation(client, auth_headers, ledger):
    """Test data is only wiped when the reset is confirmed."""
    response = await client.post("/api/backup/reset", json={}, headers=auth_headers)
    assert response.status_code == 400

    response = await client.post("/api/backup/reset", json={"confirm": True}, headers=auth_headers)
    assert response.status_code == 200
    deleted = response.json()["deleted"]
    assert deleted["players"] == 4
    assert deleted["payments"] == 5
    assert deleted["credit_transfers"] == 1

    response = await client.get(
        "/api/players", params={"include_inactive": True}, headers=auth_headers
    )
    assert response.json() == []
