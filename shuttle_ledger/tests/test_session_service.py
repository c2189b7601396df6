"""
Tests for session recording, editing, cancellation and reads.
"""
import pytest
from sqlalchemy import select

from shuttle_ledger.database.models import Player, SessionParticipant
from shuttle_ledger.services import (
    balance_service,
    location_service,
    player_service,
    session_service,
    settings_service,
)
from shuttle_ledger.services.calculation_service import CostValidationError
from shuttle_ledger.services.ownership import (
    OrganizerScopeError,
    PlayerNotFoundError,
    SessionNotFoundError,
)
from shuttle_ledger.services.session_service import SessionStateError


async def _balance(db_session, organizer_id, player_id):
    balance = await balance_service.get_player_balance(db_session, organizer_id, player_id)
    return balance["current_balance"]


# ============================================================================
# Recording completed sessions
# ============================================================================

@pytest.mark.asyncio
async def test_record_completed_session_charges_participants(db_session, organizer_id, players):
    """Test the 74.00 session charges each of four players 18.50."""
    ids = [p["id"] for p in players]
    result = await session_service.record_completed_session(
        db_session,
        organizer_id,
        "2026-01-21",
        ids,
        hours_played=2,
        court_rate="25.00",
        shuttlecocks_used=3,
        shuttlecock_rate="8.00",
        other_costs=0,
        title="Wednesday doubles",
        start_time="19:00",
        end_time="21:00",
    )
    await db_session.commit()

    assert result["status"] == "completed"
    assert result["session_date"] == "2026-01-21"
    assert result["title"] == "Wednesday doubles"
    assert result["start_time"] == "19:00:00"
    assert result["court_cost"] == 50.0
    assert result["shuttlecock_cost"] == 24.0
    assert result["total_cost"] == 74.0
    assert result["cost_per_player"] == 18.5
    assert result["player_count"] == 4
    assert result["court_rate_per_hour"] == 25.0
    assert result["hours_played"] == 2.0
    assert result["shuttlecocks_used"] == 3
    assert [p["amount_owed"] for p in result["participants"]] == [18.5] * 4
    assert sum(p["amount_owed"] for p in result["participants"]) == 74.0

    for player_id in ids:
        assert await _balance(db_session, organizer_id, player_id) == 18.5


@pytest.mark.asyncio
async def test_record_session_uses_default_rates(db_session, organizer_id, players):
    """Test missing rates fall back to the organizer's settings."""
    await settings_service.update_organizer_settings(
        db_session, organizer_id, {"default_court_rate": 30, "default_shuttlecock_rate": 2}
    )
    ids = [p["id"] for p in players]
    result = await session_service.record_completed_session(
        db_session, organizer_id, "2026-01-21", ids, hours_played=2, shuttlecocks_used=4
    )

    assert result["court_cost"] == 60.0
    assert result["shuttlecock_cost"] == 8.0
    assert result["cost_per_player"] == 17.0


@pytest.mark.asyncio
async def test_record_session_with_explicit_costs(db_session, organizer_id, players):
    """Test costs entered directly are split without rate fields."""
    ids = [p["id"] for p in players[:3]]
    result = await session_service.record_completed_session(
        db_session,
        organizer_id,
        "2026-01-22",
        ids,
        court_cost="45.00",
        shuttlecock_cost="9.00",
        other_costs="3.00",
    )

    assert result["total_cost"] == 57.0
    assert result["cost_per_player"] == 19.0
    assert result["hours_played"] is None
    assert result["court_rate_per_hour"] is None


@pytest.mark.asyncio
async def test_total_cost_matches_the_split_total(db_session, organizer_id, players):
    """Test the reported total is the rounded total the charges come from."""
    result = await session_service.record_completed_session(
        db_session,
        organizer_id,
        "2026-01-23",
        [players[0]["id"]],
        court_cost="10.00",
        other_costs="0.05",
    )

    assert result["other_costs"] == 0.05
    assert result["total_cost"] == 10.1
    assert result["cost_per_player"] == 10.1
    assert [p["amount_owed"] for p in result["participants"]] == [10.1]


@pytest.mark.asyncio
async def test_record_session_creates_temporary_players(db_session, organizer_id, players):
    """Test drop-in names become temporary players who are charged too."""
    ids = [p["id"] for p in players[:3]]
    result = await session_service.record_completed_session(
        db_session, organizer_id, "2026-01-23", ids, new_player_names=["Eve", "  "], court_cost=40
    )
    await db_session.commit()

    assert result["player_count"] == 4
    eve = next(p for p in result["participants"] if p["player_name"] == "Eve")
    assert eve["is_temporary"] is True
    assert eve["amount_owed"] == 10.0
    assert await _balance(db_session, organizer_id, eve["player_id"]) == 10.0


@pytest.mark.asyncio
async def test_record_session_rejects_invalid_costs(db_session, organizer_id, players):
    """Test invalid usage inputs leave nothing behind."""
    with pytest.raises(CostValidationError):
        await session_service.record_completed_session(
            db_session, organizer_id, "2026-01-21", [players[0]["id"]], hours_played=0
        )


@pytest.mark.asyncio
async def test_record_session_rejects_duplicate_participant(db_session, organizer_id, players):
    """Test the same player cannot be listed twice."""
    player_id = players[0]["id"]
    with pytest.raises(CostValidationError):
        await session_service.record_completed_session(
            db_session, organizer_id, "2026-01-21", [player_id, player_id], court_cost=10
        )


@pytest.mark.asyncio
async def test_record_session_rejects_foreign_player(
    db_session, organizer_id, other_organizer_id, players
):
    """Test a player from another organizer cannot be charged."""
    outsider = await player_service.create_player(db_session, other_organizer_id, "Mallory")
    with pytest.raises(OrganizerScopeError):
        await session_service.record_completed_session(
            db_session,
            organizer_id,
            "2026-01-21",
            [players[0]["id"], outsider["id"]],
            court_cost=10,
        )


@pytest.mark.asyncio
async def test_record_session_rejects_unknown_player(db_session, organizer_id, players):
    """Test an unknown participant id is reported as not found."""
    with pytest.raises(PlayerNotFoundError):
        await session_service.record_completed_session(
            db_session, organizer_id, "2026-01-21", ["missing"], court_cost=10
        )


# ============================================================================
# Editing
# ============================================================================

@pytest.mark.asyncio
async def test_update_completed_session_recomputes_removed_players(
    db_session, organizer_id, players
):
    """Test removed participants lose their charge and new ones gain it."""
    ids = [p["id"] for p in players]
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-01", ids[:3], court_cost="30.00"
    )
    await db_session.commit()

    updated = await session_service.update_completed_session(
        db_session, organizer_id, created["id"], [ids[0], ids[3]], court_cost="50.00"
    )
    await db_session.commit()

    assert updated["player_count"] == 2
    assert sorted(p["player_id"] for p in updated["participants"]) == sorted([ids[0], ids[3]])
    assert await _balance(db_session, organizer_id, ids[0]) == 25.0
    assert await _balance(db_session, organizer_id, ids[1]) == 0.0
    assert await _balance(db_session, organizer_id, ids[2]) == 0.0
    assert await _balance(db_session, organizer_id, ids[3]) == 25.0

    rows = await db_session.execute(
        select(SessionParticipant).where(SessionParticipant.session_id == created["id"])
    )
    assert len(rows.scalars().all()) == 2


@pytest.mark.asyncio
async def test_update_session_details(db_session, organizer_id, players):
    """Test non-financial fields change without touching charges."""
    location = await location_service.create_location(db_session, organizer_id, "Sports Hall")
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-01", [players[0]["id"]], court_cost="12.00"
    )

    updated = await session_service.update_session_details(
        db_session,
        organizer_id,
        created["id"],
        {"title": "Friday social", "location_id": location["id"], "session_date": "2026-02-03"},
    )

    assert updated["title"] == "Friday social"
    assert updated["location_id"] == location["id"]
    assert updated["location"] == "Sports Hall"
    assert updated["session_date"] == "2026-02-03"
    assert updated["participants"][0]["amount_owed"] == 12.0
    balance = await balance_service.get_player_balance(db_session, organizer_id, players[0]["id"])
    assert balance["last_session_date"] == "2026-02-03"

    with pytest.raises(ValueError, match="Cannot update fields"):
        await session_service.update_session_details(
            db_session, organizer_id, created["id"], {"court_cost": 1}
        )


# ============================================================================
# Planned sessions
# ============================================================================

@pytest.mark.asyncio
async def test_planned_session_carries_no_charge(db_session, organizer_id, players):
    """Test planned participants owe nothing until the session is completed."""
    ids = [p["id"] for p in players[:3]]
    planned = await session_service.create_planned_session(
        db_session, organizer_id, "2026-03-01", ids, court_cost="60.00"
    )
    await db_session.commit()

    assert planned["status"] == "planned"
    assert all(p["amount_owed"] is None for p in planned["participants"])
    assert await _balance(db_session, organizer_id, ids[0]) == 0.0


@pytest.mark.asyncio
async def test_planned_session_requires_date(db_session, organizer_id, players):
    """Test a planned session needs a date."""
    with pytest.raises(ValueError, match="date is required"):
        await session_service.create_planned_session(db_session, organizer_id, None)


@pytest.mark.asyncio
async def test_convert_planned_to_completed(db_session, organizer_id, players):
    """Test completing a planned session charges the planned participants."""
    ids = [p["id"] for p in players[:3]]
    planned = await session_service.create_planned_session(
        db_session, organizer_id, "2026-03-01", ids, court_cost="60.00"
    )
    await db_session.commit()

    completed = await session_service.convert_planned_to_completed(
        db_session, organizer_id, planned["id"]
    )
    await db_session.commit()

    assert completed["status"] == "completed"
    assert [p["amount_owed"] for p in completed["participants"]] == [20.0] * 3
    for player_id in ids:
        assert await _balance(db_session, organizer_id, player_id) == 20.0

    with pytest.raises(SessionStateError):
        await session_service.convert_planned_to_completed(db_session, organizer_id, planned["id"])


@pytest.mark.asyncio
async def test_convert_planned_with_new_participants_and_usage(db_session, organizer_id, players):
    """Test completion can change the player list and use actual usage."""
    ids = [p["id"] for p in players]
    planned = await session_service.create_planned_session(
        db_session, organizer_id, "2026-03-01", ids[:2]
    )

    completed = await session_service.convert_planned_to_completed(
        db_session,
        organizer_id,
        planned["id"],
        participant_ids=ids,
        hours_played=2,
        court_rate=25,
        shuttlecocks_used=3,
        shuttlecock_rate=8,
    )

    assert completed["total_cost"] == 74.0
    assert completed["player_count"] == 4
    assert await _balance(db_session, organizer_id, ids[3]) == 18.5


@pytest.mark.asyncio
async def test_update_completed_rejects_planned(db_session, organizer_id, players):
    """Test a planned session cannot be edited as if it were completed."""
    planned = await session_service.create_planned_session(
        db_session, organizer_id, "2026-03-01", [players[0]["id"]]
    )
    with pytest.raises(SessionStateError):
        await session_service.update_completed_session(
            db_session, organizer_id, planned["id"], [players[0]["id"]], court_cost=1
        )


# ============================================================================
# Cancel / delete
# ============================================================================

@pytest.mark.asyncio
async def test_cancel_session_removes_charges(db_session, organizer_id, players):
    """Test a cancelled session no longer counts toward balances."""
    ids = [p["id"] for p in players[:2]]
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-10", ids, court_cost="20.00"
    )
    await db_session.commit()
    assert await _balance(db_session, organizer_id, ids[0]) == 10.0

    cancelled = await session_service.cancel_session(db_session, organizer_id, created["id"])
    await db_session.commit()

    assert cancelled["status"] == "cancelled"
    assert await _balance(db_session, organizer_id, ids[0]) == 0.0
    assert await _balance(db_session, organizer_id, ids[1]) == 0.0

    with pytest.raises(SessionStateError):
        await session_service.cancel_session(db_session, organizer_id, created["id"])


@pytest.mark.asyncio
async def test_delete_session(db_session, organizer_id, players):
    """Test deleting a session removes its participants and charges."""
    ids = [p["id"] for p in players[:2]]
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-10", ids, court_cost="20.00"
    )
    await db_session.commit()

    assert await session_service.delete_session(db_session, organizer_id, created["id"]) is True
    await db_session.commit()

    rows = await db_session.execute(
        select(SessionParticipant).where(SessionParticipant.session_id == created["id"])
    )
    assert rows.scalars().all() == []
    assert await _balance(db_session, organizer_id, ids[0]) == 0.0
    with pytest.raises(SessionNotFoundError):
        await session_service.get_session(db_session, organizer_id, created["id"])


@pytest.mark.asyncio
async def test_session_scope(db_session, organizer_id, other_organizer_id, players):
    """Test another organizer cannot read, cancel or delete a session."""
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-10", [players[0]["id"]], court_cost="20.00"
    )
    with pytest.raises(OrganizerScopeError):
        await session_service.get_session(db_session, other_organizer_id, created["id"])
    with pytest.raises(OrganizerScopeError):
        await session_service.cancel_session(db_session, other_organizer_id, created["id"])
    with pytest.raises(OrganizerScopeError):
        await session_service.delete_session(db_session, other_organizer_id, created["id"])
    with pytest.raises(OrganizerScopeError):
        await session_service.list_sessions(db_session, "")


# ============================================================================
# Reads
# ============================================================================

@pytest.mark.asyncio
async def test_list_sessions_and_stats(db_session, organizer_id, players):
    """Test filters, upcoming/recent lists, player history and stats."""
    ids = [p["id"] for p in players]
    first = await session_service.record_completed_session(
        db_session, organizer_id, "2026-01-05", ids, court_cost="40.00"
    )
    await session_service.record_completed_session(
        db_session, organizer_id, "2026-01-12", ids[:2], court_cost="30.00"
    )
    upcoming = await session_service.create_planned_session(
        db_session, organizer_id, "2099-06-01", ids
    )
    await db_session.commit()

    all_sessions = await session_service.list_sessions(db_session, organizer_id)
    assert [s["session_date"] for s in all_sessions] == ["2099-06-01", "2026-01-12", "2026-01-05"]

    completed = await session_service.list_sessions(db_session, organizer_id, status="completed")
    assert len(completed) == 2

    january = await session_service.list_sessions(
        db_session, organizer_id, date_from="2026-01-01", date_to="2026-01-10"
    )
    assert [s["id"] for s in january] == [first["id"]]

    with pytest.raises(ValueError):
        await session_service.list_sessions(db_session, organizer_id, status="postponed")

    upcoming_sessions = await session_service.list_upcoming_sessions(db_session, organizer_id)
    assert [s["id"] for s in upcoming_sessions] == [upcoming["id"]]
    recent = await session_service.list_recent_sessions(db_session, organizer_id, limit=1)
    assert [s["session_date"] for s in recent] == ["2026-01-12"]

    history = await session_service.list_player_sessions(db_session, organizer_id, ids[3])
    assert [(s["session_date"], s["amount_owed"]) for s in history] == [
        ("2099-06-01", None),
        ("2026-01-05", 10.0),
    ]

    stats = await session_service.get_session_stats(db_session, organizer_id)
    assert stats["total_sessions"] == 3
    assert stats["completed_sessions"] == 2
    assert stats["planned_sessions"] == 1
    assert stats["total_revenue"] == 70.0
    assert stats["average_session_cost"] == 35.0
    assert stats["average_players_per_session"] == 3.0


@pytest.mark.asyncio
async def test_temporary_player_flag_persisted(db_session, organizer_id, players):
    """Test drop-ins are stored as temporary players in the roster."""
    await session_service.record_completed_session(
        db_session, organizer_id, "2026-01-05", [], new_player_names=["Zed"], court_cost=8
    )
    result = await db_session.execute(select(Player).where(Player.name == "Zed"))
    assert result.scalar_one().is_temporary is True
