"""
Tests for the player roster service.
"""
import pytest

from shuttle_ledger.services import payment_service, player_service, session_service
from shuttle_ledger.services.ownership import OrganizerScopeError, PlayerNotFoundError
from shuttle_ledger.services.player_service import DuplicatePhoneError, PlayerInUseError


@pytest.mark.asyncio
async def test_create_player(db_session, organizer_id):
    """Test creating a player trims the name and normalizes the phone number."""
    player = await player_service.create_player(
        db_session, organizer_id, "  Alice  ", phone_number="+65 9123 4567", notes="left-handed"
    )

    assert player["name"] == "Alice"
    assert player["phone_number"] == "+6591234567"
    assert player["is_active"] is True
    assert player["is_temporary"] is False
    assert player["notes"] == "left-handed"
    assert player["organizer_id"] == organizer_id


@pytest.mark.asyncio
async def test_create_player_requires_name(db_session, organizer_id):
    """Test a blank name is rejected."""
    with pytest.raises(ValueError, match="name is required"):
        await player_service.create_player(db_session, organizer_id, "   ")


@pytest.mark.asyncio
async def test_duplicate_phone_rejected_within_organizer(
    db_session, organizer_id, other_organizer_id
):
    """Test a phone number can only be used once per organizer."""
    await player_service.create_player(db_session, organizer_id, "Alice", phone_number="91234567")

    with pytest.raises(DuplicatePhoneError):
        await player_service.create_player(
            db_session, organizer_id, "Bob", phone_number="9123 4567"
        )

    other = await player_service.create_player(
        db_session, other_organizer_id, "Alice", phone_number="91234567"
    )
    assert other["phone_number"] == "91234567"
    assert await player_service.check_phone_exists(db_session, organizer_id, "91234567") is True
    assert await player_service.check_phone_exists(db_session, organizer_id, "80000000") is False


@pytest.mark.asyncio
async def test_update_player(db_session, organizer_id, players):
    """Test updating fields and rejecting unknown ones."""
    alice, bob = players[0]["id"], players[1]["id"]
    await player_service.update_player(db_session, organizer_id, bob, {"phone_number": "81112222"})

    updated = await player_service.update_player(
        db_session, organizer_id, alice, {"name": "Alicia", "notes": "captain"}
    )
    assert updated["name"] == "Alicia"
    assert updated["notes"] == "captain"

    with pytest.raises(DuplicatePhoneError):
        await player_service.update_player(
            db_session, organizer_id, alice, {"phone_number": "81112222"}
        )
    with pytest.raises(ValueError, match="Cannot update fields"):
        await player_service.update_player(db_session, organizer_id, alice, {"organizer_id": "x"})


@pytest.mark.asyncio
async def test_list_players_active_and_inactive(db_session, organizer_id, players):
    """Test deactivated players are hidden unless requested."""
    await player_service.set_player_active(db_session, organizer_id, players[1]["id"], False)

    active = await player_service.list_players(db_session, organizer_id)
    everyone = await player_service.list_players(db_session, organizer_id, include_inactive=True)

    assert [p["name"] for p in active] == ["Alice", "Carol", "Dave"]
    assert len(everyone) == 4


@pytest.mark.asyncio
async def test_bulk_set_active(db_session, organizer_id, players):
    """Test several players can be deactivated at once."""
    ids = [p["id"] for p in players[:3]]
    assert await player_service.bulk_set_active(db_session, organizer_id, ids, False) == 3

    active = await player_service.list_players(db_session, organizer_id)
    assert [p["name"] for p in active] == ["Dave"]
    assert await player_service.bulk_set_active(db_session, organizer_id, [], True) == 0


@pytest.mark.asyncio
async def test_search_players(db_session, organizer_id, players):
    """Test name search is case-insensitive."""
    results = await player_service.search_players(db_session, organizer_id, "AR")
    assert [p["name"] for p in results] == ["Carol"]


@pytest.mark.asyncio
async def test_list_players_with_balances(db_session, organizer_id, players):
    """Test balances and completed session counts are included."""
    ids = [p["id"] for p in players]
    await session_service.record_completed_session(
        db_session, organizer_id, "2026-01-05", ids[:2], court_cost="20.00"
    )
    await session_service.create_planned_session(db_session, organizer_id, "2026-01-12", ids[:2])
    await payment_service.record_payment(db_session, organizer_id, ids[0], "4.00")

    listing = await player_service.list_players_with_balances(db_session, organizer_id)
    rows = {p["name"]: p for p in listing}

    assert rows["Alice"]["current_balance"] == 6.0
    assert rows["Alice"]["session_count"] == 1
    assert rows["Bob"]["total_owed"] == 10.0
    assert rows["Carol"]["current_balance"] == 0.0
    assert rows["Carol"]["session_count"] == 0
    assert rows["Carol"]["last_session_date"] is None


@pytest.mark.asyncio
async def test_delete_player_only_without_history(db_session, organizer_id, players):
    """Test players with sessions or payments can only be deactivated."""
    alice, dave = players[0]["id"], players[3]["id"]
    await payment_service.record_payment(db_session, organizer_id, alice, "5.00")

    with pytest.raises(PlayerInUseError):
        await player_service.delete_player(db_session, organizer_id, alice)

    assert await player_service.delete_player(db_session, organizer_id, dave) is True
    with pytest.raises(PlayerNotFoundError):
        await player_service.get_player(db_session, organizer_id, dave)


@pytest.mark.asyncio
async def test_player_scope(db_session, organizer_id, other_organizer_id, players):
    """Test another organizer cannot read or change a player."""
    with pytest.raises(OrganizerScopeError):
        await player_service.get_player(db_session, other_organizer_id, players[0]["id"])
    with pytest.raises(OrganizerScopeError):
        await player_service.update_player(
            db_session, other_organizer_id, players[0]["id"], {"name": "x"}
        )
    assert await player_service.list_players(db_session, other_organizer_id) == []
