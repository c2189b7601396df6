"""
Tests for the balance projection: recompute, reads and payment suggestions.
"""
import itertools
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from shuttle_ledger.database.models import (
    Payment,
    PlayerBalance,
    Session,
    SessionParticipant,
    SessionStatus,
)
from shuttle_ledger.services import (
    balance_service,
    payment_service,
    player_service,
    session_service,
)
from shuttle_ledger.services.ownership import OrganizerScopeError


async def _expected_balance(db_session, player_id):
    """Owed over completed sessions minus every payment, straight from the fact tables."""
    owed = await db_session.execute(
        select(func.coalesce(func.sum(SessionParticipant.amount_owed), 0))
        .join(Session, Session.id == SessionParticipant.session_id)
        .where(
            SessionParticipant.player_id == player_id,
            Session.status == SessionStatus.COMPLETED,
        )
    )
    paid = await db_session.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.player_id == player_id)
    )
    return Decimal(str(owed.scalar_one())).quantize(Decimal("0.01")) - Decimal(
        str(paid.scalar_one())
    ).quantize(Decimal("0.01"))


async def _balance_row(db_session, player_id):
    result = await db_session.execute(
        select(PlayerBalance).where(PlayerBalance.player_id == player_id)
    )
    row = result.scalar_one()
    await db_session.refresh(row)
    return (
        row.id,
        row.total_owed,
        row.total_paid,
        row.current_balance,
        row.last_session_date,
        row.last_payment_date,
        row.created_at,
        row.updated_at,
    )


# ============================================================================
# Balance invariant
# ============================================================================

async def _op_completed_session(db_session, organizer_id, ids):
    await session_service.record_completed_session(
        db_session,
        organizer_id,
        "2026-03-01",
        ids,
        hours_played=2,
        court_rate="25.00",
        shuttlecocks_used=3,
        shuttlecock_rate="8.00",
    )


async def _op_payment(db_session, organizer_id, ids):
    await payment_service.record_payment(db_session, organizer_id, ids[0], "30.00", "paynow")


async def _op_deleted_payment(db_session, organizer_id, ids):
    payment = await payment_service.record_payment(db_session, organizer_id, ids[0], "12.00")
    await payment_service.delete_payment(db_session, organizer_id, payment["id"])


async def _op_cancelled_session(db_session, organizer_id, ids):
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-03-05", ids[:2], court_cost="40.00"
    )
    await session_service.cancel_session(db_session, organizer_id, created["id"])


async def _op_planned_session(db_session, organizer_id, ids):
    await session_service.create_planned_session(
        db_session, organizer_id, "2026-03-09", ids, court_cost="60.00"
    )


async def _op_edited_session(db_session, organizer_id, ids):
    created = await session_service.record_completed_session(
        db_session, organizer_id, "2026-03-12", ids[:3], court_cost="30.00"
    )
    await session_service.update_completed_session(
        db_session, organizer_id, created["id"], [ids[0], ids[3]], court_cost="45.00"
    )


OPERATIONS = [
    _op_completed_session,
    _op_payment,
    _op_deleted_payment,
    _op_cancelled_session,
    _op_planned_session,
    _op_edited_session,
]

ORDERS = [list(OPERATIONS), list(reversed(OPERATIONS))] + [
    list(p) for p in itertools.islice(itertools.permutations(OPERATIONS), 7, 70, 21)
]


@pytest.mark.asyncio
@pytest.mark.parametrize("operations", ORDERS)
async def test_balance_invariant_holds_for_any_mutation_order(
    db_session, organizer_id, players, operations
):
    """Test current_balance equals owed minus paid whatever order facts arrive in."""
    ids = [p["id"] for p in players]
    for operation in operations:
        await operation(db_session, organizer_id, ids)
    await db_session.commit()

    expected = {
        ids[0]: Decimal("18.50") - Decimal("30.00") + Decimal("22.50"),
        ids[1]: Decimal("18.50"),
        ids[2]: Decimal("18.50"),
        ids[3]: Decimal("18.50") + Decimal("22.50"),
    }
    for player_id in ids:
        balance = await balance_service.get_player_balance(db_session, organizer_id, player_id)
        assert Decimal(str(balance["current_balance"])) == await _expected_balance(
            db_session, player_id
        )
        assert Decimal(str(balance["current_balance"])) == expected[player_id]


@pytest.mark.asyncio
async def test_recompute_all_matches_incremental(db_session, organizer_id, players):
    """Test an organizer-wide rebuild agrees with the incremental updates."""
    ids = [p["id"] for p in players]
    for operation in OPERATIONS:
        await operation(db_session, organizer_id, ids)
    await db_session.commit()
    before = {
        b["player_id"]: b["current_balance"]
        for b in await balance_service.list_balances(db_session, organizer_id)
    }

    count = await balance_service.recompute_all_balances(db_session, organizer_id)
    await db_session.commit()

    after = {
        b["player_id"]: b["current_balance"]
        for b in await balance_service.list_balances(db_session, organizer_id)
    }
    assert count == 4
    assert after == before


# ============================================================================
# Idempotent recompute
# ============================================================================

@pytest.mark.asyncio
async def test_recompute_twice_leaves_row_unchanged(db_session, organizer_id, players):
    """Test a second recompute with no fact changes does not touch the row."""
    ids = [p["id"] for p in players]
    await _op_completed_session(db_session, organizer_id, ids)
    await _op_payment(db_session, organizer_id, ids)
    await db_session.commit()

    first = await balance_service.recompute_player_balance(db_session, organizer_id, ids[0])
    await db_session.commit()
    row_first = await _balance_row(db_session, ids[0])

    second = await balance_service.recompute_player_balance(db_session, organizer_id, ids[0])
    await db_session.commit()
    row_second = await _balance_row(db_session, ids[0])

    assert first == second
    assert row_first == row_second


@pytest.mark.asyncio
async def test_recompute_reflects_new_payment(db_session, organizer_id, players):
    """Test the row is rewritten once a new payment arrives."""
    ids = [p["id"] for p in players]
    await _op_completed_session(db_session, organizer_id, ids)
    await db_session.commit()
    before = await balance_service.get_player_balance(db_session, organizer_id, ids[1])

    await payment_service.record_payment(db_session, organizer_id, ids[1], "18.50")
    await db_session.commit()
    after = await balance_service.get_player_balance(db_session, organizer_id, ids[1])

    assert before["current_balance"] == 18.5
    assert after["current_balance"] == 0.0
    assert after["status"] == "settled"
    assert after["last_payment_date"] is not None


# ============================================================================
# Reads
# ============================================================================

@pytest.mark.asyncio
async def test_get_player_balance_without_history(db_session, organizer_id, players):
    """Test a player with no balance row gets a zero record."""
    balance = await balance_service.get_player_balance(db_session, organizer_id, players[0]["id"])

    assert balance["id"] is None
    assert balance["player_name"] == "Alice"
    assert balance["total_owed"] == 0.0
    assert balance["total_paid"] == 0.0
    assert balance["current_balance"] == 0.0
    assert balance["status"] == "settled"


@pytest.mark.asyncio
async def test_get_player_balance_other_organizer(db_session, other_organizer_id, players):
    """Test another organizer cannot read a player's balance."""
    with pytest.raises(OrganizerScopeError):
        await balance_service.get_player_balance(db_session, other_organizer_id, players[0]["id"])


@pytest.mark.asyncio
async def test_list_balances_and_filters(db_session, organizer_id, players):
    """Test ordering, debt and credit filters and the financial summary."""
    ids = [p["id"] for p in players]
    await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-01", ids[:3], court_cost="60.00"
    )
    await payment_service.record_payment(db_session, organizer_id, ids[0], "50.00")
    await payment_service.record_payment(db_session, organizer_id, ids[1], "5.00")
    await payment_service.record_payment(db_session, organizer_id, ids[2], "20.00")
    await db_session.commit()

    balances = await balance_service.list_balances(db_session, organizer_id)
    assert [b["player_name"] for b in balances] == ["Bob", "Carol", "Alice"]
    assert [b["current_balance"] for b in balances] == [15.0, 0.0, -30.0]

    ascending = await balance_service.list_balances(db_session, organizer_id, ascending=True)
    assert [b["player_name"] for b in ascending] == ["Alice", "Carol", "Bob"]

    debts = await balance_service.list_players_in_debt(db_session, organizer_id)
    assert [b["player_name"] for b in debts] == ["Bob"]
    assert await balance_service.list_players_in_debt(db_session, organizer_id, min_amount=20) == []

    credits = await balance_service.list_players_in_credit(db_session, organizer_id)
    assert [b["player_name"] for b in credits] == ["Alice"]

    summary = await balance_service.get_financial_summary(db_session, organizer_id)
    assert summary["total_outstanding"] == 15.0
    assert summary["total_credit"] == 30.0
    assert summary["net_balance"] == -15.0
    assert summary["players_in_debt"] == 1
    assert summary["players_in_credit"] == 1
    assert summary["settled_players"] == 1
    assert summary["total_players"] == 3


@pytest.mark.asyncio
async def test_list_balances_excludes_inactive(db_session, organizer_id, players):
    """Test inactive players can be left out of the list."""
    ids = [p["id"] for p in players]
    await session_service.record_completed_session(
        db_session, organizer_id, "2026-02-01", ids[:2], court_cost="20.00"
    )
    await player_service.set_player_active(db_session, organizer_id, ids[1], False)
    await db_session.commit()

    balances = await balance_service.list_balances(db_session, organizer_id, include_inactive=False)
    assert [b["player_id"] for b in balances] == [ids[0]]


# ============================================================================
# Payment suggestions
# ============================================================================

def test_suggest_payment_amounts_for_debt():
    """Test settle-up, round-up and minimum suggestions."""
    suggestions = balance_service.suggest_payment_amounts(Decimal("18.50"))
    assert suggestions == {"settle_debt": 18.5, "round_up_amount": 20.0, "minimum_payment": 9.25}


def test_suggest_payment_amounts_small_debt():
    """Test small debts round up to the next 5 and have no separate minimum."""
    suggestions = balance_service.suggest_payment_amounts("3.00")
    assert suggestions == {"settle_debt": 3.0, "round_up_amount": 5.0, "minimum_payment": None}


def test_suggest_payment_amounts_round_debt():
    """Test a debt already on a round amount has no round-up suggestion."""
    suggestions = balance_service.suggest_payment_amounts(20)
    assert suggestions == {"settle_debt": 20.0, "round_up_amount": None, "minimum_payment": 10.0}


@pytest.mark.parametrize("balance", ["-5.00", "0", "0.004"])
def test_suggest_payment_amounts_without_debt(balance):
    """Test no suggestions for players in credit or settled."""
    assert balance_service.suggest_payment_amounts(balance) == {
        "settle_debt": None,
        "round_up_amount": None,
        "minimum_payment": None,
    }
