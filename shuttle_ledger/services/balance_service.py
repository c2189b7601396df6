"""
Player balance projection.

The player_balances table is a read model over two kinds of facts:
session_participants rows on completed sessions (what a player owes) and
payments rows (what a player paid). recompute_player_balance always re-reads
both sums from the fact tables; it is called explicitly by every service
that mutates a participant or payment, inside the caller's unit of work.
"""

import logging
import math
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    Player,
    PlayerBalance,
    Payment,
    Session,
    SessionParticipant,
    SessionStatus,
)
from shuttle_ledger.services.ownership import get_owned_player, require_organizer
from shuttle_ledger.utils.constants import SETTLED_THRESHOLD
from shuttle_ledger.utils.datetime_utils import isoformat_or_none, utcnow
from shuttle_ledger.utils.money import ZERO, as_float, to_money

logger = logging.getLogger(__name__)


def _balance_to_dict(balance: PlayerBalance, player: Optional[Player] = None) -> Dict:
    current = to_money(balance.current_balance)
    return {
        "id": balance.id,
        "organizer_id": balance.organizer_id,
        "player_id": balance.player_id,
        "player_name": player.name if player is not None else None,
        "is_temporary": player.is_temporary if player is not None else None,
        "is_active": player.is_active if player is not None else None,
        "total_owed": as_float(balance.total_owed),
        "total_paid": as_float(balance.total_paid),
        "current_balance": as_float(current),
        "status": balance_status(current),
        "last_session_date": isoformat_or_none(balance.last_session_date),
        "last_payment_date": isoformat_or_none(balance.last_payment_date),
        "updated_at": isoformat_or_none(balance.updated_at),
    }


def balance_status(current_balance: Decimal) -> str:
    """'debt' when the player owes, 'credit' when overpaid, else 'settled'."""
    if current_balance >= SETTLED_THRESHOLD:
        return "debt"
    if current_balance <= -SETTLED_THRESHOLD:
        return "credit"
    return "settled"


async def _sum_owed(session: AsyncSession, player_id: str):
    result = await session.execute(
        select(
            func.coalesce(func.sum(SessionParticipant.amount_owed), 0),
            func.max(Session.session_date),
        )
        .join(Session, Session.id == SessionParticipant.session_id)
        .where(
            SessionParticipant.player_id == player_id,
            Session.status == SessionStatus.COMPLETED,
            SessionParticipant.amount_owed.is_not(None),
        )
    )
    owed, last_session = result.one()
    return to_money(owed), last_session


async def _sum_paid(session: AsyncSession, player_id: str):
    result = await session.execute(
        select(
            func.coalesce(func.sum(Payment.amount), 0),
            func.max(Payment.payment_date),
        ).where(Payment.player_id == player_id)
    )
    paid, last_payment = result.one()
    return to_money(paid), last_payment


async def recompute_player_balance(
    session: AsyncSession, organizer_id: str, player_id: str
) -> Dict:
    """
    Rebuild one player's balance row from the fact tables.

    The player row is locked for the duration of the caller's transaction so
    concurrent recomputes for the same player are serialized. The balance row
    is only written when a value changed, which keeps repeated calls without
    intervening fact changes from touching the row at all.

    Args:
        session: Database session (caller commits)
        organizer_id: Organizer scope
        player_id: Player whose balance is rebuilt

    Returns:
        Balance dict
    """
    player = await get_owned_player(session, organizer_id, player_id, for_update=True)
    # Pending participant/payment changes must be visible to the sums below
    await session.flush()

    total_owed, last_session_date = await _sum_owed(session, player_id)
    total_paid, last_payment_date = await _sum_paid(session, player_id)
    current_balance = total_owed - total_paid

    result = await session.execute(
        select(PlayerBalance).where(
            PlayerBalance.organizer_id == organizer_id,
            PlayerBalance.player_id == player_id,
        )
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        now = utcnow()
        balance = PlayerBalance(
            organizer_id=organizer_id,
            player_id=player_id,
            created_at=now,
            updated_at=now,
        )
        session.add(balance)
        changed = True
    else:
        changed = (
            to_money(balance.total_owed) != total_owed
            or to_money(balance.total_paid) != total_paid
            or to_money(balance.current_balance) != current_balance
            or balance.last_session_date != last_session_date
            or balance.last_payment_date != last_payment_date
        )

    if changed:
        balance.total_owed = total_owed
        balance.total_paid = total_paid
        balance.current_balance = current_balance
        balance.last_session_date = last_session_date
        balance.last_payment_date = last_payment_date
        balance.updated_at = utcnow()
        await session.flush()
        logger.debug(
            f"Recomputed balance for player {player_id}: owed={total_owed} "
            f"paid={total_paid} balance={current_balance}"
        )

    return _balance_to_dict(balance, player)


async def recompute_players(
    session: AsyncSession, organizer_id: str, player_ids: Iterable[str]
) -> List[Dict]:
    """Recompute several players, in a stable order to keep lock ordering consistent."""
    return [
        await recompute_player_balance(session, organizer_id, player_id)
        for player_id in sorted(set(player_ids))
    ]


async def recompute_all_balances(session: AsyncSession, organizer_id: str) -> int:
    """Rebuild every balance row for an organizer. Returns the number of players processed."""
    require_organizer(organizer_id)
    result = await session.execute(select(Player.id).where(Player.organizer_id == organizer_id))
    player_ids = [row[0] for row in result.all()]
    await recompute_players(session, organizer_id, player_ids)
    logger.info(f"Recomputed {len(player_ids)} balances for organizer {organizer_id}")
    return len(player_ids)


async def get_player_balance(session: AsyncSession, organizer_id: str, player_id: str) -> Dict:
    """
    Get a player's balance.

    Returns a zero-balance record when no projection row exists yet.
    """
    player = await get_owned_player(session, organizer_id, player_id)
    result = await session.execute(
        select(PlayerBalance).where(
            PlayerBalance.organizer_id == organizer_id,
            PlayerBalance.player_id == player_id,
        )
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        balance = PlayerBalance(
            id=None,
            organizer_id=organizer_id,
            player_id=player_id,
            total_owed=ZERO,
            total_paid=ZERO,
            current_balance=ZERO,
        )
    return _balance_to_dict(balance, player)


async def list_balances(
    session: AsyncSession,
    organizer_id: str,
    ascending: bool = False,
    include_inactive: bool = True,
) -> List[Dict]:
    """
    List all balances for an organizer.

    Default order puts the largest debts first (descending current balance).
    """
    require_organizer(organizer_id)
    order = PlayerBalance.current_balance.asc() if ascending else PlayerBalance.current_balance.desc()
    query = (
        select(PlayerBalance, Player)
        .join(Player, Player.id == PlayerBalance.player_id)
        .where(PlayerBalance.organizer_id == organizer_id)
        .order_by(order, Player.name)
    )
    if not include_inactive:
        query = query.where(Player.is_active == True)  # noqa: E712
    result = await session.execute(query)
    return [_balance_to_dict(balance, player) for balance, player in result.all()]


async def list_players_in_debt(
    session: AsyncSession, organizer_id: str, min_amount=0
) -> List[Dict]:
    """Players whose balance is at least min_amount in debt, largest first."""
    threshold = max(to_money(min_amount), SETTLED_THRESHOLD)
    balances = await list_balances(session, organizer_id)
    return [b for b in balances if to_money(b["current_balance"]) >= threshold]


async def list_players_in_credit(
    session: AsyncSession, organizer_id: str, min_amount=0
) -> List[Dict]:
    """Players with at least min_amount of credit, largest credit first."""
    threshold = max(to_money(min_amount), SETTLED_THRESHOLD)
    balances = await list_balances(session, organizer_id, ascending=True)
    return [b for b in balances if -to_money(b["current_balance"]) >= threshold]


async def get_financial_summary(session: AsyncSession, organizer_id: str) -> Dict:
    """
    Aggregate an organizer's balances.

    Returns:
        Dict with total_outstanding (sum of debts), total_credit (sum of credits,
        as a positive number), net_balance, and player counts per status.
    """
    balances = await list_balances(session, organizer_id)
    total_outstanding = ZERO
    total_credit = ZERO
    in_debt = in_credit = settled = 0
    for b in balances:
        current = to_money(b["current_balance"])
        status = balance_status(current)
        if status == "debt":
            total_outstanding += current
            in_debt += 1
        elif status == "credit":
            total_credit += -current
            in_credit += 1
        else:
            settled += 1

    return {
        "total_outstanding": as_float(total_outstanding),
        "total_credit": as_float(total_credit),
        "net_balance": as_float(total_outstanding - total_credit),
        "players_in_debt": in_debt,
        "players_in_credit": in_credit,
        "settled_players": settled,
        "total_players": len(balances),
    }


def suggest_payment_amounts(current_balance) -> Dict:
    """
    Suggested amounts for a player to pay.

    settle_debt is the exact debt; round_up_amount rounds it up to the next 5
    (under 10) or 10; minimum_payment is half the debt with a floor of 5.
    Suggestions that would not differ from settle_debt are None.
    """
    current = to_money(current_balance)
    if balance_status(current) != "debt":
        return {"settle_debt": None, "round_up_amount": None, "minimum_payment": None}

    debt = current
    step = 5 if debt < 10 else 10
    round_up = to_money(math.ceil(debt / step) * step)
    minimum = to_money(debt / 2)
    if minimum < 5:
        minimum = to_money(5)

    return {
        "settle_debt": as_float(debt),
        "round_up_amount": as_float(round_up) if round_up > debt else None,
        "minimum_payment": as_float(minimum) if minimum < debt else None,
    }
