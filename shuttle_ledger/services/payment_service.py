"""
Payments and credit transfers.

A credit transfer is one CreditTransfer row owning exactly two Payment legs:
a debit leg (negative amount) on the sender and a credit leg (positive
amount) on the receiver, both with method credit_transfer and the transfer
id as reference number. Legs are only ever changed through the transfer.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import CreditTransfer, Payment, PaymentMethod, Player
from shuttle_ledger.services import balance_service
from shuttle_ledger.services.ownership import (
    get_owned_payment,
    get_owned_player,
    get_owned_transfer,
    require_organizer,
)
from shuttle_ledger.utils.constants import TRANSFER_CREDIT_NOTE, TRANSFER_DEBIT_NOTE
from shuttle_ledger.utils.datetime_utils import isoformat_or_none, parse_date, today
from shuttle_ledger.utils.money import ZERO, as_float, to_money

logger = logging.getLogger(__name__)


class InsufficientCreditError(ValueError):
    """Raised when a transfer exceeds the sender's available credit."""


def payment_to_dict(payment: Payment, player_name: Optional[str] = None) -> Dict:
    return {
        "id": payment.id,
        "organizer_id": payment.organizer_id,
        "player_id": payment.player_id,
        "player_name": player_name,
        "amount": as_float(payment.amount),
        "payment_method": PaymentMethod(payment.payment_method).value,
        "payment_date": isoformat_or_none(payment.payment_date),
        "reference_number": payment.reference_number,
        "notes": payment.notes,
        "transfer_id": payment.transfer_id,
        "created_at": isoformat_or_none(payment.created_at),
        "updated_at": isoformat_or_none(payment.updated_at),
    }


def transfer_to_dict(transfer: CreditTransfer, legs: List[Payment]) -> Dict:
    return {
        "id": transfer.id,
        "organizer_id": transfer.organizer_id,
        "from_player_id": transfer.from_player_id,
        "to_player_id": transfer.to_player_id,
        "amount": as_float(transfer.amount),
        "transfer_date": isoformat_or_none(transfer.transfer_date),
        "notes": transfer.notes,
        "legs": [payment_to_dict(leg) for leg in sorted(legs, key=lambda p: p.amount)],
        "created_at": isoformat_or_none(transfer.created_at),
    }


def _positive_amount(amount) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValueError("Payment amount must be greater than 0")
    return value


def _parse_method(method) -> PaymentMethod:
    try:
        parsed = PaymentMethod(method)
    except ValueError:
        raise ValueError(f"Invalid payment method: {method}")
    if parsed == PaymentMethod.CREDIT_TRANSFER:
        raise ValueError("Credit transfers must be recorded with transfer_credit")
    return parsed


async def record_payment(
    session: AsyncSession,
    organizer_id: str,
    player_id: str,
    amount,
    payment_method: str = PaymentMethod.CASH.value,
    payment_date=None,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict:
    """
    Record money paid by a player and recompute their balance.

    Raises:
        ValueError: If the amount is not positive or the method is invalid
    """
    player = await get_owned_player(session, organizer_id, player_id)
    payment = Payment(
        organizer_id=organizer_id,
        player_id=player_id,
        amount=_positive_amount(amount),
        payment_method=_parse_method(payment_method),
        payment_date=parse_date(payment_date) or today(),
        reference_number=reference_number,
        notes=notes,
    )
    session.add(payment)
    await session.flush()
    await balance_service.recompute_player_balance(session, organizer_id, player_id)
    await session.refresh(payment)
    logger.info(f"Recorded payment {payment.id}: {payment.amount} from player {player_id}")
    return payment_to_dict(payment, player.name)


async def get_payment(session: AsyncSession, organizer_id: str, payment_id: str) -> Dict:
    payment = await get_owned_payment(session, organizer_id, payment_id)
    player = await session.get(Player, payment.player_id)
    return payment_to_dict(payment, player.name if player else None)


async def update_payment(
    session: AsyncSession, organizer_id: str, payment_id: str, updates: Dict
) -> Dict:
    """
    Update a payment.

    For a credit transfer leg, amount (by magnitude) and payment_date are
    applied to the whole transfer so both legs stay in step.
    """
    payment = await get_owned_payment(session, organizer_id, payment_id)

    if payment.transfer_id is not None:
        if "player_id" in updates or "payment_method" in updates:
            raise ValueError("Cannot change the player or method of a credit transfer leg")
        amount = updates.get("amount")
        await update_credit_transfer(
            session,
            organizer_id,
            payment.transfer_id,
            amount=abs(to_money(amount)) if amount is not None else None,
            transfer_date=updates.get("payment_date"),
        )
        if "notes" in updates:
            payment.notes = updates["notes"]
            await session.flush()
        return await get_payment(session, organizer_id, payment_id)

    affected = {payment.player_id}
    if updates.get("player_id") and updates["player_id"] != payment.player_id:
        new_player = await get_owned_player(session, organizer_id, updates["player_id"])
        payment.player_id = new_player.id
        affected.add(new_player.id)
    if updates.get("amount") is not None:
        payment.amount = _positive_amount(updates["amount"])
    if updates.get("payment_method") is not None:
        payment.payment_method = _parse_method(updates["payment_method"])
    if updates.get("payment_date") is not None:
        payment.payment_date = parse_date(updates["payment_date"])
    for field in ("reference_number", "notes"):
        if field in updates:
            setattr(payment, field, updates[field])

    await session.flush()
    await balance_service.recompute_players(session, organizer_id, affected)
    await session.refresh(payment)
    return await get_payment(session, organizer_id, payment_id)


async def delete_payment(session: AsyncSession, organizer_id: str, payment_id: str) -> bool:
    """Delete a payment; deleting a transfer leg deletes the whole transfer."""
    payment = await get_owned_payment(session, organizer_id, payment_id)
    if payment.transfer_id is not None:
        return await delete_credit_transfer(session, organizer_id, payment.transfer_id)
    player_id = payment.player_id
    await session.delete(payment)
    await session.flush()
    await balance_service.recompute_player_balance(session, organizer_id, player_id)
    logger.info(f"Deleted payment {payment_id}")
    return True


async def list_payments(
    session: AsyncSession,
    organizer_id: str,
    player_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    payment_method: Optional[str] = None,
    limit: Optional[int] = 50,
) -> List[Dict]:
    """Payments newest first, with player names."""
    require_organizer(organizer_id)
    query = (
        select(Payment, Player.name)
        .join(Player, Player.id == Payment.player_id)
        .where(Payment.organizer_id == organizer_id)
    )
    if player_id:
        query = query.where(Payment.player_id == player_id)
    if date_from:
        query = query.where(Payment.payment_date >= parse_date(date_from))
    if date_to:
        query = query.where(Payment.payment_date <= parse_date(date_to))
    if payment_method:
        query = query.where(Payment.payment_method == PaymentMethod(payment_method))
    query = query.order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    if limit:
        query = query.limit(limit)
    result = await session.execute(query)
    return [payment_to_dict(payment, name) for payment, name in result.all()]


async def list_player_payments(
    session: AsyncSession, organizer_id: str, player_id: str, limit: int = 20
) -> List[Dict]:
    await get_owned_player(session, organizer_id, player_id)
    return await list_payments(session, organizer_id, player_id=player_id, limit=limit)


async def get_payment_stats(
    session: AsyncSession,
    organizer_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Dict:
    """Totals and per-method breakdown of real payments (transfer legs excluded)."""
    payments = await list_payments(
        session, organizer_id, date_from=date_from, date_to=date_to, limit=None
    )
    payments = [p for p in payments if p["payment_method"] != PaymentMethod.CREDIT_TRANSFER.value]
    total = sum((to_money(p["amount"]) for p in payments), ZERO)
    by_method: Dict[str, Dict] = {}
    for p in payments:
        entry = by_method.setdefault(p["payment_method"], {"count": 0, "total": ZERO})
        entry["count"] += 1
        entry["total"] += to_money(p["amount"])
    return {
        "total_amount": as_float(total),
        "total_payments": len(payments),
        "average_payment": as_float(total / len(payments)) if payments else 0.0,
        "by_method": {
            method: {"count": entry["count"], "total": as_float(entry["total"])}
            for method, entry in by_method.items()
        },
    }


# ============================================================================
# Credit transfers
# ============================================================================

async def _transfer_legs(session: AsyncSession, transfer_id: str) -> List[Payment]:
    result = await session.execute(select(Payment).where(Payment.transfer_id == transfer_id))
    return list(result.scalars().all())


def _leg_note(prefix: str, other_name: str, notes: Optional[str]) -> str:
    note = f"{prefix} {other_name}"
    return f"{note}: {notes}" if notes else note


async def _available_credit(
    session: AsyncSession, organizer_id: str, player_id: str, excluding: Decimal = ZERO
) -> Decimal:
    """Credit a player holds, adding back an existing outgoing transfer of `excluding`."""
    balance = await balance_service.recompute_player_balance(session, organizer_id, player_id)
    return -(to_money(balance["current_balance"]) - excluding)


async def transfer_credit(
    session: AsyncSession,
    organizer_id: str,
    from_player_id: str,
    to_player_id: str,
    amount,
    transfer_date=None,
    notes: Optional[str] = None,
) -> Dict:
    """
    Move credit from one player to another.

    Raises:
        ValueError: If the players are the same or the amount is not positive
        InsufficientCreditError: If the sender holds less credit than amount
    """
    if from_player_id == to_player_id:
        raise ValueError("Cannot transfer credit to the same player")
    value = _positive_amount(amount)
    sender = await get_owned_player(session, organizer_id, from_player_id)
    receiver = await get_owned_player(session, organizer_id, to_player_id)

    available = await _available_credit(session, organizer_id, from_player_id)
    if available < value:
        raise InsufficientCreditError(
            f"{sender.name} has {as_float(max(available, ZERO)):.2f} credit, "
            f"cannot transfer {as_float(value):.2f}"
        )

    transfer = CreditTransfer(
        organizer_id=organizer_id,
        from_player_id=from_player_id,
        to_player_id=to_player_id,
        amount=value,
        transfer_date=parse_date(transfer_date) or today(),
        notes=notes,
    )
    session.add(transfer)
    await session.flush()

    session.add_all(
        [
            Payment(
                organizer_id=organizer_id,
                player_id=from_player_id,
                amount=-value,
                payment_method=PaymentMethod.CREDIT_TRANSFER,
                payment_date=transfer.transfer_date,
                reference_number=transfer.id,
                notes=_leg_note(TRANSFER_DEBIT_NOTE, receiver.name, notes),
                transfer_id=transfer.id,
            ),
            Payment(
                organizer_id=organizer_id,
                player_id=to_player_id,
                amount=value,
                payment_method=PaymentMethod.CREDIT_TRANSFER,
                payment_date=transfer.transfer_date,
                reference_number=transfer.id,
                notes=_leg_note(TRANSFER_CREDIT_NOTE, sender.name, notes),
                transfer_id=transfer.id,
            ),
        ]
    )
    await session.flush()
    await balance_service.recompute_players(session, organizer_id, [from_player_id, to_player_id])
    logger.info(
        f"Transferred {value} credit from player {from_player_id} to {to_player_id} "
        f"(transfer {transfer.id})"
    )
    return await get_credit_transfer(session, organizer_id, transfer.id)


async def get_credit_transfer(session: AsyncSession, organizer_id: str, transfer_id: str) -> Dict:
    transfer = await get_owned_transfer(session, organizer_id, transfer_id)
    await session.refresh(transfer)
    return transfer_to_dict(transfer, await _transfer_legs(session, transfer_id))


async def list_credit_transfers(session: AsyncSession, organizer_id: str) -> List[Dict]:
    require_organizer(organizer_id)
    result = await session.execute(
        select(CreditTransfer)
        .where(CreditTransfer.organizer_id == organizer_id)
        .order_by(CreditTransfer.transfer_date.desc())
    )
    return [
        transfer_to_dict(t, await _transfer_legs(session, t.id)) for t in result.scalars().all()
    ]


async def update_credit_transfer(
    session: AsyncSession,
    organizer_id: str,
    transfer_id: str,
    amount=None,
    transfer_date=None,
    notes: Optional[str] = None,
) -> Dict:
    """Change a transfer's amount, date or notes; both legs are updated together."""
    transfer = await get_owned_transfer(session, organizer_id, transfer_id)
    legs = await _transfer_legs(session, transfer_id)

    if amount is not None:
        value = _positive_amount(amount)
        available = await _available_credit(
            session, organizer_id, transfer.from_player_id, excluding=to_money(transfer.amount)
        )
        if available < value:
            raise InsufficientCreditError(
                f"Sender has {as_float(max(available, ZERO)):.2f} credit, "
                f"cannot transfer {as_float(value):.2f}"
            )
        transfer.amount = value
        for leg in legs:
            leg.amount = -value if leg.player_id == transfer.from_player_id else value
    if transfer_date is not None:
        transfer.transfer_date = parse_date(transfer_date)
        for leg in legs:
            leg.payment_date = transfer.transfer_date
    if notes is not None:
        transfer.notes = notes
        sender = await get_owned_player(session, organizer_id, transfer.from_player_id)
        receiver = await get_owned_player(session, organizer_id, transfer.to_player_id)
        for leg in legs:
            if leg.player_id == transfer.from_player_id:
                leg.notes = _leg_note(TRANSFER_DEBIT_NOTE, receiver.name, notes)
            else:
                leg.notes = _leg_note(TRANSFER_CREDIT_NOTE, sender.name, notes)

    await session.flush()
    await balance_service.recompute_players(
        session, organizer_id, [transfer.from_player_id, transfer.to_player_id]
    )
    return await get_credit_transfer(session, organizer_id, transfer_id)


async def delete_credit_transfer(session: AsyncSession, organizer_id: str, transfer_id: str) -> bool:
    """Delete a transfer and both of its legs."""
    transfer = await get_owned_transfer(session, organizer_id, transfer_id)
    players = [transfer.from_player_id, transfer.to_player_id]
    await session.execute(delete(Payment).where(Payment.transfer_id == transfer_id))
    await session.delete(transfer)
    await session.flush()
    await balance_service.recompute_players(session, organizer_id, players)
    logger.info(f"Deleted credit transfer {transfer_id}")
    return True
