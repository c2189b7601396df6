"""Payment and credit transfer route handlers."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.models.schemas import (
    CreditTransferCreate,
    CreditTransferUpdate,
    PaymentCreate,
    PaymentUpdate,
)
from shuttle_ledger.services import payment_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/payments")
async def list_payments(
    player_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    payment_method: Optional[str] = None,
    limit: int = 50,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.list_payments(
            session,
            organizer_id,
            player_id=player_id,
            date_from=date_from,
            date_to=date_to,
            payment_method=payment_method,
            limit=limit,
        )
    except Exception as e:
        raise to_http_error(e, "listing payments")


@router.post("/api/payments")
async def record_payment(
    payload: PaymentCreate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.record_payment(session, organizer_id, **payload.model_dump())
    except Exception as e:
        raise to_http_error(e, "recording payment")


@router.get("/api/payments/stats")
async def get_payment_stats(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Totals and per-method breakdown; credit transfers are not counted."""
    try:
        return await payment_service.get_payment_stats(
            session, organizer_id, date_from=date_from, date_to=date_to
        )
    except Exception as e:
        raise to_http_error(e, "getting payment stats")


@router.get("/api/players/{player_id}/payments")
async def list_player_payments(
    player_id: str,
    limit: int = 20,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.list_player_payments(session, organizer_id, player_id, limit)
    except Exception as e:
        raise to_http_error(e, "listing player payments")


@router.get("/api/payments/{payment_id}")
async def get_payment(
    payment_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.get_payment(session, organizer_id, payment_id)
    except Exception as e:
        raise to_http_error(e, "getting payment")


@router.put("/api/payments/{payment_id}")
async def update_payment(
    payment_id: str,
    payload: PaymentUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.update_payment(
            session, organizer_id, payment_id, payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating payment")


@router.delete("/api/payments/{payment_id}")
async def delete_payment(
    payment_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a payment; deleting a transfer leg removes the whole transfer."""
    try:
        await payment_service.delete_payment(session, organizer_id, payment_id)
        return {"success": True}
    except Exception as e:
        raise to_http_error(e, "deleting payment")


# Credit transfers

@router.get("/api/credit-transfers")
async def list_credit_transfers(
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.list_credit_transfers(session, organizer_id)
    except Exception as e:
        raise to_http_error(e, "listing credit transfers")


@router.post("/api/credit-transfers")
async def transfer_credit(
    payload: CreditTransferCreate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Move credit from one player to another."""
    try:
        return await payment_service.transfer_credit(session, organizer_id, **payload.model_dump())
    except Exception as e:
        raise to_http_error(e, "transferring credit")


@router.get("/api/credit-transfers/{transfer_id}")
async def get_credit_transfer(
    transfer_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.get_credit_transfer(session, organizer_id, transfer_id)
    except Exception as e:
        raise to_http_error(e, "getting credit transfer")


@router.put("/api/credit-transfers/{transfer_id}")
async def update_credit_transfer(
    transfer_id: str,
    payload: CreditTransferUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await payment_service.update_credit_transfer(
            session, organizer_id, transfer_id, **payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating credit transfer")


@router.delete("/api/credit-transfers/{transfer_id}")
async def delete_credit_transfer(
    transfer_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await payment_service.delete_credit_transfer(session, organizer_id, transfer_id)
        return {"success": True}
    except Exception as e:
        raise to_http_error(e, "deleting credit transfer")
