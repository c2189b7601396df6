"""Player balance route handlers."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.services import balance_service, session_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/balances")
async def list_balances(
    ascending: bool = False,
    include_inactive: bool = True,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """All balances, largest debts first unless ascending=true."""
    try:
        return await balance_service.list_balances(
            session, organizer_id, ascending=ascending, include_inactive=include_inactive
        )
    except Exception as e:
        raise to_http_error(e, "listing balances")


@router.get("/api/balances/debts")
async def list_players_in_debt(
    min_amount: float = 0,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await balance_service.list_players_in_debt(session, organizer_id, min_amount)
    except Exception as e:
        raise to_http_error(e, "listing debts")


@router.get("/api/balances/credits")
async def list_players_in_credit(
    min_amount: float = 0,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await balance_service.list_players_in_credit(session, organizer_id, min_amount)
    except Exception as e:
        raise to_http_error(e, "listing credits")


@router.get("/api/balances/summary")
async def get_financial_summary(
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await balance_service.get_financial_summary(session, organizer_id)
    except Exception as e:
        raise to_http_error(e, "getting financial summary")


@router.post("/api/balances/recompute")
async def recompute_all_balances(
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Rebuild every player's balance from sessions and payments."""
    try:
        count = await balance_service.recompute_all_balances(session, organizer_id)
        return {"success": True, "players_recomputed": count}
    except Exception as e:
        raise to_http_error(e, "recomputing balances")


@router.get("/api/players/{player_id}/balance")
async def get_player_balance(
    player_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Balance with suggested payment amounts."""
    try:
        balance = await balance_service.get_player_balance(session, organizer_id, player_id)
        balance["suggestions"] = balance_service.suggest_payment_amounts(balance["current_balance"])
        return balance
    except Exception as e:
        raise to_http_error(e, "getting player balance")


@router.get("/api/players/{player_id}/sessions")
async def list_player_sessions(
    player_id: str,
    limit: int = 10,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.list_player_sessions(session, organizer_id, player_id, limit)
    except Exception as e:
        raise to_http_error(e, "listing player sessions")
