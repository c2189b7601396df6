"""Player roster route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.models.schemas import BulkActiveRequest, PlayerCreate, PlayerUpdate
from shuttle_ledger.services import player_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/players")
async def list_players(
    include_inactive: bool = False,
    with_balances: bool = False,
    q: Optional[str] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """
    List the organizer's players.

    Query params: include_inactive, with_balances (adds balance and session
    count), q (name search, ignores the other flags).
    """
    try:
        if q:
            return await player_service.search_players(session, organizer_id, q)
        if with_balances:
            return await player_service.list_players_with_balances(
                session, organizer_id, include_inactive
            )
        return await player_service.list_players(session, organizer_id, include_inactive)
    except Exception as e:
        raise to_http_error(e, "listing players")


@router.post("/api/players")
async def create_player(
    payload: PlayerCreate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await player_service.create_player(
            session,
            organizer_id,
            payload.name,
            phone_number=payload.phone_number,
            is_temporary=payload.is_temporary,
            notes=payload.notes,
        )
    except Exception as e:
        raise to_http_error(e, "creating player")


@router.get("/api/players/phone-exists")
async def check_phone_exists(
    phone_number: str,
    exclude_player_id: Optional[str] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        exists = await player_service.check_phone_exists(
            session, organizer_id, phone_number, exclude_player_id=exclude_player_id
        )
        return {"exists": exists}
    except Exception as e:
        raise to_http_error(e, "checking phone number")


@router.post("/api/players/bulk-active")
async def bulk_set_active(
    payload: BulkActiveRequest,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Activate or deactivate several players at once."""
    try:
        updated = await player_service.bulk_set_active(
            session, organizer_id, payload.player_ids, payload.is_active
        )
        return {"updated": updated}
    except Exception as e:
        raise to_http_error(e, "updating players")


@router.get("/api/players/{player_id}")
async def get_player(
    player_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await player_service.get_player(session, organizer_id, player_id)
    except Exception as e:
        raise to_http_error(e, "getting player")


@router.put("/api/players/{player_id}")
async def update_player(
    player_id: str,
    payload: PlayerUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await player_service.update_player(
            session, organizer_id, player_id, payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating player")


@router.post("/api/players/{player_id}/deactivate")
async def deactivate_player(
    player_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await player_service.set_player_active(session, organizer_id, player_id, False)
    except Exception as e:
        raise to_http_error(e, "deactivating player")


@router.post("/api/players/{player_id}/activate")
async def activate_player(
    player_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await player_service.set_player_active(session, organizer_id, player_id, True)
    except Exception as e:
        raise to_http_error(e, "activating player")


@router.delete("/api/players/{player_id}")
async def delete_player(
    player_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Hard delete; only allowed for a player with no sessions or payments."""
    try:
        await player_service.delete_player(session, organizer_id, player_id)
        return {"success": True}
    except Exception as e:
        raise to_http_error(e, "deleting player")
