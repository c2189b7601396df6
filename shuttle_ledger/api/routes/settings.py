"""Organizer settings and rate route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.models.schemas import OrganizerSettingsUpdate
from shuttle_ledger.services import calculation_service, settings_service
from shuttle_ledger.utils.constants import RATE_PRESETS

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/settings")
async def get_settings(
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await settings_service.get_organizer_settings(session, organizer_id)
    except Exception as e:
        raise to_http_error(e, "getting settings")


@router.put("/api/settings")
async def update_settings(
    payload: OrganizerSettingsUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await settings_service.update_organizer_settings(
            session, organizer_id, payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating settings")


@router.get("/api/rates")
async def get_effective_rates(
    session_time: Optional[str] = None,
    court_type: Optional[str] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Rates to prefill a new session with. Query params: session_time (HH:MM), court_type."""
    try:
        return await settings_service.get_effective_rates(
            session, organizer_id, session_time=session_time, court_type=court_type
        )
    except Exception as e:
        raise to_http_error(e, "getting rates")


@router.get("/api/rates/presets")
async def list_rate_presets(organizer_id: str = Depends(get_current_organizer)):
    return [calculation_service.get_rate_preset(name) for name in RATE_PRESETS]
