"""Badminton session route handlers."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.models.schemas import (
    CompletedSessionCreate,
    CompletedSessionUpdate,
    CompleteSessionRequest,
    PlannedSessionCreate,
    SessionDetailsUpdate,
    UsageCostRequest,
)
from shuttle_ledger.services import calculation_service, session_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/sessions")
async def list_sessions(
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: Optional[int] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """List sessions newest first. Query params: status, date_from, date_to, limit."""
    try:
        return await session_service.list_sessions(
            session, organizer_id, status=status, date_from=date_from, date_to=date_to, limit=limit
        )
    except Exception as e:
        raise to_http_error(e, "listing sessions")


@router.get("/api/sessions/upcoming")
async def list_upcoming_sessions(
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.list_upcoming_sessions(session, organizer_id)
    except Exception as e:
        raise to_http_error(e, "listing upcoming sessions")


@router.get("/api/sessions/recent")
async def list_recent_sessions(
    limit: int = 10,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.list_recent_sessions(session, organizer_id, limit)
    except Exception as e:
        raise to_http_error(e, "listing recent sessions")


@router.get("/api/sessions/stats")
async def get_session_stats(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.get_session_stats(session, organizer_id, date_from, date_to)
    except Exception as e:
        raise to_http_error(e, "getting session stats")


@router.post("/api/sessions/calculate")
async def calculate_usage_costs(
    payload: UsageCostRequest,
    organizer_id: str = Depends(get_current_organizer),
):
    """Preview the cost breakdown for usage inputs without saving anything."""
    try:
        return calculation_service.calculate_usage_costs(
            payload.hours,
            payload.court_rate,
            payload.shuttlecocks,
            payload.shuttlecock_rate,
            payload.player_count,
        )
    except Exception as e:
        raise to_http_error(e, "calculating costs")


@router.post("/api/sessions")
async def record_completed_session(
    payload: CompletedSessionCreate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Record a played session and charge its participants."""
    try:
        return await session_service.record_completed_session(
            session, organizer_id, **payload.model_dump()
        )
    except Exception as e:
        raise to_http_error(e, "recording session")


@router.post("/api/sessions/planned")
async def create_planned_session(
    payload: PlannedSessionCreate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.create_planned_session(
            session, organizer_id, **payload.model_dump()
        )
    except Exception as e:
        raise to_http_error(e, "creating planned session")


@router.get("/api/sessions/{session_id}")
async def get_session(
    session_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.get_session(session, organizer_id, session_id)
    except Exception as e:
        raise to_http_error(e, "getting session")


@router.post("/api/sessions/{session_id}/complete")
async def complete_planned_session(
    session_id: str,
    payload: CompleteSessionRequest,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.convert_planned_to_completed(
            session, organizer_id, session_id, **payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "completing session")


@router.put("/api/sessions/{session_id}")
async def update_completed_session(
    session_id: str,
    payload: CompletedSessionUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Replace a completed session's costs and participants."""
    try:
        return await session_service.update_completed_session(
            session, organizer_id, session_id, **payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating session")


@router.patch("/api/sessions/{session_id}")
async def update_session_details(
    session_id: str,
    payload: SessionDetailsUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.update_session_details(
            session, organizer_id, session_id, payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating session details")


@router.post("/api/sessions/{session_id}/cancel")
async def cancel_session(
    session_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await session_service.cancel_session(session, organizer_id, session_id)
    except Exception as e:
        raise to_http_error(e, "cancelling session")


@router.delete("/api/sessions/{session_id}")
async def delete_session(
    session_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await session_service.delete_session(session, organizer_id, session_id)
        return {"success": True}
    except Exception as e:
        raise to_http_error(e, "deleting session")
