"""Location route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.models.schemas import LocationCreate, LocationUpdate
from shuttle_ledger.services import location_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/locations")
async def list_locations(
    include_inactive: bool = False,
    q: Optional[str] = None,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        if q:
            return await location_service.search_locations(session, organizer_id, q)
        return await location_service.list_locations(session, organizer_id, include_inactive)
    except Exception as e:
        raise to_http_error(e, "listing locations")


@router.post("/api/locations")
async def create_location(
    payload: LocationCreate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await location_service.create_location(
            session, organizer_id, payload.name, address=payload.address, notes=payload.notes
        )
    except Exception as e:
        raise to_http_error(e, "creating location")


@router.get("/api/locations/stats")
async def get_location_stats(
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Session count and last used date per location."""
    try:
        return await location_service.get_location_stats(session, organizer_id)
    except Exception as e:
        raise to_http_error(e, "getting location stats")


@router.get("/api/locations/{location_id}")
async def get_location(
    location_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await location_service.get_location(session, organizer_id, location_id)
    except Exception as e:
        raise to_http_error(e, "getting location")


@router.put("/api/locations/{location_id}")
async def update_location(
    location_id: str,
    payload: LocationUpdate,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await location_service.update_location(
            session, organizer_id, location_id, payload.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise to_http_error(e, "updating location")


@router.post("/api/locations/{location_id}/deactivate")
async def deactivate_location(
    location_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await location_service.deactivate_location(session, organizer_id, location_id)
    except Exception as e:
        raise to_http_error(e, "deactivating location")


@router.delete("/api/locations/{location_id}")
async def delete_location(
    location_id: str,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a location no session refers to."""
    try:
        await location_service.delete_location(session, organizer_id, location_id)
        return {"success": True}
    except Exception as e:
        raise to_http_error(e, "deleting location")
