"""Location (venue) management."""

import logging
from typing import Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import Location, Session
from shuttle_ledger.services.ownership import get_owned_location, require_organizer
from shuttle_ledger.utils.datetime_utils import isoformat_or_none

logger = logging.getLogger(__name__)


class LocationInUseError(ValueError):
    """Raised when deleting a location that sessions still reference."""


def location_to_dict(location: Location) -> Dict:
    return {
        "id": location.id,
        "organizer_id": location.organizer_id,
        "name": location.name,
        "address": location.address,
        "notes": location.notes,
        "is_active": location.is_active,
        "created_at": isoformat_or_none(location.created_at),
        "updated_at": isoformat_or_none(location.updated_at),
    }


async def find_location_by_name(
    session: AsyncSession, organizer_id: str, name: str
) -> Optional[Location]:
    result = await session.execute(
        select(Location)
        .where(
            Location.organizer_id == organizer_id,
            func.lower(Location.name) == name.strip().lower(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_location(
    session: AsyncSession,
    organizer_id: str,
    name: str,
    address: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict:
    """Create a location; names are unique per organizer (case-insensitive)."""
    require_organizer(organizer_id)
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Location name is required")
    if await find_location_by_name(session, organizer_id, cleaned):
        raise ValueError(f"Location '{cleaned}' already exists")

    location = Location(
        organizer_id=organizer_id, name=cleaned, address=address, notes=notes, is_active=True
    )
    session.add(location)
    await session.flush()
    await session.refresh(location)
    return location_to_dict(location)


async def get_location(session: AsyncSession, organizer_id: str, location_id: str) -> Dict:
    return location_to_dict(await get_owned_location(session, organizer_id, location_id))


async def list_locations(
    session: AsyncSession, organizer_id: str, include_inactive: bool = False
) -> List[Dict]:
    require_organizer(organizer_id)
    query = select(Location).where(Location.organizer_id == organizer_id)
    if not include_inactive:
        query = query.where(Location.is_active == True)  # noqa: E712
    result = await session.execute(query.order_by(Location.name))
    return [location_to_dict(loc) for loc in result.scalars().all()]


async def update_location(
    session: AsyncSession, organizer_id: str, location_id: str, updates: Dict
) -> Dict:
    location = await get_owned_location(session, organizer_id, location_id)
    if "name" in updates:
        cleaned = (updates["name"] or "").strip()
        if not cleaned:
            raise ValueError("Location name is required")
        existing = await find_location_by_name(session, organizer_id, cleaned)
        if existing is not None and existing.id != location_id:
            raise ValueError(f"Location '{cleaned}' already exists")
        location.name = cleaned
    for field in ("address", "notes", "is_active"):
        if field in updates:
            setattr(location, field, updates[field])
    await session.flush()
    await session.refresh(location)
    return location_to_dict(location)


async def deactivate_location(session: AsyncSession, organizer_id: str, location_id: str) -> Dict:
    return await update_location(session, organizer_id, location_id, {"is_active": False})


async def delete_location(session: AsyncSession, organizer_id: str, location_id: str) -> bool:
    """
    Delete a location.

    Raises:
        LocationInUseError: If any session references the location
    """
    location = await get_owned_location(session, organizer_id, location_id)
    result = await session.execute(
        select(func.count(Session.id)).where(Session.location_id == location_id)
    )
    in_use = result.scalar_one()
    if in_use:
        raise LocationInUseError(
            f"Location '{location.name}' is used by {in_use} session(s); deactivate it instead"
        )
    await session.delete(location)
    await session.flush()
    return True


async def search_locations(
    session: AsyncSession, organizer_id: str, search_term: str, limit: int = 20
) -> List[Dict]:
    require_organizer(organizer_id)
    pattern = f"%{search_term.strip().lower()}%"
    result = await session.execute(
        select(Location)
        .where(
            Location.organizer_id == organizer_id,
            Location.is_active == True,  # noqa: E712
            func.lower(Location.name).like(pattern),
        )
        .order_by(Location.name)
        .limit(limit)
    )
    return [location_to_dict(loc) for loc in result.scalars().all()]


async def get_location_stats(session: AsyncSession, organizer_id: str) -> List[Dict]:
    """Session count and last session date per location."""
    require_organizer(organizer_id)
    result = await session.execute(
        select(
            Location.id,
            Location.name,
            func.count(Session.id),
            func.max(Session.session_date),
        )
        .outerjoin(Session, Session.location_id == Location.id)
        .where(Location.organizer_id == organizer_id)
        .group_by(Location.id, Location.name)
        .order_by(Location.name)
    )
    return [
        {
            "id": location_id,
            "name": name,
            "session_count": count,
            "last_used": isoformat_or_none(last_used),
        }
        for location_id, name, count, last_used in result.all()
    ]
