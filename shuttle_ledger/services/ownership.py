"""
Organizer scoping for every ledger operation.

Each lookup here filters by id and then checks the row's organizer, so a
caller can never read or write another organizer's data. A row that exists
under a different organizer raises OrganizerScopeError before anything else
happens; a row that does not exist raises the matching not-found error.
"""

import logging
from typing import Iterable, List, Optional, Type
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    CreditTransfer,
    Location,
    Payment,
    Player,
    Session,
)

logger = logging.getLogger(__name__)


class OrganizerScopeError(ValueError):
    """Raised when an operation touches a row owned by another organizer."""


class PlayerNotFoundError(ValueError):
    """Raised when a player id does not exist."""


class SessionNotFoundError(ValueError):
    """Raised when a session id does not exist."""


class PaymentNotFoundError(ValueError):
    """Raised when a payment or credit transfer id does not exist."""


class LocationNotFoundError(ValueError):
    """Raised when a location id does not exist."""


def require_organizer(organizer_id: Optional[str]) -> str:
    if not organizer_id or not str(organizer_id).strip():
        raise OrganizerScopeError("Organizer id is required")
    return str(organizer_id)


async def _get_owned(
    session: AsyncSession,
    model,
    row_id: str,
    organizer_id: str,
    not_found: Type[ValueError],
    label: str,
    for_update: bool = False,
):
    require_organizer(organizer_id)
    stmt = select(model).where(model.id == row_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    row = result.scalar_one_or_none()
    if row is None:
        raise not_found(f"{label} {row_id} not found")
    if row.organizer_id != organizer_id:
        logger.warning(
            f"Organizer {organizer_id} attempted to access {label.lower()} {row_id} "
            f"owned by another organizer"
        )
        raise OrganizerScopeError(f"{label} {row_id} does not belong to this organizer")
    return row


async def get_owned_player(
    session: AsyncSession, organizer_id: str, player_id: str, for_update: bool = False
) -> Player:
    return await _get_owned(
        session, Player, player_id, organizer_id, PlayerNotFoundError, "Player", for_update
    )


async def get_owned_session(session: AsyncSession, organizer_id: str, session_id: str) -> Session:
    return await _get_owned(
        session, Session, session_id, organizer_id, SessionNotFoundError, "Session"
    )


async def get_owned_payment(session: AsyncSession, organizer_id: str, payment_id: str) -> Payment:
    return await _get_owned(
        session, Payment, payment_id, organizer_id, PaymentNotFoundError, "Payment"
    )


async def get_owned_transfer(
    session: AsyncSession, organizer_id: str, transfer_id: str
) -> CreditTransfer:
    return await _get_owned(
        session, CreditTransfer, transfer_id, organizer_id, PaymentNotFoundError, "Credit transfer"
    )


async def get_owned_location(
    session: AsyncSession, organizer_id: str, location_id: str
) -> Location:
    return await _get_owned(
        session, Location, location_id, organizer_id, LocationNotFoundError, "Location"
    )


async def get_owned_players(
    session: AsyncSession, organizer_id: str, player_ids: Iterable[str]
) -> List[Player]:
    """Load several players at once, all of which must belong to the organizer."""
    require_organizer(organizer_id)
    wanted = list(dict.fromkeys(player_ids))
    if not wanted:
        return []
    result = await session.execute(select(Player).where(Player.id.in_(wanted)))
    found = {p.id: p for p in result.scalars().all()}
    missing = [pid for pid in wanted if pid not in found]
    if missing:
        raise PlayerNotFoundError(f"Players not found: {', '.join(missing)}")
    foreign = [pid for pid in wanted if found[pid].organizer_id != organizer_id]
    if foreign:
        raise OrganizerScopeError(
            f"Players do not belong to this organizer: {', '.join(foreign)}"
        )
    return [found[pid] for pid in wanted]
