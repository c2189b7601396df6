"""
Organizer data reset.

Deletes everything an organizer owns, children before parents. The
deletion is irreversible; callers are expected to have confirmed it.
"""

import logging
from typing import Dict
from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    CreditTransfer,
    Location,
    OrganizerSettings,
    Payment,
    Player,
    PlayerBalance,
    Session,
    SessionParticipant,
)
from shuttle_ledger.services.ownership import require_organizer

logger = logging.getLogger(__name__)


async def clear_organizer_data(
    session: AsyncSession, organizer_id: str, include_settings: bool = False
) -> Dict[str, int]:
    """
    Delete all of an organizer's rows in reverse dependency order.

    Args:
        session: Database session (caller commits)
        organizer_id: Organizer whose data is removed
        include_settings: Also remove the organizer's saved settings

    Returns:
        Number of rows deleted per table
    """
    require_organizer(organizer_id)
    logger.warning(f"Clearing all data for organizer {organizer_id}")
    await session.flush()
    session_ids = select(Session.id).where(Session.organizer_id == organizer_id)

    statements = [
        ("player_balances", delete(PlayerBalance).where(PlayerBalance.organizer_id == organizer_id)),
        ("payments", delete(Payment).where(Payment.organizer_id == organizer_id)),
        ("credit_transfers", delete(CreditTransfer).where(CreditTransfer.organizer_id == organizer_id)),
        (
            "session_participants",
            delete(SessionParticipant).where(SessionParticipant.session_id.in_(session_ids)),
        ),
        ("sessions", delete(Session).where(Session.organizer_id == organizer_id)),
        ("players", delete(Player).where(Player.organizer_id == organizer_id)),
    ]
    if include_settings:
        statements.append(
            (
                "organizer_settings",
                delete(OrganizerSettings).where(OrganizerSettings.organizer_id == organizer_id),
            )
        )
    else:
        # Kept settings must not point at a location that is about to go
        await session.execute(
            update(OrganizerSettings)
            .where(OrganizerSettings.organizer_id == organizer_id)
            .values(default_location_id=None)
            .execution_options(synchronize_session=False)
        )
    statements.append(("locations", delete(Location).where(Location.organizer_id == organizer_id)))

    deleted: Dict[str, int] = {}
    for table, statement in statements:
        result = await session.execute(statement.execution_options(synchronize_session=False))
        deleted[table] = result.rowcount or 0

    # Deleted rows must not linger in the identity map
    session.expunge_all()
    logger.warning(f"Cleared organizer {organizer_id}: {deleted}")
    return deleted
