"""
Player roster management.

Players are never hard-deleted once they have session or payment history;
deactivation is the supported removal path.
"""

import logging
from typing import Dict, List, Optional
from sqlalchemy import select, delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    Player,
    PlayerBalance,
    Payment,
    Session,
    SessionParticipant,
    SessionStatus,
)
from shuttle_ledger.services.ownership import (
    get_owned_player,
    get_owned_players,
    require_organizer,
)
from shuttle_ledger.utils.datetime_utils import isoformat_or_none
from shuttle_ledger.utils.money import ZERO, as_float

logger = logging.getLogger(__name__)


class DuplicatePhoneError(ValueError):
    """Raised when a phone number is already used on the organizer's roster."""


class PlayerInUseError(ValueError):
    """Raised when hard-deleting a player that has session or payment history."""


UPDATABLE_FIELDS = ("name", "phone_number", "is_temporary", "is_active", "notes")


def player_to_dict(player: Player) -> Dict:
    return {
        "id": player.id,
        "organizer_id": player.organizer_id,
        "name": player.name,
        "phone_number": player.phone_number,
        "is_temporary": player.is_temporary,
        "is_active": player.is_active,
        "notes": player.notes,
        "created_at": isoformat_or_none(player.created_at),
        "updated_at": isoformat_or_none(player.updated_at),
    }


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Player name is required")
    return cleaned


def _clean_phone(phone_number: Optional[str]) -> Optional[str]:
    if phone_number is None:
        return None
    cleaned = "".join(ch for ch in phone_number.strip() if ch.isdigit() or ch == "+")
    return cleaned or None


async def check_phone_exists(
    session: AsyncSession,
    organizer_id: str,
    phone_number: str,
    exclude_player_id: Optional[str] = None,
) -> bool:
    """Whether a phone number is already on the organizer's roster."""
    require_organizer(organizer_id)
    phone = _clean_phone(phone_number)
    if not phone:
        return False
    query = select(Player.id).where(
        Player.organizer_id == organizer_id, Player.phone_number == phone
    )
    if exclude_player_id:
        query = query.where(Player.id != exclude_player_id)
    result = await session.execute(query.limit(1))
    return result.first() is not None


async def create_player(
    session: AsyncSession,
    organizer_id: str,
    name: str,
    phone_number: Optional[str] = None,
    is_temporary: bool = False,
    notes: Optional[str] = None,
) -> Dict:
    """
    Add a player to an organizer's roster.

    Raises:
        ValueError: If the name is empty
        DuplicatePhoneError: If the phone number is already used
    """
    require_organizer(organizer_id)
    phone = _clean_phone(phone_number)
    if phone and await check_phone_exists(session, organizer_id, phone):
        raise DuplicatePhoneError(f"Phone number {phone} is already registered")

    player = Player(
        organizer_id=organizer_id,
        name=_clean_name(name),
        phone_number=phone,
        is_temporary=is_temporary,
        is_active=True,
        notes=notes,
    )
    session.add(player)
    await session.flush()
    await session.refresh(player)
    logger.info(f"Created player {player.id} ({player.name}) for organizer {organizer_id}")
    return player_to_dict(player)


async def get_player(session: AsyncSession, organizer_id: str, player_id: str) -> Dict:
    player = await get_owned_player(session, organizer_id, player_id)
    return player_to_dict(player)


async def list_players(
    session: AsyncSession, organizer_id: str, include_inactive: bool = False
) -> List[Dict]:
    """List an organizer's players by name."""
    require_organizer(organizer_id)
    query = select(Player).where(Player.organizer_id == organizer_id)
    if not include_inactive:
        query = query.where(Player.is_active == True)  # noqa: E712
    result = await session.execute(query.order_by(Player.name))
    return [player_to_dict(p) for p in result.scalars().all()]


async def _session_counts(session: AsyncSession, organizer_id: str) -> Dict[str, int]:
    result = await session.execute(
        select(SessionParticipant.player_id, func.count(SessionParticipant.id))
        .join(Session, Session.id == SessionParticipant.session_id)
        .where(
            Session.organizer_id == organizer_id,
            Session.status == SessionStatus.COMPLETED,
        )
        .group_by(SessionParticipant.player_id)
    )
    return {player_id: count for player_id, count in result.all()}


async def list_players_with_balances(
    session: AsyncSession, organizer_id: str, include_inactive: bool = False
) -> List[Dict]:
    """Players with their balance figures and number of completed sessions played."""
    require_organizer(organizer_id)
    query = (
        select(Player, PlayerBalance)
        .outerjoin(
            PlayerBalance,
            (PlayerBalance.player_id == Player.id)
            & (PlayerBalance.organizer_id == Player.organizer_id),
        )
        .where(Player.organizer_id == organizer_id)
        .order_by(Player.name)
    )
    if not include_inactive:
        query = query.where(Player.is_active == True)  # noqa: E712
    result = await session.execute(query)
    counts = await _session_counts(session, organizer_id)

    players = []
    for player, balance in result.all():
        data = player_to_dict(player)
        data["total_owed"] = as_float(balance.total_owed if balance else ZERO)
        data["total_paid"] = as_float(balance.total_paid if balance else ZERO)
        data["current_balance"] = as_float(balance.current_balance if balance else ZERO)
        data["last_session_date"] = isoformat_or_none(balance.last_session_date if balance else None)
        data["session_count"] = counts.get(player.id, 0)
        players.append(data)
    return players


async def update_player(
    session: AsyncSession, organizer_id: str, player_id: str, updates: Dict
) -> Dict:
    """
    Update player fields.

    Only name, phone_number, is_temporary, is_active and notes can change.
    """
    player = await get_owned_player(session, organizer_id, player_id)
    unknown = set(updates) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    if "name" in updates:
        player.name = _clean_name(updates["name"])
    if "phone_number" in updates:
        phone = _clean_phone(updates["phone_number"])
        if phone and await check_phone_exists(session, organizer_id, phone, exclude_player_id=player_id):
            raise DuplicatePhoneError(f"Phone number {phone} is already registered")
        player.phone_number = phone
    for field in ("is_temporary", "is_active", "notes"):
        if field in updates:
            setattr(player, field, updates[field])

    await session.flush()
    await session.refresh(player)
    return player_to_dict(player)


async def set_player_active(
    session: AsyncSession, organizer_id: str, player_id: str, is_active: bool
) -> Dict:
    """Activate or deactivate a player."""
    return await update_player(session, organizer_id, player_id, {"is_active": is_active})


async def has_history(session: AsyncSession, player_id: str) -> bool:
    participations = await session.execute(
        select(SessionParticipant.id).where(SessionParticipant.player_id == player_id).limit(1)
    )
    if participations.first() is not None:
        return True
    payments = await session.execute(
        select(Payment.id).where(Payment.player_id == player_id).limit(1)
    )
    return payments.first() is not None


async def delete_player(session: AsyncSession, organizer_id: str, player_id: str) -> bool:
    """
    Hard-delete a player who never played or paid.

    Raises:
        PlayerInUseError: If the player has any session or payment history
    """
    player = await get_owned_player(session, organizer_id, player_id)
    if await has_history(session, player_id):
        raise PlayerInUseError(
            f"Player {player.name} has session or payment history; deactivate instead"
        )
    await session.execute(delete(PlayerBalance).where(PlayerBalance.player_id == player_id))
    await session.delete(player)
    await session.flush()
    logger.info(f"Deleted player {player_id} for organizer {organizer_id}")
    return True


async def search_players(
    session: AsyncSession, organizer_id: str, search_term: str, limit: int = 20
) -> List[Dict]:
    """Case-insensitive search on active players' names and phone numbers."""
    require_organizer(organizer_id)
    pattern = f"%{search_term.strip().lower()}%"
    result = await session.execute(
        select(Player)
        .where(
            Player.organizer_id == organizer_id,
            Player.is_active == True,  # noqa: E712
            or_(func.lower(Player.name).like(pattern), Player.phone_number.like(pattern)),
        )
        .order_by(Player.name)
        .limit(limit)
    )
    return [player_to_dict(p) for p in result.scalars().all()]


async def bulk_set_active(
    session: AsyncSession, organizer_id: str, player_ids: List[str], is_active: bool
) -> int:
    """Activate or deactivate several players at once. Returns the number updated."""
    players = await get_owned_players(session, organizer_id, player_ids)
    if not players:
        return 0
    await session.execute(
        update(Player)
        .where(Player.id.in_([p.id for p in players]))
        .values(is_active=is_active)
        .execution_options(synchronize_session="fetch")
    )
    await session.flush()
    return len(players)
