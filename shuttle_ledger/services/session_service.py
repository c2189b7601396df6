"""
Session recording and lifecycle.

A completed session charges each participant an even share of its total
cost. Every change to a session's participants or its status recomputes
the balances of all affected players in the same unit of work.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    Player,
    Session,
    SessionParticipant,
    SessionStatus,
)
from shuttle_ledger.services import balance_service, player_service, settings_service
from shuttle_ledger.services.calculation_service import (
    CostValidationError,
    allocate,
    allocate_fixed,
)
from shuttle_ledger.services.ownership import (
    get_owned_location,
    get_owned_player,
    get_owned_players,
    get_owned_session,
    require_organizer,
)
from shuttle_ledger.utils.datetime_utils import isoformat_or_none, parse_date, parse_time, today
from shuttle_ledger.utils.money import ZERO, as_float, to_money

logger = logging.getLogger(__name__)


class SessionStateError(ValueError):
    """Raised when an operation does not apply to the session's current status."""


DETAIL_FIELDS = ("title", "start_time", "end_time", "location", "location_id", "notes", "session_date")


def session_to_dict(sess: Session, participants: Optional[List[Dict]] = None) -> Dict:
    data = {
        "id": sess.id,
        "organizer_id": sess.organizer_id,
        "title": sess.title,
        "session_date": isoformat_or_none(sess.session_date),
        "start_time": isoformat_or_none(sess.start_time),
        "end_time": isoformat_or_none(sess.end_time),
        "location": sess.location,
        "location_id": sess.location_id,
        "court_cost": as_float(sess.court_cost),
        "shuttlecock_cost": as_float(sess.shuttlecock_cost),
        "other_costs": as_float(sess.other_costs),
        "court_rate_per_hour": as_float(sess.court_rate_per_hour),
        "hours_played": as_float(sess.hours_played),
        "shuttlecock_rate_each": as_float(sess.shuttlecock_rate_each),
        "shuttlecocks_used": sess.shuttlecocks_used,
        "player_count": sess.player_count,
        "total_cost": as_float(sess.total_cost),
        "cost_per_player": as_float(sess.cost_per_player),
        "status": SessionStatus(sess.status).value,
        "notes": sess.notes,
        "created_at": isoformat_or_none(sess.created_at),
        "updated_at": isoformat_or_none(sess.updated_at),
    }
    if participants is not None:
        data["participants"] = participants
    return data


async def _participant_rows(session: AsyncSession, session_id: str) -> List[Dict]:
    result = await session.execute(
        select(SessionParticipant, Player)
        .join(Player, Player.id == SessionParticipant.player_id)
        .where(SessionParticipant.session_id == session_id)
        .order_by(Player.name)
    )
    return [
        {
            "id": participant.id,
            "player_id": player.id,
            "player_name": player.name,
            "is_temporary": player.is_temporary,
            "amount_owed": as_float(participant.amount_owed),
        }
        for participant, player in result.all()
    ]


async def _participant_ids(session: AsyncSession, session_id: str) -> List[str]:
    result = await session.execute(
        select(SessionParticipant.player_id).where(SessionParticipant.session_id == session_id)
    )
    return [row[0] for row in result.all()]


async def _resolve_participants(
    session: AsyncSession,
    organizer_id: str,
    participant_ids: Sequence[str],
    new_player_names: Optional[Iterable[str]],
) -> List[str]:
    """Validate existing participants and create temporary players for drop-ins."""
    if len(set(participant_ids)) != len(participant_ids):
        raise CostValidationError(["Participants must be unique"])
    await get_owned_players(session, organizer_id, participant_ids)
    ids = list(participant_ids)
    for name in new_player_names or []:
        if not (name or "").strip():
            continue
        created = await player_service.create_player(
            session, organizer_id, name=name, is_temporary=True
        )
        logger.info(f"Created temporary player {created['id']} ({created['name']})")
        ids.append(created["id"])
    return ids


async def _compute_allocation(
    session: AsyncSession,
    organizer_id: str,
    participant_ids: Sequence[str],
    hours_played=None,
    court_rate=None,
    shuttlecocks_used: Optional[int] = None,
    shuttlecock_rate=None,
    court_cost=None,
    shuttlecock_cost=None,
    other_costs=None,
) -> Dict:
    """
    Usage-based when hours_played is given (missing rates fall back to the
    organizer's defaults), otherwise the explicit cost fields are split.
    """
    if hours_played is not None:
        if court_rate is None or shuttlecock_rate is None:
            settings = await settings_service.get_organizer_settings(session, organizer_id)
            if court_rate is None:
                court_rate = settings["default_court_rate"]
            if shuttlecock_rate is None:
                shuttlecock_rate = settings["default_shuttlecock_rate"]
        allocation = allocate(
            hours_played,
            court_rate,
            shuttlecocks_used or 0,
            shuttlecock_rate,
            other_costs or 0,
            participant_ids,
        )
        allocation["rates"] = {
            "court_rate_per_hour": to_money(court_rate),
            "hours_played": to_money(hours_played),
            "shuttlecock_rate_each": to_money(shuttlecock_rate),
            "shuttlecocks_used": shuttlecocks_used or 0,
        }
        return allocation

    allocation = allocate_fixed(court_cost or 0, shuttlecock_cost or 0, other_costs or 0, participant_ids)
    allocation["rates"] = {
        "court_rate_per_hour": None,
        "hours_played": None,
        "shuttlecock_rate_each": None,
        "shuttlecocks_used": None,
    }
    return allocation


def _apply_allocation(sess: Session, allocation: Dict) -> None:
    sess.court_cost = allocation["court_cost"]
    sess.shuttlecock_cost = allocation["shuttlecock_cost"]
    sess.other_costs = allocation["other_costs"]
    sess.player_count = allocation["player_count"]
    for field, value in allocation["rates"].items():
        setattr(sess, field, value)


async def _replace_participants(
    session: AsyncSession, session_id: str, charges: Dict[str, Optional[object]]
) -> None:
    """Delete every participant row for the session and insert the new set."""
    await session.execute(
        delete(SessionParticipant).where(SessionParticipant.session_id == session_id)
    )
    for player_id, amount in charges.items():
        session.add(
            SessionParticipant(
                session_id=session_id,
                player_id=player_id,
                amount_owed=amount,
            )
        )
    await session.flush()


async def _apply_details(session: AsyncSession, organizer_id: str, sess: Session, details: Dict) -> None:
    if "session_date" in details and details["session_date"] is not None:
        sess.session_date = parse_date(details["session_date"])
    if "title" in details:
        sess.title = details["title"]
    if "start_time" in details:
        sess.start_time = parse_time(details["start_time"])
    if "end_time" in details:
        sess.end_time = parse_time(details["end_time"])
    if "notes" in details:
        sess.notes = details["notes"]
    if details.get("location_id"):
        location = await get_owned_location(session, organizer_id, details["location_id"])
        sess.location_id = location.id
        sess.location = details.get("location") or location.name
    elif "location_id" in details:
        sess.location_id = None
        if "location" in details:
            sess.location = details["location"]
    elif "location" in details:
        sess.location = details["location"]


async def record_completed_session(
    session: AsyncSession,
    organizer_id: str,
    session_date,
    participant_ids: Sequence[str],
    new_player_names: Optional[Iterable[str]] = None,
    hours_played=None,
    court_rate=None,
    shuttlecocks_used: Optional[int] = None,
    shuttlecock_rate=None,
    court_cost=None,
    shuttlecock_cost=None,
    other_costs=None,
    **details,
) -> Dict:
    """
    Record a completed session and charge its participants.

    Args:
        session: Database session (caller commits)
        organizer_id: Organizer scope
        session_date: Date played
        participant_ids: Existing players who played
        new_player_names: Drop-ins to create as temporary players and include
        hours_played/court_rate/shuttlecocks_used/shuttlecock_rate: usage-based costs
        court_cost/shuttlecock_cost/other_costs: explicit costs (used when hours_played is None)
        **details: title, start_time, end_time, location, location_id, notes

    Returns:
        Session dict with participants
    """
    require_organizer(organizer_id)
    ids = await _resolve_participants(session, organizer_id, participant_ids, new_player_names)
    allocation = await _compute_allocation(
        session, organizer_id, ids, hours_played, court_rate, shuttlecocks_used,
        shuttlecock_rate, court_cost, shuttlecock_cost, other_costs,
    )

    sess = Session(
        organizer_id=organizer_id,
        session_date=parse_date(session_date) or today(),
        status=SessionStatus.COMPLETED,
    )
    _apply_allocation(sess, allocation)
    await _apply_details(session, organizer_id, sess, details)
    session.add(sess)
    await session.flush()

    await _replace_participants(session, sess.id, allocation["charges"])
    await balance_service.recompute_players(session, organizer_id, ids)

    logger.info(
        f"Recorded session {sess.id} on {sess.session_date}: total={allocation['total_cost']} "
        f"players={allocation['player_count']} each={allocation['cost_per_player']}"
    )
    return await get_session(session, organizer_id, sess.id)


async def create_planned_session(
    session: AsyncSession,
    organizer_id: str,
    session_date,
    participant_ids: Sequence[str] = (),
    court_cost=None,
    shuttlecock_cost=None,
    other_costs=None,
    **details,
) -> Dict:
    """Create a planned session; expected participants carry no charge yet."""
    require_organizer(organizer_id)
    planned_date = parse_date(session_date)
    if planned_date is None:
        raise ValueError("Session date is required")
    ids = await _resolve_participants(session, organizer_id, participant_ids, None)
    allocation = allocate_fixed(court_cost or 0, shuttlecock_cost or 0, other_costs or 0, ids)

    sess = Session(
        organizer_id=organizer_id,
        session_date=planned_date,
        status=SessionStatus.PLANNED,
        court_cost=allocation["court_cost"],
        shuttlecock_cost=allocation["shuttlecock_cost"],
        other_costs=allocation["other_costs"],
        player_count=len(ids),
    )
    await _apply_details(session, organizer_id, sess, details)
    session.add(sess)
    await session.flush()
    await _replace_participants(session, sess.id, {pid: None for pid in ids})
    logger.info(f"Planned session {sess.id} on {sess.session_date} with {len(ids)} players")
    return await get_session(session, organizer_id, sess.id)


async def _recharge_session(
    session: AsyncSession,
    organizer_id: str,
    sess: Session,
    participant_ids: Sequence[str],
    new_player_names,
    cost_inputs: Dict,
    details: Dict,
) -> Dict:
    old_ids = await _participant_ids(session, sess.id)
    ids = await _resolve_participants(session, organizer_id, participant_ids, new_player_names)
    allocation = await _compute_allocation(session, organizer_id, ids, **cost_inputs)

    _apply_allocation(sess, allocation)
    await _apply_details(session, organizer_id, sess, details)
    sess.status = SessionStatus.COMPLETED
    await session.flush()

    await _replace_participants(session, sess.id, allocation["charges"])
    await balance_service.recompute_players(session, organizer_id, set(old_ids) | set(ids))
    return allocation


async def convert_planned_to_completed(
    session: AsyncSession,
    organizer_id: str,
    session_id: str,
    participant_ids: Optional[Sequence[str]] = None,
    new_player_names: Optional[Iterable[str]] = None,
    hours_played=None,
    court_rate=None,
    shuttlecocks_used: Optional[int] = None,
    shuttlecock_rate=None,
    court_cost=None,
    shuttlecock_cost=None,
    other_costs=None,
    **details,
) -> Dict:
    """
    Complete a planned session.

    Without participant_ids the planned participants are charged. Without
    any cost inputs the planned session's own cost fields are used.
    """
    sess = await get_owned_session(session, organizer_id, session_id)
    if sess.status != SessionStatus.PLANNED:
        raise SessionStateError(f"Session {session_id} is not planned")
    if participant_ids is None:
        participant_ids = await _participant_ids(session, session_id)
    if hours_played is None and court_cost is None and shuttlecock_cost is None and other_costs is None:
        court_cost, shuttlecock_cost, other_costs = sess.court_cost, sess.shuttlecock_cost, sess.other_costs

    await _recharge_session(
        session,
        organizer_id,
        sess,
        participant_ids,
        new_player_names,
        {
            "hours_played": hours_played,
            "court_rate": court_rate,
            "shuttlecocks_used": shuttlecocks_used,
            "shuttlecock_rate": shuttlecock_rate,
            "court_cost": court_cost,
            "shuttlecock_cost": shuttlecock_cost,
            "other_costs": other_costs,
        },
        details,
    )
    logger.info(f"Converted planned session {session_id} to completed")
    return await get_session(session, organizer_id, session_id)


async def update_completed_session(
    session: AsyncSession,
    organizer_id: str,
    session_id: str,
    participant_ids: Sequence[str],
    new_player_names: Optional[Iterable[str]] = None,
    hours_played=None,
    court_rate=None,
    shuttlecocks_used: Optional[int] = None,
    shuttlecock_rate=None,
    court_cost=None,
    shuttlecock_cost=None,
    other_costs=None,
    **details,
) -> Dict:
    """
    Replace a completed session's costs and participant list.

    All previous participant rows are removed and a fresh set inserted; the
    union of old and new participants is recomputed so removed players lose
    their charge.
    """
    sess = await get_owned_session(session, organizer_id, session_id)
    if sess.status != SessionStatus.COMPLETED:
        raise SessionStateError(f"Session {session_id} is not completed")
    await _recharge_session(
        session,
        organizer_id,
        sess,
        participant_ids,
        new_player_names,
        {
            "hours_played": hours_played,
            "court_rate": court_rate,
            "shuttlecocks_used": shuttlecocks_used,
            "shuttlecock_rate": shuttlecock_rate,
            "court_cost": court_cost,
            "shuttlecock_cost": shuttlecock_cost,
            "other_costs": other_costs,
        },
        details,
    )
    logger.info(f"Updated completed session {session_id}")
    return await get_session(session, organizer_id, session_id)


async def update_session_details(
    session: AsyncSession, organizer_id: str, session_id: str, details: Dict
) -> Dict:
    """Change non-financial fields (title, date, times, location, notes)."""
    sess = await get_owned_session(session, organizer_id, session_id)
    unknown = set(details) - set(DETAIL_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    await _apply_details(session, organizer_id, sess, details)
    await session.flush()
    player_ids = await _participant_ids(session, session_id)
    if sess.status == SessionStatus.COMPLETED and "session_date" in details:
        # last_session_date depends on it
        await balance_service.recompute_players(session, organizer_id, player_ids)
    return await get_session(session, organizer_id, session_id)


async def cancel_session(session: AsyncSession, organizer_id: str, session_id: str) -> Dict:
    """Mark a session cancelled; its charges stop counting toward balances."""
    sess = await get_owned_session(session, organizer_id, session_id)
    if sess.status == SessionStatus.CANCELLED:
        raise SessionStateError(f"Session {session_id} is already cancelled")
    sess.status = SessionStatus.CANCELLED
    await session.flush()
    await balance_service.recompute_players(
        session, organizer_id, await _participant_ids(session, session_id)
    )
    logger.info(f"Cancelled session {session_id}")
    return await get_session(session, organizer_id, session_id)


async def delete_session(session: AsyncSession, organizer_id: str, session_id: str) -> bool:
    """Delete a session and its participant rows, then recompute those players."""
    sess = await get_owned_session(session, organizer_id, session_id)
    player_ids = await _participant_ids(session, session_id)
    await session.execute(
        delete(SessionParticipant).where(SessionParticipant.session_id == session_id)
    )
    await session.delete(sess)
    await session.flush()
    await balance_service.recompute_players(session, organizer_id, player_ids)
    logger.info(f"Deleted session {session_id} ({len(player_ids)} participants)")
    return True


async def get_session(session: AsyncSession, organizer_id: str, session_id: str) -> Dict:
    sess = await get_owned_session(session, organizer_id, session_id)
    await session.refresh(sess)
    return session_to_dict(sess, await _participant_rows(session, session_id))


async def list_sessions(
    session: AsyncSession,
    organizer_id: str,
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: Optional[int] = None,
) -> List[Dict]:
    """List sessions newest first, optionally filtered by status and date range."""
    require_organizer(organizer_id)
    query = select(Session).where(Session.organizer_id == organizer_id)
    if status:
        query = query.where(Session.status == SessionStatus(status))
    if date_from:
        query = query.where(Session.session_date >= parse_date(date_from))
    if date_to:
        query = query.where(Session.session_date <= parse_date(date_to))
    query = query.order_by(Session.session_date.desc(), Session.start_time.desc())
    if limit:
        query = query.limit(limit)
    result = await session.execute(query)
    return [session_to_dict(s) for s in result.scalars().all()]


async def list_upcoming_sessions(session: AsyncSession, organizer_id: str) -> List[Dict]:
    """Planned sessions from today onward, soonest first."""
    require_organizer(organizer_id)
    result = await session.execute(
        select(Session)
        .where(
            Session.organizer_id == organizer_id,
            Session.status == SessionStatus.PLANNED,
            Session.session_date >= today(),
        )
        .order_by(Session.session_date.asc(), Session.start_time.asc())
    )
    return [session_to_dict(s) for s in result.scalars().all()]


async def list_recent_sessions(
    session: AsyncSession, organizer_id: str, limit: int = 10
) -> List[Dict]:
    return await list_sessions(
        session, organizer_id, status=SessionStatus.COMPLETED.value, limit=limit
    )


async def list_player_sessions(
    session: AsyncSession, organizer_id: str, player_id: str, limit: int = 10
) -> List[Dict]:
    """A player's sessions, newest first, with the amount they owed for each."""
    await get_owned_player(session, organizer_id, player_id)
    result = await session.execute(
        select(Session, SessionParticipant.amount_owed)
        .join(SessionParticipant, SessionParticipant.session_id == Session.id)
        .where(Session.organizer_id == organizer_id, SessionParticipant.player_id == player_id)
        .order_by(Session.session_date.desc())
        .limit(limit)
    )
    sessions = []
    for sess, amount_owed in result.all():
        data = session_to_dict(sess)
        data["amount_owed"] = as_float(amount_owed)
        sessions.append(data)
    return sessions


async def get_session_stats(
    session: AsyncSession,
    organizer_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Dict:
    """Counts and cost averages over an organizer's sessions."""
    sessions = await list_sessions(session, organizer_id, date_from=date_from, date_to=date_to)
    completed = [s for s in sessions if s["status"] == SessionStatus.COMPLETED.value]
    planned = [s for s in sessions if s["status"] == SessionStatus.PLANNED.value]
    total_revenue = sum((to_money(s["total_cost"]) for s in completed), ZERO)
    total_players = sum(s["player_count"] for s in completed)
    return {
        "total_sessions": len(sessions),
        "completed_sessions": len(completed),
        "planned_sessions": len(planned),
        "total_revenue": as_float(total_revenue),
        "average_session_cost": as_float(total_revenue / len(completed)) if completed else 0.0,
        "average_players_per_session": (
            round(total_players / len(completed), 1) if completed else 0.0
        ),
    }
