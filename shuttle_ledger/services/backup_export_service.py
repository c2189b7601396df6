"""
Backup export.

Serializes one organizer's locations, players, sessions, session
participants, payments and player balances into a self-describing archive
(metadata, data, statistics). Every table is read in pages so large
histories are never fetched in a single query.
"""

import json
import logging
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator, Dict, Iterable, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    Location,
    Payment,
    Player,
    PlayerBalance,
    Session,
    SessionParticipant,
)
from shuttle_ledger.services.ownership import require_organizer
from shuttle_ledger.utils.constants import (
    APP_VERSION,
    BACKUP_FILENAME_PREFIX,
    BACKUP_TABLES,
    EXPORT_PAGE_SIZE,
)
from shuttle_ledger.utils.datetime_utils import isoformat_or_none, parse_date, utcnow
from shuttle_ledger.utils.money import ZERO, as_float, round_to_tenth, to_money

logger = logging.getLogger(__name__)

EXPORT_TYPES = ("full_backup", "date_range", "selective")

# Columns that never go into an archive. Session totals are computed from
# the stored inputs; transfer_id points at a table the archive does not carry
# (legs are re-paired by reference_number on import).
EXCLUDED_COLUMNS = {
    "sessions": {"total_cost", "cost_per_player"},
    "payments": {"transfer_id"},
}


def build_backup_filename(export_date: Optional[date] = None) -> str:
    """badminton-backup-YYYY-MM-DD.json"""
    export_date = export_date or utcnow().date()
    return f"{BACKUP_FILENAME_PREFIX}-{export_date.isoformat()}.json"


def serialize_value(value):
    """JSON-ready form of a column value."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return as_float(value)
    if isinstance(value, (datetime, date, time)):
        return isoformat_or_none(value)
    return value


def record_to_dict(table: str, row) -> Dict:
    """Every stored column of a row, minus the table's excluded columns."""
    excluded = EXCLUDED_COLUMNS.get(table, set())
    return {
        column.name: serialize_value(getattr(row, column.key))
        for column in row.__table__.columns
        if column.name not in excluded
    }


def serialize_archive(archive: Dict) -> str:
    return json.dumps(archive, indent=2, ensure_ascii=False)


def _normalize_options(export_type: str, date_from, date_to, include: Optional[Iterable[str]]):
    if export_type not in EXPORT_TYPES:
        raise ValueError(f"Invalid export type: {export_type}")
    start = parse_date(date_from)
    end = parse_date(date_to)
    if start and end and start > end:
        raise ValueError("date_from must not be after date_to")
    tables = set(BACKUP_TABLES)
    if export_type == "selective":
        tables = set(include or [])
        unknown = tables - set(BACKUP_TABLES)
        if unknown:
            raise ValueError(f"Unknown export tables: {', '.join(sorted(unknown))}")
        if not tables:
            raise ValueError("Selective export requires at least one table")
    if export_type != "date_range":
        start = end = None
    return start, end, tables


def _session_filters(organizer_id: str, start: Optional[date], end: Optional[date]) -> List:
    filters = [Session.organizer_id == organizer_id]
    if start:
        filters.append(Session.session_date >= start)
    if end:
        filters.append(Session.session_date <= end)
    return filters


def _payment_filters(organizer_id: str, start: Optional[date], end: Optional[date]) -> List:
    filters = [Payment.organizer_id == organizer_id]
    if start:
        filters.append(Payment.payment_date >= start)
    if end:
        filters.append(Payment.payment_date <= end)
    return filters


async def fetch_paged(session: AsyncSession, query, page_size: int = EXPORT_PAGE_SIZE) -> AsyncIterator:
    """
    Yield rows of a query one page at a time.

    The query must have a deterministic order_by so pages do not overlap.
    """
    offset = 0
    while True:
        result = await session.execute(query.limit(page_size).offset(offset))
        rows = result.scalars().all()
        for row in rows:
            yield row
        if len(rows) < page_size:
            break
        offset += page_size


async def _collect(session: AsyncSession, table: str, query, page_size: int) -> List[Dict]:
    records = [record_to_dict(table, row) async for row in fetch_paged(session, query, page_size)]
    logger.info(f"Fetched {len(records)} {table}")
    return records


async def fetch_organizer_data(
    session: AsyncSession,
    organizer_id: str,
    tables: Iterable[str],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page_size: int = EXPORT_PAGE_SIZE,
) -> Dict[str, List[Dict]]:
    """
    Read the requested tables in dependency order.

    The date range applies to sessions (and so their participants) and to
    payments; locations, players and balances are always complete.
    """
    wanted = set(tables)
    data: Dict[str, List[Dict]] = {table: [] for table in BACKUP_TABLES}

    queries = {
        "locations": select(Location)
        .where(Location.organizer_id == organizer_id)
        .order_by(Location.created_at, Location.id),
        "players": select(Player)
        .where(Player.organizer_id == organizer_id)
        .order_by(Player.created_at, Player.id),
        "sessions": select(Session)
        .where(*_session_filters(organizer_id, date_from, date_to))
        .order_by(Session.session_date, Session.created_at, Session.id),
        # Restricted to the exported sessions by applying the same filters
        "session_participants": select(SessionParticipant)
        .join(Session, Session.id == SessionParticipant.session_id)
        .where(*_session_filters(organizer_id, date_from, date_to))
        .order_by(Session.session_date, SessionParticipant.session_id, SessionParticipant.id),
        "payments": select(Payment)
        .where(*_payment_filters(organizer_id, date_from, date_to))
        .order_by(Payment.payment_date, Payment.created_at, Payment.id),
        "player_balances": select(PlayerBalance)
        .where(PlayerBalance.organizer_id == organizer_id)
        .order_by(PlayerBalance.player_id),
    }

    for table in BACKUP_TABLES:
        if table in wanted:
            data[table] = await _collect(session, table, queries[table], page_size)
    return data


def calculate_statistics(data: Dict[str, List[Dict]]) -> Dict:
    sessions = data.get("sessions", [])
    payments = data.get("payments", [])
    session_dates = sorted(s["session_date"] for s in sessions if s.get("session_date"))
    total_amount = sum((to_money(p["amount"]) for p in payments), ZERO)
    return {
        "date_range": {
            "earliest_session": session_dates[0] if session_dates else None,
            "latest_session": session_dates[-1] if session_dates else None,
        },
        "totals": {
            "total_sessions": len(sessions),
            "total_players": len(data.get("players", [])),
            "total_payments": len(payments),
            "total_amount_handled": float(round_to_tenth(total_amount)),
        },
    }


async def export_organizer_data(
    session: AsyncSession,
    organizer_id: str,
    export_type: str = "full_backup",
    date_from=None,
    date_to=None,
    include: Optional[Iterable[str]] = None,
    page_size: int = EXPORT_PAGE_SIZE,
) -> Dict:
    """
    Export an organizer's data as an archive.

    Returns:
        Result dict: success, message, filename, file_size, record_counts,
        errors and archive (the document itself). Store failures are
        reported in the result rather than raised.
    """
    require_organizer(organizer_id)
    start, end, tables = _normalize_options(export_type, date_from, date_to, include)
    result = {
        "success": False,
        "message": "",
        "filename": "",
        "file_size": 0,
        "record_counts": {table: 0 for table in BACKUP_TABLES},
        "errors": [],
        "archive": None,
    }

    logger.info(f"Starting {export_type} export for organizer {organizer_id}")
    try:
        data = await fetch_organizer_data(session, organizer_id, tables, start, end, page_size)
    except Exception as e:
        logger.error(f"Export failed for organizer {organizer_id}: {e}", exc_info=True)
        result["message"] = f"Export failed: {e}"
        result["errors"].append(str(e))
        return result

    total_records = sum(len(records) for records in data.values())
    exported_at = utcnow()
    archive = {
        "metadata": {
            "export_date": exported_at.isoformat(),
            "app_version": APP_VERSION,
            "organizer_id": organizer_id,
            "total_records": total_records,
            "export_type": export_type,
        },
        "data": data,
        "statistics": calculate_statistics(data),
    }

    result.update(
        success=True,
        message=f"Export completed successfully! {total_records} records exported.",
        filename=build_backup_filename(exported_at.date()),
        file_size=len(serialize_archive(archive).encode("utf-8")),
        record_counts={table: len(records) for table, records in data.items()},
        archive=archive,
    )
    logger.info(f"Export completed for organizer {organizer_id}: {result['record_counts']}")
    return result


def estimate_file_size(total_records: int) -> str:
    if total_records < 100:
        return "< 1 MB"
    if total_records < 1000:
        return "1-5 MB"
    if total_records < 5000:
        return "5-25 MB"
    return "> 25 MB"


async def _count(session: AsyncSession, query) -> int:
    result = await session.execute(select(func.count()).select_from(query.subquery()))
    return result.scalar_one()


async def get_export_preview(
    session: AsyncSession,
    organizer_id: str,
    export_type: str = "full_backup",
    date_from=None,
    date_to=None,
    include: Optional[Iterable[str]] = None,
) -> Dict:
    """Record counts, session date range and a size estimate, without exporting."""
    require_organizer(organizer_id)
    start, end, tables = _normalize_options(export_type, date_from, date_to, include)

    count_queries = {
        "locations": select(Location.id).where(Location.organizer_id == organizer_id),
        "players": select(Player.id).where(Player.organizer_id == organizer_id),
        "sessions": select(Session.id).where(*_session_filters(organizer_id, start, end)),
        "session_participants": select(SessionParticipant.id)
        .join(Session, Session.id == SessionParticipant.session_id)
        .where(*_session_filters(organizer_id, start, end)),
        "payments": select(Payment.id).where(*_payment_filters(organizer_id, start, end)),
        "player_balances": select(PlayerBalance.id).where(
            PlayerBalance.organizer_id == organizer_id
        ),
    }
    counts = {table: 0 for table in BACKUP_TABLES}
    for table in BACKUP_TABLES:
        if table in tables:
            counts[table] = await _count(session, count_queries[table])

    result = await session.execute(
        select(func.min(Session.session_date), func.max(Session.session_date)).where(
            *_session_filters(organizer_id, start, end)
        )
    )
    earliest, latest = result.one()
    total = sum(counts.values())
    return {
        "success": True,
        "record_counts": counts,
        "total_records": total,
        "date_range": {
            "earliest": isoformat_or_none(earliest),
            "latest": isoformat_or_none(latest),
        },
        "estimated_file_size": estimate_file_size(total),
    }
