"""
Backup import.

Restores an archive produced by backup_export_service into an organizer's
scope under freshly generated ids:

    received -> structure validated -> integrity validated
             -> (validate only: stop) -> cleared (optional)
             -> imported in dependency order -> reported

Validation collects every defect before anything is written. Stages run in
the order locations, players, sessions, session_participants, payments,
player_balances; each stage translates archive ids through the mappings
built by earlier stages and skips any record whose parent has no mapping.
Each record is written inside its own savepoint so one failure never undoes
the records before it.
"""

import asyncio
import json
import logging
import math
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.database.models import (
    CreditTransfer,
    Location,
    Payment,
    PaymentMethod,
    Player,
    PlayerBalance,
    Session,
    SessionParticipant,
    SessionStatus,
)
from shuttle_ledger.services import balance_service, data_reset_service
from shuttle_ledger.services.ownership import require_organizer
from shuttle_ledger.utils.constants import (
    BACKUP_MAX_FILE_MB,
    BACKUP_TABLES,
    TRANSFER_CREDIT_NOTE,
    TRANSFER_DEBIT_NOTE,
)
from shuttle_ledger.utils.datetime_utils import parse_date, parse_time, parse_timestamp
from shuttle_ledger.utils.money import money_or_none, to_money

logger = logging.getLogger(__name__)

SKIP_DUPLICATES = "skip_duplicates"
REPLACE_DUPLICATES = "replace_duplicates"
MERGE_DATA = "merge_data"
CONFLICT_MODES = (SKIP_DUPLICATES, REPLACE_DUPLICATES, MERGE_DATA)

ENTITY_LABELS = {
    "players": "Player",
    "sessions": "Session",
    "payments": "Payment",
    "locations": "Location",
    "session_participants": "Participant",
    "player_balances": "Balance",
}


class BackupFormatError(ValueError):
    """Raised when a backup file cannot be read as an archive at all."""


# ============================================================================
# File checks and parsing
# ============================================================================

def check_backup_file(filename: str, size_bytes: int) -> List[str]:
    """Errors for a file that cannot be a backup (wrong extension or too large)."""
    errors = []
    if not (filename or "").lower().endswith(".json"):
        errors.append("File must be a JSON file (.json extension)")
    if size_bytes > BACKUP_MAX_FILE_MB * 1024 * 1024:
        errors.append(f"File size too large (maximum {BACKUP_MAX_FILE_MB}MB)")
    return errors


def parse_backup_file(content) -> Dict:
    """
    Parse archive bytes or text.

    Raises:
        BackupFormatError: If the content is not valid JSON or not a JSON object
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError:
            raise BackupFormatError("Invalid JSON format")
    try:
        archive = json.loads(content)
    except (TypeError, ValueError):
        raise BackupFormatError("Invalid JSON format")
    if not isinstance(archive, dict):
        raise BackupFormatError("Invalid backup format - expected a JSON object")
    return archive


# ============================================================================
# Validation
# ============================================================================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_structure(archive: Dict) -> Tuple[List[str], List[str]]:
    """Check the top-level sections. Returns (errors, warnings)."""
    errors: List[str] = []
    warnings: List[str] = []

    metadata = archive.get("metadata")
    if not isinstance(metadata, dict):
        errors.append("Missing metadata section")
    else:
        if not metadata.get("export_date"):
            warnings.append("Missing export date in metadata")
        if not metadata.get("organizer_id"):
            warnings.append("Missing organizer ID in metadata")

    data = archive.get("data")
    if not isinstance(data, dict):
        errors.append("Missing data section")
    else:
        for table in BACKUP_TABLES:
            if table in data and data[table] is not None and not isinstance(data[table], list):
                errors.append(f"Invalid {table} data - must be an array")

    if not archive.get("statistics"):
        warnings.append("Missing statistics section")

    return errors, warnings


def _check_date(errors: List[str], label: str, record: Dict, field: str) -> None:
    value = record.get(field)
    if not value:
        errors.append(f"{label}: Missing {field}")
        return
    try:
        parse_date(value)
    except (TypeError, ValueError):
        errors.append(f"{label}: Invalid {field}")


def _check_optional_date(errors: List[str], label: str, record: Dict, field: str) -> None:
    if record.get(field) in (None, ""):
        return
    try:
        parse_date(record[field])
    except (TypeError, ValueError):
        errors.append(f"{label}: Invalid {field}")


def _check_text(errors: List[str], label: str, record: Dict, field: str) -> None:
    """Required string field: missing or blank, or present with another type."""
    value = record.get(field)
    if value is None or value == "":
        errors.append(f"{label}: Missing {field}")
    elif not isinstance(value, str):
        errors.append(f"{label}: Invalid {field}")
    elif not value.strip():
        errors.append(f"{label}: Missing {field}")


def validate_data_integrity(data: Dict) -> Tuple[List[str], List[str]]:
    """
    Check every record's required fields. Returns (errors, warnings).

    All defects are collected; nothing stops at the first one.
    """
    errors: List[str] = []
    warnings: List[str] = []

    for table in BACKUP_TABLES:
        for index, record in enumerate(data.get(table) or [], start=1):
            if not isinstance(record, dict):
                errors.append(f"{ENTITY_LABELS[table]} {index}: Invalid record")

    for index, location in enumerate(data.get("locations") or [], start=1):
        if not isinstance(location, dict):
            continue
        # A blank location name is skipped at import, any other type is an error
        name = location.get("name")
        if name is not None and not isinstance(name, str):
            errors.append(f"Location {index}: Invalid name")
        if location.get("id") is not None and not isinstance(location["id"], str):
            errors.append(f"Location {index}: Invalid id")

    for index, player in enumerate(data.get("players") or [], start=1):
        if not isinstance(player, dict):
            continue
        label = f"Player {index}"
        _check_text(errors, label, player, "id")
        _check_text(errors, label, player, "name")
        if not player.get("organizer_id"):
            errors.append(f"{label}: Missing organizer_id")

    for index, sess in enumerate(data.get("sessions") or [], start=1):
        if not isinstance(sess, dict):
            continue
        label = f"Session {index}"
        _check_text(errors, label, sess, "id")
        _check_date(errors, label, sess, "session_date")
        location_id = sess.get("location_id")
        if location_id is not None and not isinstance(location_id, str):
            errors.append(f"{label}: Invalid location_id")
        if not sess.get("organizer_id"):
            errors.append(f"{label}: Missing organizer_id")
        for field in ("court_cost", "shuttlecock_cost", "other_costs"):
            if field in sess and sess[field] is not None:
                if not _is_number(sess[field]) or sess[field] < 0:
                    errors.append(f"{label}: Invalid {field}")
        for field in ("player_count", "shuttlecocks_used"):
            if sess.get(field) is not None and not _is_number(sess[field]):
                errors.append(f"{label}: Invalid {field}")
        status = sess.get("status")
        if status is not None and (not isinstance(status, str) or status not in {s.value for s in SessionStatus}):
            errors.append(f"{label}: Invalid status")

    for index, participant in enumerate(data.get("session_participants") or [], start=1):
        if not isinstance(participant, dict):
            continue
        label = f"Participant {index}"
        _check_text(errors, label, participant, "session_id")
        _check_text(errors, label, participant, "player_id")
        amount = participant.get("amount_owed")
        if amount is not None and (not _is_number(amount) or amount < 0):
            errors.append(f"{label}: Invalid amount_owed")

    for index, payment in enumerate(data.get("payments") or [], start=1):
        if not isinstance(payment, dict):
            continue
        label = f"Payment {index}"
        _check_text(errors, label, payment, "player_id")
        if not payment.get("organizer_id"):
            errors.append(f"{label}: Missing organizer_id")
        if not _is_number(payment.get("amount")) or payment.get("amount") == 0:
            errors.append(f"{label}: Invalid amount")
        _check_date(errors, label, payment, "payment_date")
        method = payment.get("payment_method")
        if method is not None and (not isinstance(method, str) or method not in {m.value for m in PaymentMethod}):
            errors.append(f"{label}: Invalid payment_method")
        reference = payment.get("reference_number")
        if reference is not None and not isinstance(reference, str):
            errors.append(f"{label}: Invalid reference_number")

    for index, balance in enumerate(data.get("player_balances") or [], start=1):
        if not isinstance(balance, dict):
            continue
        label = f"Balance {index}"
        _check_text(errors, label, balance, "player_id")
        _check_optional_date(errors, label, balance, "last_session_date")
        _check_optional_date(errors, label, balance, "last_payment_date")
        for field in ("total_owed", "total_paid", "current_balance"):
            if balance.get(field) is not None and not _is_number(balance[field]):
                errors.append(f"{label}: Invalid {field}")

    return errors, warnings


def validate_archive(archive: Dict) -> Dict:
    """
    Structure and integrity validation of a parsed archive.

    Returns:
        Dict with is_valid, errors, warnings, metadata and record_counts
    """
    errors, warnings = validate_structure(archive)
    result = {
        "is_valid": False,
        "errors": errors,
        "warnings": warnings,
        "metadata": None,
        "record_counts": {table: 0 for table in BACKUP_TABLES},
    }
    if errors:
        return result

    data = archive["data"]
    result["metadata"] = {
        key: archive["metadata"].get(key)
        for key in ("export_date", "app_version", "organizer_id", "total_records", "export_type")
    }
    result["record_counts"] = {table: len(data.get(table) or []) for table in BACKUP_TABLES}
    integrity_errors, integrity_warnings = validate_data_integrity(data)
    errors.extend(integrity_errors)
    warnings.extend(integrity_warnings)
    result["is_valid"] = not errors
    return result


# ============================================================================
# Import state
# ============================================================================

class ImportRun:
    """Mutable state of one import: id mappings, counters and messages."""

    def __init__(self, organizer_id: str, conflict_resolution: str):
        self.organizer_id = organizer_id
        self.conflict_resolution = conflict_resolution
        self.id_mappings: Dict[str, Dict[str, str]] = {
            "locations": {},
            "players": {},
            "sessions": {},
        }
        # Rows written by this run never count as pre-existing duplicates
        self.created_ids: Dict[str, set] = {
            "locations": set(),
            "players": set(),
            "sessions": set(),
            "payments": set(),
        }
        self.touched_players: set = set()
        self.counts = {
            table: {"processed": 0, "created": 0, "updated": 0, "skipped": 0, "errored": 0}
            for table in BACKUP_TABLES
        }
        self.conflicts: List[Dict] = []
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def count(self, table: str, outcome: str, n: int = 1) -> None:
        self.counts[table][outcome] += n

    def skip(self, table: str, reason: str) -> None:
        self.count(table, "skipped")
        self.warnings.append(reason)
        logger.warning(f"Import skipped: {reason}")

    def fail(self, table: str, label: str, error: Exception) -> None:
        self.count(table, "errored")
        message = getattr(error, "orig", None) or error
        self.errors.append(f"{label}: {message}")
        logger.error(f"Import failed for {label}: {message}", exc_info=True)

    def conflict(self, kind: str, description: str, resolution: str) -> None:
        self.conflicts.append({"type": kind, "description": description, "resolution": resolution})


def _resolution_name(mode: str) -> str:
    return {SKIP_DUPLICATES: "skip", REPLACE_DUPLICATES: "replace", MERGE_DATA: "merge"}[mode]


def _apply_fields(row, values: Dict, mode: str) -> bool:
    """
    Copy archive values onto an existing row.

    replace overwrites every field; merge only fills fields that are empty
    (None or "") on the existing row. Returns True when anything changed.
    """
    changed = False
    for field, value in values.items():
        current = getattr(row, field)
        if mode == MERGE_DATA and current not in (None, ""):
            continue
        if mode == MERGE_DATA and value in (None, ""):
            continue
        if current != value:
            setattr(row, field, value)
            changed = True
    return changed


def _timestamps(record: Dict, model) -> Dict:
    values = {}
    for field in ("created_at", "updated_at"):
        if field in model.__table__.columns and record.get(field):
            values[field] = parse_timestamp(record[field])
    return values


# ============================================================================
# Record conversion
# ============================================================================

def _location_values(record: Dict) -> Dict:
    return {
        "name": record["name"].strip(),
        "address": record.get("address"),
        "notes": record.get("notes"),
        "is_active": record.get("is_active", True),
    }


def _player_values(record: Dict) -> Dict:
    return {
        "name": record["name"].strip(),
        "phone_number": record.get("phone_number"),
        "is_temporary": bool(record.get("is_temporary", False)),
        "is_active": record.get("is_active", True),
        "notes": record.get("notes"),
    }


def _session_values(record: Dict, location_id: Optional[str]) -> Dict:
    shuttlecocks_used = record.get("shuttlecocks_used")
    return {
        "title": record.get("title"),
        "session_date": parse_date(record["session_date"]),
        "start_time": parse_time(record.get("start_time")),
        "end_time": parse_time(record.get("end_time")),
        "location": record.get("location"),
        "location_id": location_id,
        "court_cost": to_money(record.get("court_cost")),
        "shuttlecock_cost": to_money(record.get("shuttlecock_cost")),
        "other_costs": to_money(record.get("other_costs")),
        "court_rate_per_hour": money_or_none(record.get("court_rate_per_hour")),
        "hours_played": money_or_none(record.get("hours_played")),
        "shuttlecock_rate_each": money_or_none(record.get("shuttlecock_rate_each")),
        "shuttlecocks_used": int(shuttlecocks_used) if shuttlecocks_used is not None else None,
        "player_count": int(record.get("player_count") or 0),
        "status": SessionStatus(record.get("status") or SessionStatus.COMPLETED.value),
        "notes": record.get("notes"),
    }


def _payment_values(record: Dict, player_id: str) -> Dict:
    return {
        "player_id": player_id,
        "amount": to_money(record["amount"]),
        "payment_method": PaymentMethod(record.get("payment_method") or PaymentMethod.CASH.value),
        "payment_date": parse_date(record["payment_date"]),
        "reference_number": record.get("reference_number"),
        "notes": record.get("notes"),
    }


def _balance_values(record: Dict) -> Dict:
    return {
        "total_owed": to_money(record.get("total_owed")),
        "total_paid": to_money(record.get("total_paid")),
        "current_balance": to_money(record.get("current_balance")),
        "last_session_date": parse_date(record.get("last_session_date")),
        "last_payment_date": parse_date(record.get("last_payment_date")),
    }


# ============================================================================
# Stages
# ============================================================================

async def _find_existing(session: AsyncSession, run: ImportRun, table: str, query):
    """First pre-existing row matching a natural key, ignoring rows this run created."""
    created = run.created_ids[table]
    result = await session.execute(query)
    for row in result.scalars().all():
        if row.id not in created:
            return row
    return None


async def _insert(session: AsyncSession, row) -> None:
    async with session.begin_nested():
        session.add(row)
        await session.flush()


async def _update(session: AsyncSession, row, values: Dict, mode: str) -> bool:
    async with session.begin_nested():
        changed = _apply_fields(row, values, mode)
        await session.flush()
    return changed


async def _resolve_parent_conflict(
    session: AsyncSession, run: ImportRun, table: str, kind: str, existing, values: Dict, description: str
) -> None:
    """Apply the conflict mode to a pre-existing parent row and map onto it."""
    mode = run.conflict_resolution
    run.conflict(kind, description, _resolution_name(mode))
    if mode == SKIP_DUPLICATES:
        run.count(table, "skipped")
        return
    if await _update(session, existing, values, mode):
        run.count(table, "updated")
    else:
        run.count(table, "skipped")


async def import_locations(session: AsyncSession, run: ImportRun, records: List[Dict]) -> None:
    for index, record in enumerate(records, start=1):
        run.count("locations", "processed")
        label = f"Location {index} ({record.get('name')})"
        if not (record.get("name") or "").strip():
            run.skip("locations", f"{label}: missing name")
            continue
        try:
            values = _location_values(record)
            existing = await _find_existing(
                session,
                run,
                "locations",
                select(Location).where(
                    Location.organizer_id == run.organizer_id,
                    func.lower(Location.name) == values["name"].lower(),
                ),
            )
            if existing is not None:
                run.id_mappings["locations"][record.get("id")] = existing.id
                await _resolve_parent_conflict(
                    session, run, "locations", "duplicate_location", existing, values,
                    f"Location '{values['name']}' already exists",
                )
                continue

            location = Location(organizer_id=run.organizer_id, **values, **_timestamps(record, Location))
            await _insert(session, location)
            run.id_mappings["locations"][record.get("id")] = location.id
            run.created_ids["locations"].add(location.id)
            run.count("locations", "created")
        except (SQLAlchemyError, ValueError) as e:
            run.fail("locations", label, e)


async def import_players(session: AsyncSession, run: ImportRun, records: List[Dict]) -> None:
    for index, record in enumerate(records, start=1):
        run.count("players", "processed")
        label = f"Player {index} ({record.get('name')})"
        try:
            values = _player_values(record)
            existing = await _find_existing(
                session,
                run,
                "players",
                select(Player).where(
                    Player.organizer_id == run.organizer_id,
                    Player.name == values["name"],
                ),
            )
            if existing is not None:
                run.id_mappings["players"][record["id"]] = existing.id
                await _resolve_parent_conflict(
                    session, run, "players", "duplicate_player", existing, values,
                    f"Player '{values['name']}' already exists",
                )
                continue

            player = Player(organizer_id=run.organizer_id, **values, **_timestamps(record, Player))
            await _insert(session, player)
            run.id_mappings["players"][record["id"]] = player.id
            run.created_ids["players"].add(player.id)
            run.count("players", "created")
        except (SQLAlchemyError, ValueError) as e:
            run.fail("players", label, e)


async def import_sessions(session: AsyncSession, run: ImportRun, records: List[Dict]) -> None:
    for index, record in enumerate(records, start=1):
        run.count("sessions", "processed")
        label = f"Session {index} ({record.get('session_date')})"
        try:
            location_id = None
            archived_location = record.get("location_id")
            if archived_location:
                location_id = run.id_mappings["locations"].get(archived_location)
                if location_id is None:
                    run.warnings.append(f"{label}: location {archived_location} not imported, link dropped")
            values = _session_values(record, location_id)

            existing = await _find_existing(
                session,
                run,
                "sessions",
                select(Session).where(
                    Session.organizer_id == run.organizer_id,
                    Session.session_date == values["session_date"],
                ),
            )
            if existing is not None:
                run.id_mappings["sessions"][record["id"]] = existing.id
                await _resolve_parent_conflict(
                    session, run, "sessions", "duplicate_session", existing, values,
                    f"Session on {values['session_date']} already exists",
                )
                if run.conflict_resolution != SKIP_DUPLICATES:
                    # Status changes move charges in or out of the balances
                    participants = await session.execute(
                        select(SessionParticipant.player_id).where(
                            SessionParticipant.session_id == run.id_mappings["sessions"][record["id"]]
                        )
                    )
                    run.touched_players.update(row[0] for row in participants.all())
                continue

            new_session = Session(organizer_id=run.organizer_id, **values, **_timestamps(record, Session))
            await _insert(session, new_session)
            run.id_mappings["sessions"][record["id"]] = new_session.id
            run.created_ids["sessions"].add(new_session.id)
            run.count("sessions", "created")
        except (SQLAlchemyError, ValueError) as e:
            run.fail("sessions", label, e)


async def import_session_participants(
    session: AsyncSession, run: ImportRun, records: List[Dict]
) -> None:
    for index, record in enumerate(records, start=1):
        run.count("session_participants", "processed")
        label = f"Participant {index}"
        session_id = run.id_mappings["sessions"].get(record.get("session_id"))
        player_id = run.id_mappings["players"].get(record.get("player_id"))
        if session_id is None:
            run.skip("session_participants", f"{label}: session {record.get('session_id')} has no imported match")
            continue
        if player_id is None:
            run.skip("session_participants", f"{label}: player {record.get('player_id')} has no imported match")
            continue

        values = {"amount_owed": money_or_none(record.get("amount_owed"))}
        try:
            result = await session.execute(
                select(SessionParticipant).where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.player_id == player_id,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                await _resolve_child_conflict(
                    session, run, "session_participants", existing, values,
                    f"{label}: player already in session",
                )
                run.touched_players.add(player_id)
                continue

            participant = SessionParticipant(
                session_id=session_id, player_id=player_id, **values, **_timestamps(record, SessionParticipant)
            )
            try:
                await _insert(session, participant)
            except IntegrityError:
                if run.conflict_resolution != REPLACE_DUPLICATES:
                    raise
                # Unique (session, player) violation: retry once as an update
                if participant in session:
                    session.expunge(participant)
                result = await session.execute(
                    select(SessionParticipant).where(
                        SessionParticipant.session_id == session_id,
                        SessionParticipant.player_id == player_id,
                    )
                )
                await _update(session, result.scalar_one(), values, REPLACE_DUPLICATES)
                run.count("session_participants", "updated")
                run.touched_players.add(player_id)
                continue
            run.count("session_participants", "created")
            run.touched_players.add(player_id)
        except (SQLAlchemyError, ValueError) as e:
            run.fail("session_participants", label, e)


async def _resolve_child_conflict(
    session: AsyncSession, run: ImportRun, table: str, existing, values: Dict, description: str
) -> None:
    mode = run.conflict_resolution
    run.conflict(f"duplicate_{table.rstrip('s')}", description, _resolution_name(mode))
    if mode != SKIP_DUPLICATES and await _update(session, existing, values, mode):
        run.count(table, "updated")
    else:
        run.count(table, "skipped")


async def _find_duplicate_payment(session: AsyncSession, run: ImportRun, values: Dict):
    result = await session.execute(
        select(Payment).where(
            Payment.organizer_id == run.organizer_id,
            Payment.player_id == values["player_id"],
            Payment.payment_date == values["payment_date"],
            Payment.amount == values["amount"],
            Payment.payment_method == values["payment_method"],
        )
    )
    for payment in result.scalars().all():
        if payment.id in run.created_ids["payments"]:
            continue
        if payment.reference_number == values["reference_number"]:
            return payment
    return None


def _pair_transfer_legs(records: List[Dict]) -> Dict[str, List[int]]:
    """Archive indexes of credit transfer legs grouped by reference number."""
    groups: Dict[str, List[int]] = {}
    for index, record in enumerate(records):
        if record.get("payment_method") == PaymentMethod.CREDIT_TRANSFER.value:
            groups.setdefault(record.get("reference_number") or "", []).append(index)
    return groups


def _transfer_notes(leg_note: Optional[str], prefix: str, other_name: str) -> Optional[str]:
    """Transfer notes carried by a leg note written as "<prefix> <name>: <notes>"."""
    lead = f"{prefix} {other_name}: "
    if isinstance(leg_note, str) and leg_note.startswith(lead):
        return leg_note[len(lead):] or None
    return None


async def _import_transfer(
    session: AsyncSession, run: ImportRun, records: List[Dict], indexes: List[int]
) -> None:
    """Import two archive legs as one CreditTransfer."""
    archived_legs = [records[i] for i in indexes]
    labels = ", ".join(f"Payment {i + 1}" for i in indexes)
    debit, credit = sorted(archived_legs, key=lambda r: r["amount"])
    if not (debit["amount"] < 0 < credit["amount"] and to_money(-debit["amount"]) == to_money(credit["amount"])):
        run.count("payments", "skipped", 2)
        run.warnings.append(f"{labels}: credit transfer legs do not balance, skipped")
        return

    from_player = run.id_mappings["players"].get(debit["player_id"])
    to_player = run.id_mappings["players"].get(credit["player_id"])
    if from_player is None or to_player is None:
        run.count("payments", "skipped", 2)
        run.warnings.append(f"{labels}: credit transfer player has no imported match, skipped")
        return

    try:
        debit_values = _payment_values(debit, from_player)
        credit_values = _payment_values(credit, to_player)
        if await _find_duplicate_payment(session, run, debit_values) is not None:
            run.count("payments", "skipped", 2)
            run.conflict(
                "duplicate_payment",
                f"{labels}: credit transfer already exists",
                _resolution_name(run.conflict_resolution),
            )
            return

        names = dict(
            (await session.execute(
                select(Player.id, Player.name).where(Player.id.in_([from_player, to_player]))
            )).all()
        )
        notes = (
            _transfer_notes(debit_values["notes"], TRANSFER_DEBIT_NOTE, names[to_player])
            or _transfer_notes(credit_values["notes"], TRANSFER_CREDIT_NOTE, names[from_player])
        )

        async with session.begin_nested():
            transfer = CreditTransfer(
                organizer_id=run.organizer_id,
                from_player_id=from_player,
                to_player_id=to_player,
                amount=credit_values["amount"],
                transfer_date=credit_values["payment_date"],
                notes=notes,
            )
            session.add(transfer)
            await session.flush()
            legs = [
                Payment(
                    organizer_id=run.organizer_id,
                    transfer_id=transfer.id,
                    **debit_values,
                    **_timestamps(debit, Payment),
                ),
                Payment(
                    organizer_id=run.organizer_id,
                    transfer_id=transfer.id,
                    **credit_values,
                    **_timestamps(credit, Payment),
                ),
            ]
            session.add_all(legs)
            await session.flush()
        run.created_ids["payments"].update(leg.id for leg in legs)
        run.count("payments", "created", 2)
        run.touched_players.update([from_player, to_player])
    except (SQLAlchemyError, ValueError) as e:
        run.count("payments", "errored", 2)
        run.errors.append(f"{labels}: {getattr(e, 'orig', None) or e}")
        logger.error(f"Import failed for credit transfer {labels}: {e}", exc_info=True)


async def import_payments(session: AsyncSession, run: ImportRun, records: List[Dict]) -> None:
    transfer_groups = _pair_transfer_legs(records)
    handled: set = set()

    for index, record in enumerate(records):
        run.count("payments", "processed")
        label = f"Payment {index + 1}"
        if index in handled:
            continue

        if record.get("payment_method") == PaymentMethod.CREDIT_TRANSFER.value:
            group = transfer_groups.get(record.get("reference_number") or "", [])
            if not record.get("reference_number") or len(group) != 2:
                run.skip("payments", f"{label}: credit transfer leg without exactly one matching leg")
                handled.add(index)
                continue
            handled.update(group)
            await _import_transfer(session, run, records, group)
            continue

        player_id = run.id_mappings["players"].get(record.get("player_id"))
        if player_id is None:
            run.skip("payments", f"{label}: player {record.get('player_id')} has no imported match")
            continue
        try:
            values = _payment_values(record, player_id)
            if values["amount"] <= 0:
                run.skip("payments", f"{label}: amount must be positive")
                continue
            existing = await _find_duplicate_payment(session, run, values)
            if existing is not None:
                await _resolve_child_conflict(
                    session, run, "payments", existing, values, f"{label}: payment already recorded"
                )
                continue
            payment = Payment(organizer_id=run.organizer_id, **values, **_timestamps(record, Payment))
            await _insert(session, payment)
            run.created_ids["payments"].add(payment.id)
            run.count("payments", "created")
            run.touched_players.add(player_id)
        except (SQLAlchemyError, ValueError) as e:
            run.fail("payments", label, e)


async def import_player_balances(session: AsyncSession, run: ImportRun, records: List[Dict]) -> None:
    """
    Copy archived balance rows, then recompute every player this run touched.

    Recomputation only rewrites a row whose archived figures disagree with
    the imported facts; each disagreement is reported as a warning.
    """
    archived: Dict[str, Dict] = {}
    for index, record in enumerate(records, start=1):
        run.count("player_balances", "processed")
        label = f"Balance {index}"
        player_id = run.id_mappings["players"].get(record.get("player_id"))
        if player_id is None:
            run.skip("player_balances", f"{label}: player {record.get('player_id')} has no imported match")
            continue
        try:
            values = _balance_values(record)
            result = await session.execute(
                select(PlayerBalance).where(
                    PlayerBalance.organizer_id == run.organizer_id,
                    PlayerBalance.player_id == player_id,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                mode = run.conflict_resolution
                if mode != SKIP_DUPLICATES and await _update(session, existing, values, mode):
                    run.count("player_balances", "updated")
                else:
                    run.count("player_balances", "skipped")
            else:
                balance = PlayerBalance(
                    organizer_id=run.organizer_id, player_id=player_id, **values, **_timestamps(record, PlayerBalance)
                )
                await _insert(session, balance)
                run.count("player_balances", "created")
            archived[player_id] = values
            run.touched_players.add(player_id)
        except (SQLAlchemyError, ValueError) as e:
            run.fail("player_balances", label, e)

    for player_id in sorted(run.touched_players):
        try:
            async with session.begin_nested():
                balance = await balance_service.recompute_player_balance(
                    session, run.organizer_id, player_id
                )
        except (SQLAlchemyError, ValueError) as e:
            run.errors.append(f"Balance recompute for player {player_id}: {e}")
            logger.error(f"Balance recompute failed for player {player_id}: {e}", exc_info=True)
            continue
        expected = archived.get(player_id)
        if expected is not None and to_money(balance["current_balance"]) != expected["current_balance"]:
            run.warnings.append(
                f"Balance for player {player_id} recomputed from imported records: "
                f"archive had {expected['current_balance']}, records give {balance['current_balance']:.2f}"
            )


STAGES = (
    ("locations", import_locations),
    ("players", import_players),
    ("sessions", import_sessions),
    ("session_participants", import_session_participants),
    ("payments", import_payments),
    ("player_balances", import_player_balances),
)


# ============================================================================
# Entry point
# ============================================================================

def _empty_result() -> Dict:
    return {
        "success": False,
        "message": "",
        "validate_only": False,
        "cancelled": False,
        "records_processed": {table: 0 for table in BACKUP_TABLES},
        "records_created": {table: 0 for table in BACKUP_TABLES},
        "records_updated": {table: 0 for table in BACKUP_TABLES},
        "records_skipped": {table: 0 for table in BACKUP_TABLES},
        "records_errored": {table: 0 for table in BACKUP_TABLES},
        "conflicts": [],
        "errors": [],
        "warnings": [],
    }


async def _preview(session: AsyncSession, organizer_id: str, data: Dict, result: Dict) -> None:
    """Would-be counts for a validate-only run. Reads only."""
    for table in BACKUP_TABLES:
        records = data.get(table) or []
        result["records_processed"][table] = len(records)
        result["records_created"][table] = len(records)

    existing_players = await session.execute(
        select(Player.name).where(Player.organizer_id == organizer_id)
    )
    names = {row[0] for row in existing_players.all()}
    duplicates = sum(1 for p in data.get("players") or [] if (p.get("name") or "").strip() in names)
    if duplicates:
        result["records_created"]["players"] -= duplicates
        result["records_skipped"]["players"] = duplicates
        result["warnings"].append(f"{duplicates} player(s) match existing players by name")


async def import_organizer_data(
    session: AsyncSession,
    organizer_id: str,
    archive: Dict,
    conflict_resolution: str = SKIP_DUPLICATES,
    validate_only: bool = False,
    clear_existing_data: bool = False,
    cancel_event: Optional[asyncio.Event] = None,
) -> Dict:
    """
    Import a parsed archive into an organizer's scope.

    Args:
        session: Database session (caller commits; earlier stages are kept
            even when a later stage reports errors)
        organizer_id: Destination organizer; every record is re-owned by it
        archive: Parsed archive document
        conflict_resolution: skip_duplicates, replace_duplicates or merge_data
        validate_only: Validate and report would-be counts without writing
        clear_existing_data: Irreversibly delete the organizer's data first
        cancel_event: Checked before each stage; when set the run stops

    Returns:
        Result dict with per-table processed/created/updated/skipped/errored
        counts, conflicts, errors and warnings
    """
    require_organizer(organizer_id)
    if conflict_resolution not in CONFLICT_MODES:
        raise ValueError(f"Invalid conflict resolution: {conflict_resolution}")

    result = _empty_result()
    result["validate_only"] = validate_only

    validation = validate_archive(archive)
    result["warnings"].extend(validation["warnings"])
    if not validation["is_valid"]:
        result["errors"].extend(validation["errors"])
        result["message"] = f"Validation failed with {len(validation['errors'])} error(s)"
        logger.warning(f"Import validation failed for organizer {organizer_id}: {validation['errors']}")
        return result

    data = archive["data"]
    if validate_only:
        await _preview(session, organizer_id, data, result)
        total = sum(result["records_processed"].values())
        result["success"] = True
        result["message"] = f"Validation passed. {total} records would be processed."
        return result

    if clear_existing_data:
        deleted = await data_reset_service.clear_organizer_data(session, organizer_id)
        result["warnings"].append(f"Existing data cleared: {deleted}")

    run = ImportRun(organizer_id, conflict_resolution)
    logger.info(f"Starting import for organizer {organizer_id} ({conflict_resolution})")
    for table, stage in STAGES:
        if cancel_event is not None and cancel_event.is_set():
            result["cancelled"] = True
            run.warnings.append(f"Import cancelled before {table}")
            logger.warning(f"Import for organizer {organizer_id} cancelled before {table}")
            break
        await stage(session, run, data.get(table) or [])
        logger.info(f"Imported {table}: {run.counts[table]}")

    for table in BACKUP_TABLES:
        for outcome in ("processed", "created", "updated", "skipped", "errored"):
            result[f"records_{outcome}"][table] = run.counts[table][outcome]
    result["conflicts"] = run.conflicts
    result["errors"].extend(run.errors)
    result["warnings"].extend(run.warnings)

    created = sum(result["records_created"].values())
    updated = sum(result["records_updated"].values())
    skipped = sum(result["records_skipped"].values())
    result["success"] = not result["cancelled"]
    if result["cancelled"]:
        result["message"] = f"Import cancelled. Created {created} records before stopping."
    else:
        result["message"] = (
            f"Import completed. Created {created}, updated {updated}, skipped {skipped} records"
            + (f", {len(run.errors)} error(s)." if run.errors else ".")
        )
    logger.info(f"Import finished for organizer {organizer_id}: {result['message']}")
    return result


async def import_backup_file(
    session: AsyncSession,
    organizer_id: str,
    filename: str,
    content: bytes,
    **options: Any,
) -> Dict:
    """
    Check, parse and import an uploaded backup file.

    Raises:
        BackupFormatError: If the file is not a readable archive
    """
    problems = check_backup_file(filename, len(content))
    if problems:
        raise BackupFormatError("; ".join(problems))
    archive = parse_backup_file(content)
    return await import_organizer_data(session, organizer_id, archive, **options)
