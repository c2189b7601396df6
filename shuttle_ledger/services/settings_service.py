"""
Settings: environment configuration and per-organizer rate defaults.
"""

import os
import logging
from datetime import time
from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from dotenv import load_dotenv

from shuttle_ledger.database.models import OrganizerSettings
from shuttle_ledger.services.ownership import get_owned_location, require_organizer
from shuttle_ledger.utils.constants import (
    DEFAULT_COURT_RATE,
    DEFAULT_PEAK_END,
    DEFAULT_PEAK_START,
    DEFAULT_SHUTTLECOCK_RATE,
    RATE_PRESETS,
)
from shuttle_ledger.utils.datetime_utils import isoformat_or_none, parse_time
from shuttle_ledger.utils.money import as_float, to_money

load_dotenv()

logger = logging.getLogger(__name__)


def get_bool_env(key: str, default: bool = True) -> bool:
    """
    Parse a boolean environment variable from a string value.

    Args:
        key: Environment variable name
        default: Default value if the variable is not set

    Returns:
        bool: Parsed boolean value
    """
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


def get_int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {value!r}, using {default}")
        return default


def _settings_to_dict(organizer_id: str, settings: Optional[OrganizerSettings]) -> Dict:
    if settings is None:
        return {
            "organizer_id": organizer_id,
            "default_court_rate": as_float(DEFAULT_COURT_RATE),
            "default_shuttlecock_rate": as_float(DEFAULT_SHUTTLECOCK_RATE),
            "peak_hours_start": DEFAULT_PEAK_START,
            "peak_hours_end": DEFAULT_PEAK_END,
            "default_location_id": None,
            "updated_at": None,
        }
    return {
        "organizer_id": settings.organizer_id,
        "default_court_rate": as_float(settings.default_court_rate),
        "default_shuttlecock_rate": as_float(settings.default_shuttlecock_rate),
        "peak_hours_start": settings.peak_hours_start,
        "peak_hours_end": settings.peak_hours_end,
        "default_location_id": settings.default_location_id,
        "updated_at": isoformat_or_none(settings.updated_at),
    }


async def get_organizer_settings(session: AsyncSession, organizer_id: str) -> Dict:
    """Get an organizer's settings, falling back to defaults when none are saved."""
    require_organizer(organizer_id)
    settings = await session.get(OrganizerSettings, organizer_id)
    return _settings_to_dict(organizer_id, settings)


async def update_organizer_settings(
    session: AsyncSession, organizer_id: str, updates: Dict
) -> Dict:
    """
    Create or update an organizer's settings.

    Raises:
        ValueError: If a rate is negative or a peak hour is not HH:MM
    """
    require_organizer(organizer_id)
    settings = await session.get(OrganizerSettings, organizer_id)
    if settings is None:
        settings = OrganizerSettings(
            organizer_id=organizer_id,
            default_court_rate=DEFAULT_COURT_RATE,
            default_shuttlecock_rate=DEFAULT_SHUTTLECOCK_RATE,
            peak_hours_start=DEFAULT_PEAK_START,
            peak_hours_end=DEFAULT_PEAK_END,
        )
        session.add(settings)

    for field in ("default_court_rate", "default_shuttlecock_rate"):
        if updates.get(field) is not None:
            rate = to_money(updates[field])
            if rate < 0:
                raise ValueError(f"{field} cannot be negative")
            setattr(settings, field, rate)

    for field in ("peak_hours_start", "peak_hours_end"):
        if updates.get(field) is not None:
            try:
                parsed = parse_time(updates[field])
            except ValueError:
                raise ValueError(f"{field} must be in HH:MM format")
            setattr(settings, field, parsed.strftime("%H:%M"))

    if "default_location_id" in updates:
        location_id = updates["default_location_id"]
        if location_id:
            await get_owned_location(session, organizer_id, location_id)
        settings.default_location_id = location_id or None

    await session.flush()
    await session.refresh(settings)
    logger.info(f"Updated settings for organizer {organizer_id}")
    return _settings_to_dict(organizer_id, settings)


def is_peak_time(session_time: time, peak_start: str, peak_end: str) -> bool:
    """Whether a start time falls inside [peak_start, peak_end)."""
    start = parse_time(peak_start)
    end = parse_time(peak_end)
    if start <= end:
        return start <= session_time < end
    # Window wraps past midnight
    return session_time >= start or session_time < end


async def get_effective_rates(
    session: AsyncSession,
    organizer_id: str,
    session_time: Optional[str] = None,
    court_type: Optional[str] = None,
) -> Dict:
    """
    Rates to use for a new session.

    A named court type uses its preset. Otherwise the organizer's default
    rates apply. is_peak_time is reported for the given start time.
    """
    settings = await get_organizer_settings(session, organizer_id)
    start = parse_time(session_time) if session_time else None
    peak = start is not None and is_peak_time(
        start, settings["peak_hours_start"], settings["peak_hours_end"]
    )

    if court_type:
        if court_type not in RATE_PRESETS:
            raise ValueError(f"Unknown court type: {court_type}")
        court_rate, shuttlecock_rate = RATE_PRESETS[court_type]
        court_rate, shuttlecock_rate = as_float(court_rate), as_float(shuttlecock_rate)
    else:
        court_rate = settings["default_court_rate"]
        shuttlecock_rate = settings["default_shuttlecock_rate"]

    return {
        "court_rate": court_rate,
        "shuttlecock_rate": shuttlecock_rate,
        "is_peak_time": peak,
        "court_type": court_type,
    }
