"""
Session cost calculations.
Turns court/shuttlecock usage into session costs and per-player charges.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from shuttle_ledger.utils.constants import (
    MAX_HOURS_PLAYED,
    MAX_PLAYERS,
    MIN_PLAYERS,
    RATE_PRESETS,
)
from shuttle_ledger.utils.money import ZERO, Number, round_to_tenth, to_decimal, to_money


class CostValidationError(ValueError):
    """Raised when session cost inputs are invalid. Carries every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


# ============================================================================
# Validation
# ============================================================================

def validate_usage_inputs(
    hours: Number,
    court_rate: Number,
    shuttlecocks: int,
    shuttlecock_rate: Number,
    player_count: Optional[int] = None,
) -> List[str]:
    """
    Check usage-based inputs.

    Returns a list of error strings, empty when the inputs are valid.
    player_count is only checked when given.
    """
    errors = []
    try:
        hours_value = to_decimal(hours)
        if hours_value <= 0:
            errors.append("Hours played must be greater than 0")
        elif hours_value > MAX_HOURS_PLAYED:
            errors.append(f"Hours played cannot exceed {MAX_HOURS_PLAYED}")
    except ValueError:
        errors.append("Hours played must be a number")

    if isinstance(shuttlecocks, bool) or not isinstance(shuttlecocks, int):
        errors.append("Shuttlecocks used must be a whole number")
    elif shuttlecocks < 0:
        errors.append("Shuttlecocks used cannot be negative")

    for label, rate in (("Court rate", court_rate), ("Shuttlecock rate", shuttlecock_rate)):
        try:
            if to_decimal(rate) < 0:
                errors.append(f"{label} cannot be negative")
        except ValueError:
            errors.append(f"{label} must be a number")

    if player_count is not None:
        if player_count < MIN_PLAYERS:
            errors.append(f"At least {MIN_PLAYERS} player is required")
        elif player_count > MAX_PLAYERS:
            errors.append(f"Cannot have more than {MAX_PLAYERS} players")

    return errors


def validate_costs(court_cost: Number, shuttlecock_cost: Number, other_costs: Number) -> List[str]:
    """Check explicit session cost fields are non-negative numbers."""
    errors = []
    for label, value in (
        ("Court cost", court_cost),
        ("Shuttlecock cost", shuttlecock_cost),
        ("Other costs", other_costs),
    ):
        try:
            if to_decimal(value) < 0:
                errors.append(f"{label} cannot be negative")
        except ValueError:
            errors.append(f"{label} must be a number")
    return errors


# ============================================================================
# Allocation
# ============================================================================

def cost_per_player(total: Number, player_count: int) -> Decimal:
    """Even split of a total, rounded to one decimal place; zero when nobody played."""
    if player_count <= 0:
        return ZERO
    return round_to_tenth(to_decimal(total) / player_count)


def allocate(
    court_hours: Number,
    court_rate: Number,
    shuttlecock_count: int,
    shuttlecock_rate: Number,
    other_costs: Number,
    participant_ids: Sequence[str],
) -> Dict:
    """
    Allocate a usage-based session's cost across its participants.

    Court and shuttlecock costs are each rounded to one decimal place where
    they are computed from rate x quantity, and the total is rounded again.
    Each participant is charged total / n rounded to one decimal place, so
    each charge is within 0.05 of the exact share and the charges sum to
    within 0.05 * n of the total. That drift is accepted, not redistributed.

    Returns:
        Dict with court_cost, shuttlecock_cost, other_costs, total_cost,
        cost_per_player (Decimals), player_count and charges
        (participant id -> amount owed).

    Raises:
        CostValidationError: If any input is invalid
    """
    errors = validate_usage_inputs(court_hours, court_rate, shuttlecock_count, shuttlecock_rate)
    errors.extend(validate_costs(0, 0, other_costs))
    if len(set(participant_ids)) != len(participant_ids):
        errors.append("Participants must be unique")
    if errors:
        raise CostValidationError(errors)

    court_cost = round_to_tenth(to_decimal(court_hours) * to_decimal(court_rate))
    shuttlecock_cost = round_to_tenth(shuttlecock_count * to_decimal(shuttlecock_rate))
    other = to_money(other_costs)
    return _split(court_cost, shuttlecock_cost, other, participant_ids)


def allocate_fixed(
    court_cost: Number,
    shuttlecock_cost: Number,
    other_costs: Number,
    participant_ids: Sequence[str],
) -> Dict:
    """Allocate a session whose cost fields were entered directly."""
    errors = validate_costs(court_cost, shuttlecock_cost, other_costs)
    if len(set(participant_ids)) != len(participant_ids):
        errors.append("Participants must be unique")
    if errors:
        raise CostValidationError(errors)
    return _split(to_money(court_cost), to_money(shuttlecock_cost), to_money(other_costs), participant_ids)


def _split(court_cost: Decimal, shuttlecock_cost: Decimal, other: Decimal, participant_ids) -> Dict:
    total = round_to_tenth(court_cost + shuttlecock_cost + other)
    count = len(participant_ids)
    share = cost_per_player(total, count)
    return {
        "court_cost": court_cost,
        "shuttlecock_cost": shuttlecock_cost,
        "other_costs": other,
        "total_cost": total,
        "player_count": count,
        "cost_per_player": share,
        "charges": {pid: share for pid in participant_ids},
    }


# ============================================================================
# Usage cost estimates
# ============================================================================

def calculate_usage_costs(
    hours: Number,
    court_rate: Number,
    shuttlecocks: int,
    shuttlecock_rate: Number,
    player_count: int,
) -> Dict:
    """
    Cost breakdown for a usage-based session, without recording anything.

    Raises:
        CostValidationError: If any input is invalid
    """
    errors = validate_usage_inputs(hours, court_rate, shuttlecocks, shuttlecock_rate, player_count)
    if errors:
        raise CostValidationError(errors)
    court_cost = round_to_tenth(to_decimal(hours) * to_decimal(court_rate))
    shuttlecock_cost = round_to_tenth(shuttlecocks * to_decimal(shuttlecock_rate))
    total = round_to_tenth(court_cost + shuttlecock_cost)
    return {
        "court_cost": court_cost,
        "shuttlecock_cost": shuttlecock_cost,
        "total_cost": total,
        "cost_per_player": cost_per_player(total, player_count),
        "player_count": player_count,
    }


def get_rate_preset(name: str) -> Dict:
    """Court and shuttlecock rates for a named court type."""
    if name not in RATE_PRESETS:
        raise ValueError(f"Unknown rate preset: {name}")
    court_rate, shuttlecock_rate = RATE_PRESETS[name]
    return {"name": name, "court_rate": court_rate, "shuttlecock_rate": shuttlecock_rate}
