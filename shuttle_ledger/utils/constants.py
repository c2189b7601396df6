"""
Constants used across the session ledger.
"""

from decimal import Decimal

APP_VERSION = "1.0.0"

# Session cost validation
MAX_HOURS_PLAYED = Decimal("8")
MIN_PLAYERS = 1
MAX_PLAYERS = 20

# Court and shuttlecock rate presets (court rate per hour, shuttlecock rate each)
RATE_PRESETS = {
    "indoor_peak": (Decimal("50.00"), Decimal("2.50")),
    "indoor_off_peak": (Decimal("35.00"), Decimal("2.00")),
    "outdoor": (Decimal("15.00"), Decimal("1.50")),
    "community": (Decimal("25.00"), Decimal("1.80")),
}

DEFAULT_COURT_RATE = Decimal("25.00")
DEFAULT_SHUTTLECOCK_RATE = Decimal("2.00")
DEFAULT_PEAK_START = "18:00"
DEFAULT_PEAK_END = "22:00"

# Balances within half a cent of zero are treated as settled
SETTLED_THRESHOLD = Decimal("0.005")

# Backup / restore
EXPORT_PAGE_SIZE = 1000
BACKUP_MAX_FILE_MB = 50
BACKUP_FILENAME_PREFIX = "badminton-backup"

# Tables in import (dependency) order; deletions run in reverse
BACKUP_TABLES = (
    "locations",
    "players",
    "sessions",
    "session_participants",
    "payments",
    "player_balances",
)

TRANSFER_DEBIT_NOTE = "Credit transferred to"
TRANSFER_CREDIT_NOTE = "Credit received from"
