"""
Pydantic models for API request validation.
"""

from datetime import date
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from shuttle_ledger.utils.constants import BACKUP_TABLES


class PlayerCreate(BaseModel):
    """Add a player to the roster."""

    name: str = Field(min_length=1, max_length=200)
    phone_number: Optional[str] = None
    is_temporary: bool = False
    notes: Optional[str] = None


class PlayerUpdate(BaseModel):
    """Partial player update; only fields that are sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone_number: Optional[str] = None
    is_temporary: Optional[bool] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


class BulkActiveRequest(BaseModel):
    player_ids: List[str] = Field(min_length=1)
    is_active: bool


class LocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: Optional[str] = None
    notes: Optional[str] = None


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class SessionDetails(BaseModel):
    """Descriptive session fields shared by every session request."""

    title: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None
    location_id: Optional[str] = None
    notes: Optional[str] = None


class SessionCosts(BaseModel):
    """
    Either usage-based inputs (hours_played and rates) or explicit cost fields.

    Missing rates fall back to the organizer's default rates.
    """

    hours_played: Optional[float] = Field(default=None, gt=0)
    court_rate: Optional[float] = Field(default=None, ge=0)
    shuttlecocks_used: Optional[int] = Field(default=None, ge=0)
    shuttlecock_rate: Optional[float] = Field(default=None, ge=0)
    court_cost: Optional[float] = Field(default=None, ge=0)
    shuttlecock_cost: Optional[float] = Field(default=None, ge=0)
    other_costs: Optional[float] = Field(default=None, ge=0)


class CompletedSessionCreate(SessionDetails, SessionCosts):
    session_date: date
    participant_ids: List[str] = Field(default_factory=list)
    new_player_names: List[str] = Field(default_factory=list)


class PlannedSessionCreate(SessionDetails):
    session_date: date
    participant_ids: List[str] = Field(default_factory=list)
    court_cost: Optional[float] = Field(default=None, ge=0)
    shuttlecock_cost: Optional[float] = Field(default=None, ge=0)
    other_costs: Optional[float] = Field(default=None, ge=0)


class CompleteSessionRequest(SessionDetails, SessionCosts):
    """Convert a planned session; participant_ids defaults to the planned list."""

    participant_ids: Optional[List[str]] = None
    new_player_names: List[str] = Field(default_factory=list)


class CompletedSessionUpdate(SessionDetails, SessionCosts):
    session_date: Optional[date] = None
    participant_ids: List[str]
    new_player_names: List[str] = Field(default_factory=list)


class SessionDetailsUpdate(SessionDetails):
    session_date: Optional[date] = None


PaymentMethodName = Literal["cash", "paynow", "bank_transfer", "other"]


class PaymentCreate(BaseModel):
    player_id: str
    amount: float = Field(gt=0)
    payment_method: PaymentMethodName = "cash"
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    player_id: Optional[str] = None
    amount: Optional[float] = None
    payment_method: Optional[PaymentMethodName] = None
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_not_zero(cls, v):
        if v is not None and v == 0:
            raise ValueError("amount cannot be zero")
        return v


class CreditTransferCreate(BaseModel):
    from_player_id: str
    to_player_id: str
    amount: float = Field(gt=0)
    transfer_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def distinct_players(self):
        if self.from_player_id == self.to_player_id:
            raise ValueError("Cannot transfer credit to the same player")
        return self


class CreditTransferUpdate(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0)
    transfer_date: Optional[date] = None
    notes: Optional[str] = None


class OrganizerSettingsUpdate(BaseModel):
    default_court_rate: Optional[float] = Field(default=None, ge=0)
    default_shuttlecock_rate: Optional[float] = Field(default=None, ge=0)
    peak_hours_start: Optional[str] = None
    peak_hours_end: Optional[str] = None
    default_location_id: Optional[str] = None


class UsageCostRequest(BaseModel):
    hours: float
    court_rate: float
    shuttlecocks: int
    shuttlecock_rate: float
    player_count: int


ExportType = Literal["full_backup", "date_range", "selective"]


class ExportRequest(BaseModel):
    export_type: ExportType = "full_backup"
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    include: Optional[List[str]] = None

    @field_validator("include")
    @classmethod
    def known_tables(cls, v):
        if v is not None:
            unknown = set(v) - set(BACKUP_TABLES)
            if unknown:
                raise ValueError(f"Unknown tables: {', '.join(sorted(unknown))}")
        return v


ConflictResolution = Literal["skip_duplicates", "replace_duplicates", "merge_data"]


class ResetRequest(BaseModel):
    """Irreversible; the caller must send confirm=true."""

    confirm: bool = False
    include_settings: bool = False
