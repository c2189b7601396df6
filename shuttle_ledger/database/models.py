"""
SQLAlchemy ORM models for the badminton session ledger.

Every row belongs to exactly one organizer (``organizer_id``). Sessions and
payments are the facts; ``player_balances`` is a projection rebuilt from them.
"""

import enum
import uuid
from decimal import Decimal
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Date,
    Time,
    DateTime,
    Numeric,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shuttle_ledger.database.db import Base
from shuttle_ledger.utils.money import ZERO, round_to_tenth, to_money


def generate_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class SessionStatus(str, enum.Enum):
    """Session status enum."""

    PLANNED = "planned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    """How a payment was made."""

    CASH = "cash"
    PAYNOW = "paynow"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_TRANSFER = "credit_transfer"
    OTHER = "other"


class Location(Base):
    """Named venue, used as a picklist value for sessions."""

    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sessions = relationship("Session", back_populates="location_ref")

    __table_args__ = (
        Index("idx_locations_organizer_id", "organizer_id"),
        Index("idx_locations_organizer_name", "organizer_id", "name"),
    )


class Player(Base):
    """A regular or drop-in (temporary) player on one organizer's roster."""

    __tablename__ = "players"

    id = Column(String(36), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False)
    name = Column(String(200), nullable=False)
    phone_number = Column(String(32), nullable=True)
    is_temporary = Column(Boolean, default=False, nullable=False)  # drop-in, no login identity
    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    participations = relationship("SessionParticipant", back_populates="player")
    payments = relationship("Payment", back_populates="player")
    balance = relationship(
        "PlayerBalance", back_populates="player", uselist=False, passive_deletes=True
    )

    __table_args__ = (
        Index("idx_players_organizer_id", "organizer_id"),
        Index("idx_players_organizer_name", "organizer_id", "name"),
    )


class Session(Base):
    """
    One playing occasion.

    total_cost and cost_per_player are computed from the stored cost inputs
    and never persisted.
    """

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False)
    title = Column(String(200), nullable=True)
    session_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    location = Column(String(200), nullable=True)
    location_id = Column(String(36), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    court_cost = Column(Numeric(10, 2), default=ZERO, nullable=False)
    shuttlecock_cost = Column(Numeric(10, 2), default=ZERO, nullable=False)
    other_costs = Column(Numeric(10, 2), default=ZERO, nullable=False)
    # Rate inputs the costs were derived from, when recorded usage-based
    court_rate_per_hour = Column(Numeric(10, 2), nullable=True)
    hours_played = Column(Numeric(4, 2), nullable=True)
    shuttlecock_rate_each = Column(Numeric(10, 2), nullable=True)
    shuttlecocks_used = Column(Integer, nullable=True)
    player_count = Column(Integer, default=0, nullable=False)
    status = Column(
        Enum(SessionStatus, values_callable=_enum_values, name="session_status"),
        default=SessionStatus.COMPLETED,
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    location_ref = relationship("Location", back_populates="sessions")
    participants = relationship(
        "SessionParticipant",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("court_cost >= 0", name="ck_sessions_court_cost"),
        CheckConstraint("shuttlecock_cost >= 0", name="ck_sessions_shuttlecock_cost"),
        CheckConstraint("other_costs >= 0", name="ck_sessions_other_costs"),
        CheckConstraint("player_count >= 0", name="ck_sessions_player_count"),
        Index("idx_sessions_organizer_id", "organizer_id"),
        Index("idx_sessions_organizer_date", "organizer_id", "session_date"),
    )

    @property
    def total_cost(self) -> Decimal:
        # Same rounding as the total charges are split from
        return round_to_tenth(
            to_money(self.court_cost) + to_money(self.shuttlecock_cost) + to_money(self.other_costs)
        )

    @property
    def cost_per_player(self) -> Decimal:
        if not self.player_count:
            return ZERO
        return round_to_tenth(self.total_cost / self.player_count)


class SessionParticipant(Base):
    """A player's charge for one session (null while the session is only planned)."""

    __tablename__ = "session_participants"

    id = Column(String(36), primary_key=True, default=generate_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(String(36), ForeignKey("players.id", ondelete="RESTRICT"), nullable=False)
    amount_owed = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("Session", back_populates="participants")
    player = relationship("Player", back_populates="participations")

    __table_args__ = (
        UniqueConstraint("session_id", "player_id", name="uq_session_participants_session_player"),
        CheckConstraint(
            "amount_owed IS NULL OR amount_owed >= 0", name="ck_session_participants_amount_owed"
        ),
        Index("idx_session_participants_session_id", "session_id"),
        Index("idx_session_participants_player_id", "player_id"),
    )


class CreditTransfer(Base):
    """Credit moved from one player's balance to another's; owns two payment legs."""

    __tablename__ = "credit_transfers"

    id = Column(String(36), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False)
    from_player_id = Column(String(36), ForeignKey("players.id", ondelete="RESTRICT"), nullable=False)
    to_player_id = Column(String(36), ForeignKey("players.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    transfer_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    legs = relationship(
        "Payment",
        back_populates="transfer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transfers_amount"),
        CheckConstraint("from_player_id <> to_player_id", name="ck_credit_transfers_distinct"),
        Index("idx_credit_transfers_organizer_id", "organizer_id"),
    )


class Payment(Base):
    """Money paid by a player, or one signed leg of a credit transfer."""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False)
    player_id = Column(String(36), ForeignKey("players.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(
        Enum(PaymentMethod, values_callable=_enum_values, name="payment_method"),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    payment_date = Column(Date, nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    transfer_id = Column(
        String(36), ForeignKey("credit_transfers.id", ondelete="CASCADE"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    player = relationship("Player", back_populates="payments")
    transfer = relationship("CreditTransfer", back_populates="legs")

    __table_args__ = (
        CheckConstraint(
            "(payment_method = 'credit_transfer' AND amount <> 0) "
            "OR (payment_method <> 'credit_transfer' AND amount > 0)",
            name="ck_payments_amount",
        ),
        Index("idx_payments_organizer_id", "organizer_id"),
        Index("idx_payments_player_id", "player_id"),
        Index("idx_payments_organizer_date", "organizer_id", "payment_date"),
    )


class PlayerBalance(Base):
    """Per-player projection of owed minus paid; positive means the player owes."""

    __tablename__ = "player_balances"

    id = Column(String(36), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False)
    player_id = Column(String(36), ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    total_owed = Column(Numeric(10, 2), default=ZERO, nullable=False)
    total_paid = Column(Numeric(10, 2), default=ZERO, nullable=False)
    current_balance = Column(Numeric(10, 2), default=ZERO, nullable=False)
    last_session_date = Column(Date, nullable=True)
    last_payment_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    player = relationship("Player", back_populates="balance")

    __table_args__ = (
        UniqueConstraint("organizer_id", "player_id", name="uq_player_balances_organizer_player"),
        Index("idx_player_balances_organizer_id", "organizer_id"),
    )


class OrganizerSettings(Base):
    """Default rates and preferences for one organizer."""

    __tablename__ = "organizer_settings"

    organizer_id = Column(String(64), primary_key=True)
    default_court_rate = Column(Numeric(10, 2), nullable=False)
    default_shuttlecock_rate = Column(Numeric(10, 2), nullable=False)
    peak_hours_start = Column(String(5), nullable=True)  # "HH:MM"
    peak_hours_end = Column(String(5), nullable=True)
    default_location_id = Column(
        String(36), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("default_court_rate >= 0", name="ck_organizer_settings_court_rate"),
        CheckConstraint(
            "default_shuttlecock_rate >= 0", name="ck_organizer_settings_shuttlecock_rate"
        ),
    )
