"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000

Creates the ledger tables: locations, players, sessions, session_participants,
credit_transfers, payments, player_balances and organizer_settings, with their
check constraints, unique constraints and indexes.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from the current models."""
    from shuttle_ledger.database.db import Base
    from shuttle_ledger.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from shuttle_ledger.database.db import Base
    from shuttle_ledger.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
