"""
Shared pytest configuration for ledger tests.

Each test gets a fresh in-memory SQLite database (aiosqlite) with foreign keys
enforced and SAVEPOINT support, so the import path behaves as it does on
PostgreSQL. The rate limiter is disabled through ENV=test.
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shuttle_ledger.database.db import Base, configure_sqlite
from shuttle_ledger.services import auth_service, player_service

ORGANIZER_ID = "organizer-1"
OTHER_ORGANIZER_ID = "organizer-2"


@pytest_asyncio.fixture
async def test_engine():
    """Create a single-connection in-memory database with all tables."""
    engine = configure_sqlite(
        create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    )
    async with engine.begin() as conn:
        from shuttle_ledger.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker):
    """Database session for one test; rolled back and closed afterwards."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest.fixture
def organizer_id():
    return ORGANIZER_ID


@pytest.fixture
def other_organizer_id():
    return OTHER_ORGANIZER_ID


@pytest_asyncio.fixture
async def players(db_session, organizer_id):
    """Four active players: Alice, Bob, Carol and Dave."""
    created = []
    for name in ("Alice", "Bob", "Carol", "Dave"):
        created.append(await player_service.create_player(db_session, organizer_id, name))
    await db_session.commit()
    return created


@pytest.fixture
def auth_headers(organizer_id):
    token = auth_service.create_organizer_token(organizer_id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def ledger(db_session, organizer_id, players):
    """
    A small history for the first organizer.

    Two completed sessions at Sports Hall, one planned session, three cash or
    PayNow payments and a credit transfer from Carol to Dave. Resulting
    balances: Alice 10.00, Bob 5.00, Carol -6.00, Dave 6.00.
    """
    from shuttle_ledger.services import location_service, payment_service, session_service

    alice, bob, carol, dave = (p["id"] for p in players)
    hall = await location_service.create_location(db_session, organizer_id, "Sports Hall")
    first = await session_service.record_completed_session(
        db_session, organizer_id, "2026-03-01", [alice, bob, carol],
        court_cost="30.00", location_id=hall["id"], title="Sunday doubles",
    )
    second = await session_service.record_completed_session(
        db_session, organizer_id, "2026-03-08", [alice, dave], court_cost="20.00"
    )
    planned = await session_service.create_planned_session(
        db_session, organizer_id, "2026-04-01", [alice, bob]
    )
    await payment_service.record_payment(
        db_session, organizer_id, alice, "10.00", payment_method="paynow",
        payment_date="2026-03-02", reference_number="PN-1",
    )
    await payment_service.record_payment(
        db_session, organizer_id, bob, "5.00", payment_date="2026-03-09"
    )
    await payment_service.record_payment(
        db_session, organizer_id, carol, "20.00", payment_date="2026-03-09"
    )
    transfer = await payment_service.transfer_credit(
        db_session, organizer_id, carol, dave, "4.00", transfer_date="2026-03-10"
    )
    await db_session.commit()
    return {
        "players": {"alice": alice, "bob": bob, "carol": carol, "dave": dave},
        "location": hall,
        "sessions": [first, second, planned],
        "transfer": transfer,
    }
