"""
Async engine, session factory and request-scoped sessions for the ledger.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) is supported for
tests and local runs.
"""

import os
from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.orm import DeclarativeBase
from dotenv import load_dotenv

load_dotenv()

_DEFAULT_URL = "postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}".format(
    user=os.getenv("POSTGRES_USER", "shuttle"),
    password=os.getenv("POSTGRES_PASSWORD", "shuttle"),
    host=os.getenv("POSTGRES_HOST", "localhost"),
    port=os.getenv("POSTGRES_PORT", "5432"),
    db=os.getenv("POSTGRES_DB", "shuttle_ledger"),
)
DATABASE_URL = os.getenv("DATABASE_URL", _DEFAULT_URL)


def configure_sqlite(engine: AsyncEngine) -> AsyncEngine:
    """
    Make SQLite behave like the production store.

    Turns on foreign key enforcement and hands transaction control to
    SQLAlchemy so SAVEPOINTs (used per record during imports) work.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create the async engine for a database URL."""
    echo = os.getenv("SQL_ECHO", "false").lower() == "true"
    if url.startswith("sqlite"):
        return configure_sqlite(create_async_engine(url, echo=echo, future=True))
    return create_async_engine(
        url,
        echo=echo,
        future=True,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=10,
        max_overflow=20,
    )


engine: AsyncEngine = build_engine()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


# Registers the ledger tables on Base.metadata (models import Base from here)
from shuttle_ledger.database import models  # noqa: F401, E402


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request: committed when the handler returns, rolled back
    when it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_database():
    """Create any ledger tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)
