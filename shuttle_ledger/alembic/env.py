"""
Async Alembic environment for the ledger schema.

Run from the package directory: ``alembic upgrade head``. The target
database always comes from DATABASE_URL so migrations and the API agree.
"""

from logging.config import fileConfig
import asyncio
import logging
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from shuttle_ledger.database.db import Base, DATABASE_URL
from shuttle_ledger.database import models  # noqa: F401  (registers tables)

logger = logging.getLogger(__name__)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _safe_url() -> str:
    # Never log credentials
    return DATABASE_URL.split("@", 1)[1] if "@" in DATABASE_URL else DATABASE_URL.split("://")[0]


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout instead of executing it."""
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = DATABASE_URL
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    except Exception as e:
        logger.error(f"Migration against {_safe_url()} failed: {e}", exc_info=True)
        raise
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    logger.info(f"Running ledger migrations against {_safe_url()}")
    asyncio.run(run_async_migrations())
