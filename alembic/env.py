"""
Alembic environment for the call pipeline schema.

The database URL always comes from DATABASE_URL (app settings), never from
alembic.ini. Online migrations run through the same Database wrapper the API
and worker use, with pooling disabled.
"""

import asyncio
import logging
from logging.config import fileConfig

from sqlalchemy.engine import Connection
from sqlalchemy.pool import NullPool

from alembic import context

from app.core.config import get_settings
from app.core.logging_config import configure_logging
from app.db.base import Base
from app.db.session import Database
import app.models  # noqa: F401  tenants, call_events, analysis_jobs

config = context.config
settings = get_settings()

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)
else:
    configure_logging(settings.LOG_LEVEL)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of touching a database."""
    _configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    database = Database(settings.DATABASE_URL, poolclass=NullPool).connect()
    logger.info("Running migrations against %s", database.engine.url.render_as_string(hide_password=True))
    try:
        async with database.engine.connect() as connection:
            await connection.run_sync(_run_with_connection)
            await connection.commit()
    finally:
        await database.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
