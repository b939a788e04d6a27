"""
Alembic environment for the ledger schema.

The database URL comes from ``config.attributes["database_url"]`` when a
caller (tests, scripts) passes one, otherwise from DATABASE_URL or the
configured ``database.url``. Online runs reuse the application's engine
builder so SQLite migrations get the same foreign-key pragma as the ledger.
"""

from __future__ import annotations

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy.exc import SQLAlchemyError

from labstock.database import Base
from labstock.database.db_config import get_database_url
from labstock.database.db_engine import create_database_engine

config = context.config
logger = logging.getLogger("alembic.env")

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    return config.attributes.get("database_url") or get_database_url()


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    engine = create_database_engine(url)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, target_metadata=target_metadata)
            with context.begin_transaction():
                context.run_migrations()
    except SQLAlchemyError:
        logger.exception("migration against %s failed", engine.url.render_as_string())
        raise
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
