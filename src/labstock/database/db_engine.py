from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from labstock.database.db_config import get_connect_args, get_database_url, is_sqlite

_engine: Engine | None = None
_engine_config: tuple[str, tuple[tuple[str, Any], ...]] | None = None


def _normalize_connect_args(connect_args: dict[str, Any]) -> tuple[tuple[str, Any], ...]:
    return tuple(sorted(connect_args.items()))


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection: Any, _connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_database_engine(database_url: str, *, echo: bool = False) -> Engine:
    connect_args = get_connect_args(database_url)
    if is_sqlite(database_url):
        engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def get_engine() -> Engine:
    """Process-wide engine, rebuilt when the effective URL or connect args change."""
    global _engine, _engine_config

    database_url = get_database_url()
    config_key = (database_url, _normalize_connect_args(get_connect_args(database_url)))

    if _engine is None or _engine_config != config_key:
        if _engine is not None:
            _engine.dispose()
        from labstock.config_load import get_settings

        _engine = create_database_engine(database_url, echo=get_settings().database.echo)
        _engine_config = config_key

    return _engine
