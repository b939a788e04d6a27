import os

from labstock.config_schema import DatabaseConfig


def get_database_url(config: DatabaseConfig | None = None) -> str:
    """DATABASE_URL from the environment wins over the configured URL."""
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url
    if config is None:
        from labstock.config_load import get_settings

        config = get_settings().database
    return config.url


def is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def get_connect_args(database_url: str) -> dict[str, object]:
    if is_sqlite(database_url):
        # Sessions are handed across request threads; locking is done by the ledger.
        return {"check_same_thread": False}
    sslmode = os.environ.get("DB_SSLMODE", "prefer")
    return {
        "sslmode": sslmode,
        "connect_timeout": 10,
    }
