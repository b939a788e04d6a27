"""
HTTP surface of the ledger.

Run:
    uvicorn labstock.api.main:create_app --factory
"""

from collections.abc import Callable
from datetime import date

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from labstock import __version__
from labstock.api import batches, catalog
from labstock.api.deps import get_app_settings, get_db
from labstock.api.errors import ledger_error_handler
from labstock.common.logging import configure_logging, get_logger
from labstock.common.middleware import setup_logging_middleware
from labstock.config_load import get_settings
from labstock.config_schema import Settings
from labstock.database.db_config import get_database_url
from labstock.database.db_engine import create_database_engine
from labstock.database.db_session import make_session_factory
from labstock.ledger.errors import LedgerError
from labstock.ledger.service import build_inventory

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.app.name, settings.logging.level, settings.logging.renderer)

    if session_factory is None:
        engine = create_database_engine(
            get_database_url(settings.database), echo=settings.database.echo
        )
        session_factory = make_session_factory(engine)

    app = FastAPI(
        title="LabStock",
        description="Consumable inventory ledger: batches, FEFO allocation, movement log",
        version=__version__,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.inventory = build_inventory(session_factory, settings, today=today)

    setup_logging_middleware(app)
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(catalog.router)
    app.include_router(batches.router)

    @app.get("/health", tags=["health"])
    def health(
        db: Session = Depends(get_db),
        app_settings: Settings = Depends(get_app_settings),
    ) -> dict[str, str]:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "env": app_settings.app.env, "version": __version__}

    logger.info("app_created", env=settings.app.env, version=__version__)
    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "labstock.api.main:create_app",
        factory=True,
        host=_settings.server.host,
        port=_settings.server.port,
    )
