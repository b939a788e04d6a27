from collections.abc import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from labstock.config_schema import Settings
from labstock.ledger.service import Inventory


def get_inventory(request: Request) -> Inventory:
    return request.app.state.inventory


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    """Plain read session for one request."""
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()
