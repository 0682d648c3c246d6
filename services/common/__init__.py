"""Shared infrastructure for the checkout service."""

from .config import DEFAULT_APP_NAME, ServiceSettings, get_settings
from .instrumentation import build_app, instrument_app
from .logging import configure_logging
from .database import (
    create_engine,
    dispose_engines,
    get_session_factory,
    is_sqlite_url,
    resolve_database_url,
    transactional_session,
)
from .tracing import configure_tracing, operation_span

__all__ = [
    "ServiceSettings",
    "get_settings",
    "build_app",
    "instrument_app",
    "configure_logging",
    "configure_tracing",
    "operation_span",
    "DEFAULT_APP_NAME",
    "create_engine",
    "dispose_engines",
    "get_session_factory",
    "is_sqlite_url",
    "resolve_database_url",
    "transactional_session",
]
