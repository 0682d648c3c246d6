from contextlib import asynccontextmanager

from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    dispose_engines,
    get_settings,
    get_session_factory,
    resolve_database_url,
)

from .api.admin import router as admin_router
from .api.cart import router as cart_router
from .api.health import router as health_router
from .api.orders import router as orders_router

SERVICE_NAME = "Checkout Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./checkout_service.db"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Checkout Service FastAPI application."""

    resolved_settings = settings or get_settings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(
        database_url,
        echo=resolved_settings.database_echo,
        busy_timeout_seconds=resolved_settings.sqlite_busy_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.session_factory = session_factory
        try:
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(cart_router)
    app.include_router(orders_router)
    app.include_router(admin_router)
    return app


app = create_app()
