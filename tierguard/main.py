import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from tierguard.core.config import Settings, settings, validate_config
from tierguard.core.database import SessionFactory, create_all_tables, get_engine, make_session_factory
from tierguard.core.errors import (
    AppError,
    MonetizationError,
    app_error_handler,
    http_error_handler,
    monetization_error_handler,
    unhandled_exception_handler,
)
from tierguard.core.logging import configure_logging
from tierguard.core.middleware.request_id import RequestIdMiddleware
from tierguard.api import admin, health, monetization
from tierguard.features.monetization.container import build_monetization_services


def create_app(
    app_settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    session_factory: Optional[SessionFactory] = None,
) -> FastAPI:
    cfg = app_settings or settings
    db_engine = engine or get_engine()
    factory = session_factory or make_session_factory(db_engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("tierguard")
        logger.info("Starting tierguard...")
        create_all_tables(db_engine)
        if cfg.SEED_DEFAULTS:
            app.state.monetization.seed_defaults()
        try:
            yield
        finally:
            await app.state.monetization.pipeline.drain()
            logger.info("Stopping tierguard...")

    app = FastAPI(title="tierguard", lifespan=lifespan)
    app.state.settings = cfg
    app.state.engine = db_engine
    app.state.monetization = build_monetization_services(cfg, factory)

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(MonetizationError, monetization_error_handler)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(monetization.router)
    app.include_router(admin.router)
    return app


configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)

app = create_app()
