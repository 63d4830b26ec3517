from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from payout_engine.core.config import Settings, get_settings
from payout_engine.core.logging import configure_logging
from payout_engine.core.middleware import RequestIdMiddleware
from payout_engine.api.v1.router import v1_router
from payout_engine.services.payment_rail import PaymentRailClient
from payout_engine.services.payout_orchestrator import build_orchestrators


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # the rail owns a pooled httpx client
    logger.info("[app] shutting down, closing payment rail client")
    app.state.rail.close()


def create_app(
    settings: Optional[Settings] = None,
    *,
    rail: Optional[PaymentRailClient] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    if session_factory is None:
        from payout_engine.db.session import SessionLocal
        session_factory = SessionLocal

    rail = rail or PaymentRailClient.from_settings(settings)
    app.state.settings = settings
    app.state.rail = rail
    app.state.orchestrators = build_orchestrators(rail, settings)
    app.state.session_factory = session_factory

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
