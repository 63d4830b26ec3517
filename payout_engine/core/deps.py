# payout_engine/core/deps.py
from __future__ import annotations

from typing import Callable, Dict

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from payout_engine.services.bulk_dispatcher import BulkDispatcher
from payout_engine.services.payment_rail import PaymentRailClient
from payout_engine.services.payout_orchestrator import PayoutOrchestrator


def get_rail(request: Request) -> PaymentRailClient:
    return request.app.state.rail


def get_orchestrators(request: Request) -> Dict[str, PayoutOrchestrator]:
    return request.app.state.orchestrators


def get_session_factory(request: Request) -> Callable[[], Session]:
    return request.app.state.session_factory


def get_orchestrator(request: Request, variant: str) -> PayoutOrchestrator:
    orchestrator = get_orchestrators(request).get(variant)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"Unknown payout variant: {variant}")
    return orchestrator


def get_dispatcher(request: Request, variant: str) -> BulkDispatcher:
    return BulkDispatcher(
        get_orchestrator(request, variant),
        get_session_factory(request),
        max_workers=request.app.state.settings.payout_dispatch_workers,
    )
