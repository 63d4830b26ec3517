# payout_engine/api/v1/accounts.py
from __future__ import annotations

import json
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from payout_engine.core.deps import get_rail
from payout_engine.db.session import get_db
from payout_engine.schemas.accounts import OnboardingLinkOut, OnboardingLinkRequest, PayeeAccountOut, WebhookAck
from payout_engine.services.payee_account_service import PayeeAccountService
from payout_engine.services.payment_rail import RailError, RailUnavailable, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts")


def _raise_http(e: Exception):
    if isinstance(e, RailUnavailable):
        raise HTTPException(status_code=503, detail=e.message)
    if isinstance(e, RailError):
        raise HTTPException(status_code=502, detail=e.message)
    msg = str(e)
    raise HTTPException(status_code=404 if "not found" in msg.lower() else 400, detail=msg)


@router.post("/webhook", response_model=WebhookAck)
async def account_webhook(request: Request, db: Session = Depends(get_db)):
    """Stripe Connect events. Only account.updated changes state."""
    secret = request.app.state.settings.stripe_webhook_secret
    if not secret:
        raise HTTPException(status_code=503, detail="Webhook secret is not configured")

    payload = await request.body()
    if not verify_webhook_signature(payload, request.headers.get("Stripe-Signature"), secret):
        logger.warning("[webhook] rejected event with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        event = None
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    event_type = event.get("type")
    if event_type != "account.updated":
        return WebhookAck(event_type=event_type)

    account = (event.get("data") or {}).get("object") or {}
    try:
        payee = PayeeAccountService(get_rail(request)).sync_account_status(
            db,
            account_id=account.get("id") or "",
            details_submitted=bool(account.get("details_submitted")),
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
        )
    except ValueError as e:
        # acknowledged so the provider stops redelivering
        logger.warning("[webhook] account.updated for %s ignored: %s", account.get("id"), e)
        return WebhookAck(event_type=event_type)

    logger.info("[webhook] account %s synced status=%s", payee.stripe_account_id, payee.connect_status)
    return WebhookAck(event_type=event_type, handled=True, payee_id=payee.id, connect_status=payee.connect_status)


@router.post("/{kind}/{payee_id}", response_model=PayeeAccountOut)
def create_account(kind: str, payee_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    try:
        return PayeeAccountService(get_rail(request)).create_account(db, kind=kind, payee_id=payee_id)
    except (ValueError, RailError) as e:
        _raise_http(e)


@router.post("/{kind}/{payee_id}/onboarding-link", response_model=OnboardingLinkOut)
def create_onboarding_link(
    kind: str,
    payee_id: uuid.UUID,
    req: OnboardingLinkRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        link = PayeeAccountService(get_rail(request)).create_onboarding_link(
            db,
            kind=kind,
            payee_id=payee_id,
            return_url=req.return_url,
            refresh_url=req.refresh_url,
        )
    except (ValueError, RailError) as e:
        _raise_http(e)
    return OnboardingLinkOut(url=link.url, expires_at=link.expires_at)


@router.post("/{kind}/{payee_id}/refresh", response_model=PayeeAccountOut)
def refresh_account(kind: str, payee_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    try:
        return PayeeAccountService(get_rail(request)).refresh_account_status(db, kind=kind, payee_id=payee_id)
    except (ValueError, RailError) as e:
        _raise_http(e)
