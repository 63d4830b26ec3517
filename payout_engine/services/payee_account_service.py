from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from payout_engine.models.enums import ConnectStatus, PayeeKind
from payout_engine.models.payee import Chef, Farmer
from payout_engine.services.payment_rail import OnboardingLink, PaymentRailClient, derive_connect_status

logger = logging.getLogger(__name__)

Payee = Union[Chef, Farmer]

PAYEE_MODELS = {
    PayeeKind.chef.value: Chef,
    PayeeKind.farmer.value: Farmer,
}


def _now():
    return datetime.now(timezone.utc)


class PayeeAccountService:
    """
    Connected-account lifecycle for chefs and farmers. Keeps the cached
    connect_status / payouts_enabled columns in sync with the rail.
    RailError propagates to the caller.
    """

    def __init__(self, rail: PaymentRailClient):
        self.rail = rail

    def get_payee(self, db: Session, *, kind: str, payee_id: uuid.UUID) -> Payee:
        model = PAYEE_MODELS.get(kind)
        if model is None:
            raise ValueError(f"Unknown payee kind: {kind}")
        row = db.get(model, payee_id)
        if not row:
            raise ValueError(f"{kind.capitalize()} not found")
        return row

    def create_account(self, db: Session, *, kind: str, payee_id: uuid.UUID) -> Payee:
        payee = self.get_payee(db, kind=kind, payee_id=payee_id)
        if payee.stripe_account_id:
            return payee

        created = self.rail.create_account(email=payee.email, name=payee.name, kind=kind)
        payee.stripe_account_id = created.account_id
        payee.connect_status = ConnectStatus.pending.value
        payee.payouts_enabled = False
        db.commit()
        db.refresh(payee)

        logger.info("[accounts] %s %s connected account %s created", kind, payee.id, created.account_id)
        return payee

    def create_onboarding_link(
        self,
        db: Session,
        *,
        kind: str,
        payee_id: uuid.UUID,
        return_url: str,
        refresh_url: Optional[str] = None,
    ) -> OnboardingLink:
        payee = self.get_payee(db, kind=kind, payee_id=payee_id)
        if not payee.stripe_account_id:
            raise ValueError(f"{kind.capitalize()} has no Stripe Connect account")
        return self.rail.create_onboarding_link(
            account_id=payee.stripe_account_id,
            return_url=return_url,
            refresh_url=refresh_url,
        )

    def refresh_account_status(self, db: Session, *, kind: str, payee_id: uuid.UUID) -> Payee:
        payee = self.get_payee(db, kind=kind, payee_id=payee_id)
        if not payee.stripe_account_id:
            raise ValueError(f"{kind.capitalize()} has no Stripe Connect account")

        status = self.rail.get_account_status(account_id=payee.stripe_account_id)
        self._apply(payee, status.connect_status, status.payouts_enabled)
        db.commit()
        db.refresh(payee)
        return payee

    def sync_account_status(
        self,
        db: Session,
        *,
        account_id: str,
        details_submitted: bool,
        charges_enabled: bool,
        payouts_enabled: bool,
    ) -> Payee:
        """account.updated webhook path: flags come from the event payload."""
        payee = None
        for model in PAYEE_MODELS.values():
            payee = db.execute(select(model).where(model.stripe_account_id == account_id)).scalar_one_or_none()
            if payee is not None:
                break
        if payee is None:
            raise ValueError("Payee for account not found")

        connect_status = derive_connect_status(
            details_submitted=details_submitted,
            charges_enabled=charges_enabled,
            payouts_enabled=payouts_enabled,
        )
        self._apply(payee, connect_status, payouts_enabled)
        db.commit()
        db.refresh(payee)
        return payee

    def _apply(self, payee: Payee, connect_status: ConnectStatus, payouts_enabled: bool) -> None:
        payee.connect_status = connect_status.value
        payee.payouts_enabled = bool(payouts_enabled)
        if connect_status == ConnectStatus.connected and payee.onboarded_at is None:
            payee.onboarded_at = _now()
