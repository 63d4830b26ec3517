from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from payout_engine.models.enums import ConnectStatus
from payout_engine.services.payment_rail import PaymentRailClient, RailError, RailUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayeeAccount:
    """Snapshot of a payee's cached rail state."""

    payee_id: uuid.UUID
    label: str  # "Chef", "Farmer", ...
    stripe_account_id: Optional[str]
    connect_status: Optional[str]
    payouts_enabled: bool


class EligibilityResolver:
    """
    Decides whether a payee can receive a transfer right now.
    Every check runs; the caller gets the full list of blockers (empty = eligible).
    """

    def __init__(self, rail: PaymentRailClient):
        self.rail = rail

    def resolve(self, payee: PayeeAccount) -> List[str]:
        blockers: List[str] = []

        if not payee.stripe_account_id:
            blockers.append(f"{payee.label} has no Stripe Connect account")

        if payee.connect_status != ConnectStatus.connected.value:
            blockers.append(f"{payee.label} Stripe status: {payee.connect_status or ConnectStatus.not_connected.value}")

        if not payee.payouts_enabled:
            blockers.append(f"{payee.label} payouts are not enabled")

        # Cached flags can be stale; the rail has the final word
        if payee.stripe_account_id:
            try:
                status = self.rail.get_account_status(account_id=payee.stripe_account_id)
            except RailUnavailable:
                blockers.append("Payment rail is not configured; payouts are disabled")
            except RailError as exc:
                logger.warning("[eligibility] account %s verification failed: %s", payee.stripe_account_id, exc.message)
                blockers.append(f"Could not verify Stripe account: {exc.message}")
            else:
                if not status.payouts_enabled:
                    blockers.append("Stripe account does not have payouts enabled")

        return blockers
