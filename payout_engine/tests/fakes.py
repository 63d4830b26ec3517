from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from payout_engine.services.payment_rail import (
    AccountCreated,
    AccountStatus,
    OnboardingLink,
    RailError,
    RailUnavailable,
    TransferCreated,
    derive_connect_status,
)


class FakeRail:
    """
    In-memory stand-in for PaymentRailClient. Thread-safe so the bulk
    dispatcher and concurrent orchestrator tests can share one instance.
    """

    currency = "usd"

    def __init__(self):
        self._lock = threading.Lock()
        self.transfers: List[Dict] = []
        self.accounts: Dict[str, Dict[str, bool]] = {}
        self.create_calls = 0
        self.find_calls = 0
        self.unavailable = False
        self.transfer_delay = 0.0
        # account ids whose transfers fail with RailError
        self.failing_accounts: set = set()
        # number of upcoming create_transfer calls that fail before reaching the rail
        self.fail_transfers = 0
        # number of upcoming create_transfer calls that succeed at the rail but lose the response
        self.lose_responses = 0
        self.status_error: Optional[RailError] = None
        self.closed = False

    def close(self):
        self.closed = True

    @property
    def configured(self) -> bool:
        return not self.unavailable

    def _check(self):
        if self.unavailable:
            raise RailUnavailable()

    def set_account(self, account_id: str, *, payouts_enabled: bool = True, charges_enabled: bool = True, details_submitted: bool = True):
        self.accounts[account_id] = {
            "payouts_enabled": payouts_enabled,
            "charges_enabled": charges_enabled,
            "details_submitted": details_submitted,
        }

    def create_account(self, *, email, name, kind) -> AccountCreated:
        self._check()
        with self._lock:
            account_id = f"acct_{len(self.accounts) + 1:04d}"
            self.set_account(account_id, payouts_enabled=False, charges_enabled=False, details_submitted=False)
        return AccountCreated(account_id=account_id)

    def create_onboarding_link(self, *, account_id, return_url, refresh_url=None) -> OnboardingLink:
        self._check()
        return OnboardingLink(
            url=f"https://connect.example/setup/{account_id}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=24),
        )

    def get_account_status(self, *, account_id) -> AccountStatus:
        self._check()
        if self.status_error is not None:
            raise self.status_error
        flags = self.accounts.get(account_id) or {
            "payouts_enabled": True,
            "charges_enabled": True,
            "details_submitted": True,
        }
        return AccountStatus(connect_status=derive_connect_status(**flags), **flags)

    def create_transfer(self, *, account_id, amount_cents, description, transfer_group=None, metadata=None) -> TransferCreated:
        self._check()
        if self.transfer_delay:
            time.sleep(self.transfer_delay)
        with self._lock:
            self.create_calls += 1
            if account_id in self.failing_accounts:
                raise RailError("Insufficient platform balance", code="balance_insufficient", status_code=400)
            if self.fail_transfers > 0:
                self.fail_transfers -= 1
                raise RailError("Connection reset by peer")
            transfer_id = f"tr_{len(self.transfers) + 1:04d}"
            self.transfers.append({
                "id": transfer_id,
                "destination": account_id,
                "amount": amount_cents,
                "description": description,
                "transfer_group": transfer_group,
                "metadata": dict(metadata or {}),
            })
            if self.lose_responses > 0:
                self.lose_responses -= 1
                raise RailError("Read timed out")
        return TransferCreated(transfer_id=transfer_id)

    def find_transfer(self, *, transfer_group) -> Optional[TransferCreated]:
        self._check()
        with self._lock:
            self.find_calls += 1
            for t in self.transfers:
                if t["transfer_group"] == transfer_group:
                    return TransferCreated(transfer_id=t["id"])
        return None
