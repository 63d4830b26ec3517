"""
Payment rail client (Stripe Connect REST API over httpx).

Connected-account lifecycle and one-shot transfers. Transfers are NOT
idempotent at the rail: callers must guard with the payout ledger.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from payout_engine.core.config import Settings
from payout_engine.models.enums import ConnectStatus

logger = logging.getLogger(__name__)


class RailError(Exception):
    """Transport or provider failure. message is the provider's text."""

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class RailUnavailable(RailError):
    """No credentials configured: payouts are disabled, never retry."""

    def __init__(self, message: str = "Stripe is not configured"):
        super().__init__(message, code="rail_unavailable")


@dataclass(frozen=True)
class AccountCreated:
    account_id: str


@dataclass(frozen=True)
class OnboardingLink:
    url: str
    expires_at: datetime


@dataclass(frozen=True)
class AccountStatus:
    connect_status: ConnectStatus
    details_submitted: bool
    charges_enabled: bool
    payouts_enabled: bool


@dataclass(frozen=True)
class TransferCreated:
    transfer_id: str


def derive_connect_status(*, details_submitted: bool, charges_enabled: bool, payouts_enabled: bool) -> ConnectStatus:
    if charges_enabled and payouts_enabled:
        return ConnectStatus.connected
    if details_submitted and not payouts_enabled:
        return ConnectStatus.restricted
    return ConnectStatus.pending


def verify_webhook_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> bool:
    """
    Stripe-Signature header: "t=<unix ts>,v1=<hex>", where v1 is
    HMAC-SHA256(secret, "<t>." + payload). Stale timestamps are rejected.
    """
    if not signature_header or not secret:
        return False

    timestamp = None
    signatures: List[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not signatures:
        return False

    try:
        signed_at = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - signed_at) > tolerance_seconds:
        return False

    expected = hmac.new(secret.encode(), timestamp.encode() + b"." + payload, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, sig) for sig in signatures)


def _flatten_form(data: Dict[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """
    Stripe's bracket notation: {"metadata": {"k": "v"}} -> [("metadata[k]", "v")].
    None values are dropped, bools become "true"/"false".
    """
    out: List[Tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            out.extend(_flatten_form(value, name))
        elif isinstance(value, bool):
            out.append((name, "true" if value else "false"))
        else:
            out.append((name, str(value)))
    return out


class PaymentRailClient:
    def __init__(
        self,
        *,
        secret_key: Optional[str],
        api_base: str = "https://api.stripe.com/v1",
        api_version: Optional[str] = None,
        currency: str = "usd",
        timeout: float = 30.0,
        account_country: str = "US",
        onboarding_link_ttl_hours: int = 24,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.currency = currency
        self.account_country = account_country
        self.onboarding_link_ttl = timedelta(hours=onboarding_link_ttl_hours)

        headers = {}
        if api_version:
            headers["Stripe-Version"] = api_version
        self._http = httpx.Client(
            base_url=api_base.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "PaymentRailClient":
        return cls(
            secret_key=settings.stripe_secret_key,
            api_base=settings.stripe_api_base,
            api_version=settings.stripe_api_version,
            currency=settings.payout_currency,
            timeout=settings.rail_timeout_seconds,
            account_country=settings.stripe_account_country,
            onboarding_link_ttl_hours=settings.onboarding_link_ttl_hours,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def close(self) -> None:
        self._http.close()

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        form: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.secret_key:
            raise RailUnavailable()

        # httpx only form-encodes a mapping; bracket keys never repeat
        data = dict(_flatten_form(form)) if form is not None else None
        try:
            request = self._http.build_request(
                method,
                path,
                data=data,
                params=params,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
        except (TypeError, ValueError) as exc:
            logger.warning("[rail] %s %s could not be encoded: %s", method, path, exc)
            raise RailError(f"Payment rail request could not be encoded: {exc}") from exc

        try:
            response = self._http.send(request)
        except httpx.HTTPError as exc:
            logger.warning("[rail] %s %s transport error: %s", method, path, exc)
            raise RailError(f"Payment rail request failed: {exc}") from exc

        if response.status_code >= 400:
            code = None
            message = response.text
            try:
                err = response.json().get("error") or {}
                message = err.get("message") or message
                code = err.get("code") or err.get("type")
            except ValueError:
                pass
            logger.warning("[rail] %s %s -> %s: %s", method, path, response.status_code, message)
            raise RailError(message, code=code, status_code=response.status_code)

        return response.json()

    # ─────────────────────────────────────────────
    # ACCOUNTS
    # ─────────────────────────────────────────────

    def create_account(self, *, email: Optional[str], name: Optional[str], kind: str) -> AccountCreated:
        body = self._request(
            "POST",
            "/accounts",
            form={
                "type": "express",
                "country": self.account_country,
                "email": email,
                "capabilities": {
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                "business_profile": {"name": name},
                "metadata": {"payee_kind": kind},
            },
        )
        return AccountCreated(account_id=body["id"])

    def create_onboarding_link(
        self,
        *,
        account_id: str,
        return_url: str,
        refresh_url: Optional[str] = None,
    ) -> OnboardingLink:
        body = self._request(
            "POST",
            "/account_links",
            form={
                "account": account_id,
                "refresh_url": refresh_url or return_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )
        return OnboardingLink(
            url=body["url"],
            expires_at=datetime.now(timezone.utc) + self.onboarding_link_ttl,
        )

    def get_account_status(self, *, account_id: str) -> AccountStatus:
        body = self._request("GET", f"/accounts/{account_id}")
        details_submitted = bool(body.get("details_submitted"))
        charges_enabled = bool(body.get("charges_enabled"))
        payouts_enabled = bool(body.get("payouts_enabled"))
        return AccountStatus(
            connect_status=derive_connect_status(
                details_submitted=details_submitted,
                charges_enabled=charges_enabled,
                payouts_enabled=payouts_enabled,
            ),
            details_submitted=details_submitted,
            charges_enabled=charges_enabled,
            payouts_enabled=payouts_enabled,
        )

    # ─────────────────────────────────────────────
    # TRANSFERS
    # ─────────────────────────────────────────────

    def create_transfer(
        self,
        *,
        account_id: str,
        amount_cents: int,
        description: str,
        transfer_group: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransferCreated:
        body = self._request(
            "POST",
            "/transfers",
            form={
                "amount": amount_cents,
                "currency": self.currency,
                "destination": account_id,
                "description": description,
                "transfer_group": transfer_group,
                "metadata": metadata or None,
            },
        )
        logger.info("[rail] transfer %s created amount=%s destination=%s", body["id"], amount_cents, account_id)
        return TransferCreated(transfer_id=body["id"])

    def find_transfer(self, *, transfer_group: str) -> Optional[TransferCreated]:
        """
        Look up a transfer previously created for transfer_group.
        Used before re-attempting a payout whose last attempt has an unknown outcome.
        """
        body = self._request("GET", "/transfers", params={"transfer_group": transfer_group, "limit": 1})
        data = body.get("data") or []
        for item in data:
            if not item.get("reversed"):
                return TransferCreated(transfer_id=item["id"])
        return None
