from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class PayeeAccountOut(BaseModel):
    id: UUID
    name: str
    stripe_account_id: Optional[str]
    connect_status: str
    payouts_enabled: bool
    onboarded_at: Optional[datetime]

    model_config = {"from_attributes": True}


class OnboardingLinkRequest(BaseModel):
    return_url: str
    refresh_url: Optional[str] = None


class OnboardingLinkOut(BaseModel):
    url: str
    expires_at: datetime


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
    event_type: Optional[str] = None
    payee_id: Optional[UUID] = None
    connect_status: Optional[str] = None
