from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class MarginOverrideIn(BaseModel):
    user_id: str = Field(min_length=1)
    reason: Optional[str] = None


class PayoutRunRequest(BaseModel):
    override: Optional[MarginOverrideIn] = None


class PayoutResultOut(BaseModel):
    outcome: str
    success: bool
    payout_created: bool
    payout_id: Optional[str] = None
    transfer_id: Optional[str] = None
    blockers: List[str] = []
    error: Optional[str] = None
    retryable: bool = False


class PayeePayoutResultOut(BaseModel):
    assignment_id: UUID
    result: PayoutResultOut


class SweepRequest(BaseModel):
    statuses: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1)


class LedgerEntryOut(BaseModel):
    id: UUID
    variant: str
    subject_id: UUID
    payee_id: UUID
    line_key: str
    assignment_id: UUID
    amount_cents: int
    currency: str
    status: str
    transfer_id: Optional[str]
    error_message: Optional[str]
    attempts: int
    paid_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class HoldRequest(BaseModel):
    reason: Optional[str] = None
    actor_user_id: Optional[str] = None


class ReleaseRequest(BaseModel):
    actor_user_id: Optional[str] = None


class HoldOut(BaseModel):
    subject_id: UUID
    payout_hold: bool
    payout_hold_reason: Optional[str]
    payout_released_at: Optional[datetime]
    assignments_released: int = 0
    payouts: List[PayeePayoutResultOut] = []
