from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from payout_engine.schemas.payouts import PayeePayoutResultOut


class ShareCalculationRequest(BaseModel):
    actor_user_id: Optional[str] = None


class ShareCalculationOut(BaseModel):
    shares_calculated: int
    total_impact_score: float
    shares: Dict[str, Decimal]


class ImpactRecalculationOut(BaseModel):
    members_updated: int
    scores: Dict[str, float]
    breakdowns: Dict[str, Dict[str, int]]


class PeriodCreate(BaseModel):
    period: str = Field(min_length=1, max_length=32)
    period_type: Literal["monthly", "quarterly", "annual"]
    total_profit_cents: int = Field(ge=0)


class PeriodOut(BaseModel):
    id: UUID
    period: str
    period_type: str
    total_profit_cents: int
    closed_at: Optional[datetime]
    funded_at: Optional[datetime]
    payout_hold: bool

    model_config = {"from_attributes": True}


class DistributeRequest(BaseModel):
    actor_user_id: Optional[str] = None
    # run transfers straight after preparing rows
    dispatch: bool = True


class CooperativePayoutOut(BaseModel):
    id: UUID
    member_id: UUID
    amount_cents: int
    payout_share_percent: Decimal
    payout_status: str
    transfer_id: Optional[str]

    model_config = {"from_attributes": True}


class DistributionOut(BaseModel):
    period_id: UUID
    payouts_created: List[CooperativePayoutOut]
    results: List[PayeePayoutResultOut] = []
