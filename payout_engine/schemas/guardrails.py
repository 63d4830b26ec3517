from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class GuardrailConfigIn(BaseModel):
    region_code: Optional[str] = None  # None = global
    min_gross_margin_pct: float = Field(ge=0, le=100)
    max_bonus_plus_tier_pct: float = Field(ge=0)
    max_surge_multiplier: Optional[float] = Field(default=None, gt=0)
    min_job_value_cents: Optional[int] = Field(default=None, ge=0)
    block_or_warn: bool = True
    actor_user_id: Optional[str] = None


class GuardrailConfigOut(BaseModel):
    id: UUID
    region_code: Optional[str]
    min_gross_margin_pct: float
    max_bonus_plus_tier_pct: float
    max_surge_multiplier: Optional[float]
    min_job_value_cents: Optional[int]
    block_or_warn: bool

    model_config = {"from_attributes": True}


class OverrideLogOut(BaseModel):
    id: UUID
    subject_type: str
    subject_id: Optional[UUID]
    actor_user_id: Optional[str]
    action: str
    reason: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class OverrideLogList(BaseModel):
    items: List[OverrideLogOut]
