# payout_engine/models/margin_guardrail.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import String, Float, BigInteger, Boolean, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base


class MarginGuardrailConfig(Base):
    """
    Margin policy per region. region_code NULL is the global fallback.
    block_or_warn: True blocks failing payouts, False lets them proceed
    with an audit entry.
    """

    __tablename__ = "margin_guardrail_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    region_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, unique=True)

    min_gross_margin_pct: Mapped[float] = mapped_column(Float, nullable=False)
    max_bonus_plus_tier_pct: Mapped[float] = mapped_column(Float, nullable=False)
    max_surge_multiplier: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    min_job_value_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    block_or_warn: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
