# payout_engine/models/cooperative.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    String, DateTime, BigInteger, Boolean, Float, Numeric, Uuid, ForeignKey, UniqueConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base
from payout_engine.models.column_types import JSONType
from payout_engine.models.enums import AssignmentStatus, MemberStatus


class CooperativeMember(Base):
    """
    Cooperative member. Paid through the linked farmer's rail account,
    falling back to the linked chef's.
    """

    __tablename__ = "cooperative_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MemberStatus.active.value)

    impact_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payout_share_percent: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=Decimal("0"))

    farmer_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("farmers.id", ondelete="SET NULL"), nullable=True)
    chef_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("chefs.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        Index("ix_cooperative_members_status", "status"),
    )


class CooperativePeriod(Base):
    """
    Distribution period: the subject cooperative payouts are owed for.
    closed_at plays the role of completion, funded_at of full payment.
    """

    __tablename__ = "cooperative_periods"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    period: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # e.g. "2026-Q3"
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    total_profit_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    funded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    payout_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    payout_hold_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    payout_released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))


class CooperativePayout(Base):
    __tablename__ = "cooperative_payouts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    period_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("cooperative_periods.id", ondelete="CASCADE"), nullable=False)
    member_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("cooperative_members.id", ondelete="CASCADE"), nullable=False)

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    impact_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payout_share_percent: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=Decimal("0"))
    total_cooperative_profit_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payout_status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssignmentStatus.pending.value)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_error: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    payout_blockers: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("period_id", "member_id", name="uq_cooperative_payout_member"),
        Index("ix_cooperative_payouts_status", "period_id", "payout_status"),
    )
