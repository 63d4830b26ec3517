# payout_engine/models/booking.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, DateTime, Integer, BigInteger, Boolean, Float, Uuid, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base
from payout_engine.models.column_types import JSONType


class Booking(Base):
    """
    Event booking: the subject chef, farmer and ingredient payouts are owed for.

    chef_payout_* / stripe_transfer_id are a denormalized cache for the admin
    UI; payout_ledger_entries is the source of truth.
    """

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Quote economics (cents)
    quote_total_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    quote_subtotal_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    quote_tax_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    quote_service_fee_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    region_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    surge_multiplier_snapshot: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Chef payout composition, used by margin guardrails
    chef_payout_base_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    chef_payout_bonus_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    chef_rate_multiplier: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Gating timestamps
    fully_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    job_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Manual admin hold
    payout_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    payout_hold_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    payout_released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Denormalized chef payout view
    chef_payout_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    chef_payout_blockers: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    chef_payout_amount_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    chef_payout_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        Index("ix_bookings_fully_paid", "fully_paid_at"),
    )
