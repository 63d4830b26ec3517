# payout_engine/models/assignments.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, DateTime, BigInteger, Float, Uuid, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base
from payout_engine.models.column_types import JSONType
from payout_engine.models.enums import AssignmentStatus, FulfillmentStatus


class BookingChef(Base):
    __tablename__ = "booking_chefs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    chef_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("chefs.id", ondelete="CASCADE"), nullable=False)

    payout_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    payout_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payout_status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssignmentStatus.pending.value)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_error: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    payout_blockers: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("booking_id", "chef_id", name="uq_booking_chef"),
        Index("ix_booking_chefs_status", "booking_id", "payout_status"),
    )


class BookingFarmer(Base):
    __tablename__ = "booking_farmers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    farmer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("farmers.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="supplier")

    payout_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payout_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payout_status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssignmentStatus.pending.value)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_error: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    payout_blockers: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("booking_id", "farmer_id", name="uq_booking_farmer"),
        Index("ix_booking_farmers_status", "booking_id", "payout_status"),
    )


class BookingIngredient(Base):
    """
    One sourced ingredient line. A farmer may supply several lines on the
    same booking; each line settles separately.
    """

    __tablename__ = "booking_ingredients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    farmer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("farmers.id", ondelete="CASCADE"), nullable=False)
    ingredient_id: Mapped[str] = mapped_column(String(128), nullable=False)

    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fulfillment_status: Mapped[str] = mapped_column(String(16), nullable=False, default=FulfillmentStatus.ordered.value)

    payout_status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssignmentStatus.pending.value)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_error: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    payout_blockers: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("booking_id", "ingredient_id", name="uq_booking_ingredient"),
        Index("ix_booking_ingredients_status", "booking_id", "payout_status"),
    )
