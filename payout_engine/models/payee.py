# payout_engine/models/payee.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Float, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base
from payout_engine.models.enums import ConnectStatus


class Chef(Base):
    __tablename__ = "chefs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Cached payment-rail state; re-validated live before every transfer
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    connect_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ConnectStatus.not_connected.value,
        server_default=text("'not_connected'"),
    )
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    onboarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    payout_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=70.0)


class Farmer(Base):
    __tablename__ = "farmers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    connect_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ConnectStatus.not_connected.value,
        server_default=text("'not_connected'"),
    )
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    onboarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    payout_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
