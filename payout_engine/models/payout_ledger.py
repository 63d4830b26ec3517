# payout_engine/models/payout_ledger.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, BigInteger, Uuid, UniqueConstraint, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base
from payout_engine.models.enums import LedgerStatus


class PayoutLedgerEntry(Base):
    """
    Authoritative payout record, one per (variant, subject, payee, line).

    - Inserted `pending` before any transfer is requested
    - `paid` is terminal and always carries transfer_id
    - amount_cents is fixed at insert time
    - claimed_at marks an in-flight attempt; a claim older than the lease
      is considered abandoned (crashed caller) and may be re-claimed
    """

    __tablename__ = "payout_ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    variant: Mapped[str] = mapped_column(String(16), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    payee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    line_key: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default=text("''"))
    assignment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="usd")

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=LedgerStatus.pending.value)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("variant", "subject_id", "payee_id", "line_key", name="uq_payout_ledger_payee"),
        Index("ix_payout_ledger_subject", "variant", "subject_id"),
        Index("ix_payout_ledger_status", "status"),
    )

    @property
    def transfer_group(self) -> str:
        return f"payout_{self.id}"
