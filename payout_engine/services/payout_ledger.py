from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payout_engine.models.enums import LedgerStatus
from payout_engine.models.payout_ledger import PayoutLedgerEntry

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


class PayoutLedgerService:
    """
    Payout ledger: the source of truth for money that has moved.

    The UNIQUE (variant, subject_id, payee_id, line_key) constraint is what
    makes concurrent invocations safe. Exactly one caller inserts a row;
    everyone else reads it back and must win `claim()` before touching the rail.
    """

    RETRYABLE_STATUSES = (LedgerStatus.pending.value, LedgerStatus.failed.value)

    def __init__(self, lease_seconds: int = 300):
        self.lease = timedelta(seconds=lease_seconds)

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get_entry(
        self,
        db: Session,
        *,
        variant: str,
        subject_id: uuid.UUID,
        payee_id: uuid.UUID,
        line_key: str = "",
    ) -> Optional[PayoutLedgerEntry]:
        return db.execute(
            select(PayoutLedgerEntry).where(
                PayoutLedgerEntry.variant == variant,
                PayoutLedgerEntry.subject_id == subject_id,
                PayoutLedgerEntry.payee_id == payee_id,
                PayoutLedgerEntry.line_key == line_key,
            )
        ).scalar_one_or_none()

    def list_entries(
        self,
        db: Session,
        *,
        variant: Optional[str] = None,
        subject_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        limit: int = 500,
    ) -> List[PayoutLedgerEntry]:
        stmt = select(PayoutLedgerEntry)
        if variant is not None:
            stmt = stmt.where(PayoutLedgerEntry.variant == variant)
        if subject_id is not None:
            stmt = stmt.where(PayoutLedgerEntry.subject_id == subject_id)
        if status is not None:
            stmt = stmt.where(PayoutLedgerEntry.status == status)
        stmt = stmt.order_by(PayoutLedgerEntry.created_at, PayoutLedgerEntry.id).limit(limit)
        return list(db.execute(stmt).scalars().all())

    # ─────────────────────────────────────────────
    # WRITES
    # ─────────────────────────────────────────────

    def create_or_get(
        self,
        db: Session,
        *,
        variant: str,
        subject_id: uuid.UUID,
        payee_id: uuid.UUID,
        line_key: str,
        assignment_id: uuid.UUID,
        amount_cents: int,
        currency: str,
    ) -> Tuple[PayoutLedgerEntry, bool]:
        """
        Insert a pending entry already claimed by the caller.
        Returns (entry, created). created=False means another invocation
        got there first and the caller must claim() before proceeding.
        """
        existing = self.get_entry(db, variant=variant, subject_id=subject_id, payee_id=payee_id, line_key=line_key)
        if existing is not None:
            return existing, False

        now = _now()
        row = PayoutLedgerEntry(
            variant=variant,
            subject_id=subject_id,
            payee_id=payee_id,
            line_key=line_key,
            assignment_id=assignment_id,
            amount_cents=amount_cents,
            currency=currency,
            status=LedgerStatus.pending.value,
            attempts=1,
            claimed_at=now,
            updated_at=now,
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            winner = self.get_entry(db, variant=variant, subject_id=subject_id, payee_id=payee_id, line_key=line_key)
            if winner is None:
                raise
            logger.info("[ledger] lost insert race variant=%s subject=%s payee=%s", variant, subject_id, payee_id)
            return winner, False

        db.refresh(row)
        return row, True

    def claim(self, db: Session, entry: PayoutLedgerEntry) -> bool:
        """
        Compare-and-set claim on a non-paid entry whose previous claim is
        absent or older than the lease. Single statement, so at most one
        concurrent caller sees rowcount == 1.
        """
        now = _now()
        cutoff = now - self.lease
        result = db.execute(
            update(PayoutLedgerEntry)
            .where(
                PayoutLedgerEntry.id == entry.id,
                PayoutLedgerEntry.status.in_(self.RETRYABLE_STATUSES),
                or_(
                    PayoutLedgerEntry.claimed_at.is_(None),
                    PayoutLedgerEntry.claimed_at < cutoff,
                ),
            )
            .values(
                claimed_at=now,
                attempts=PayoutLedgerEntry.attempts + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(entry)
        return result.rowcount == 1

    def mark_paid(self, db: Session, entry: PayoutLedgerEntry, *, transfer_id: str) -> PayoutLedgerEntry:
        if not transfer_id:
            raise ValueError("transfer_id is required to mark a ledger entry paid")

        now = _now()
        result = db.execute(
            update(PayoutLedgerEntry)
            .where(
                PayoutLedgerEntry.id == entry.id,
                PayoutLedgerEntry.status != LedgerStatus.paid.value,
            )
            .values(
                status=LedgerStatus.paid.value,
                transfer_id=transfer_id,
                paid_at=now,
                error_message=None,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(entry)
        if result.rowcount == 0 and entry.transfer_id != transfer_id:
            # paid is terminal; keep the first transfer
            logger.error(
                "[ledger] entry %s already paid with %s, ignoring %s",
                entry.id, entry.transfer_id, transfer_id,
            )
        return entry

    def mark_failed(self, db: Session, entry: PayoutLedgerEntry, *, message: str) -> PayoutLedgerEntry:
        now = _now()
        db.execute(
            update(PayoutLedgerEntry)
            .where(
                PayoutLedgerEntry.id == entry.id,
                PayoutLedgerEntry.status != LedgerStatus.paid.value,
            )
            .values(
                status=LedgerStatus.failed.value,
                error_message=message[:1024],
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(entry)
        return entry
