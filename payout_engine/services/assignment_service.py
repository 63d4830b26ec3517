from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payout_engine.core.config import Settings, get_settings
from payout_engine.models.assignments import BookingChef, BookingFarmer, BookingIngredient
from payout_engine.models.booking import Booking
from payout_engine.models.enums import AssignmentStatus, FulfillmentStatus, PayoutVariantName
from payout_engine.models.payee import Chef, Farmer
from payout_engine.models.payout_ledger import PayoutLedgerEntry


def percent_of(total_cents: int, pct: float) -> int:
    """Half-up rounding to whole cents."""
    value = Decimal(total_cents) * Decimal(str(pct)) / Decimal("100")
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ChefPayoutWithBonus:
    base_cents: int
    bonus_cents: int
    total_cents: int


def compute_chef_payout_with_bonus(
    base_cents: int,
    bonus_pct: float,
    *,
    status: Optional[str] = None,
    enabled: bool = True,
    override: bool = False,
    cap_pct: float = 10.0,
) -> ChefPayoutWithBonus:
    """
    base + capped performance bonus. No bonus once paid, when bonuses are
    switched off, or when an admin overrides the payout.
    """
    no_bonus = ChefPayoutWithBonus(base_cents=base_cents, bonus_cents=0, total_cents=base_cents)
    if base_cents <= 0:
        return no_bonus
    if (status or "").lower() == AssignmentStatus.paid.value:
        return no_bonus
    if not enabled or override:
        return no_bonus

    pct = min(max(bonus_pct, 0.0), cap_pct)
    bonus = percent_of(base_cents, pct)
    return ChefPayoutWithBonus(base_cents=base_cents, bonus_cents=bonus, total_cents=base_cents + bonus)


class AssignmentService:
    """
    Attaches payees to bookings and keeps their payout amounts in step with
    the booking total until the amount is frozen by a ledger entry.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _booking(self, db: Session, booking_id: uuid.UUID) -> Booking:
        booking = db.get(Booking, booking_id)
        if not booking:
            raise ValueError("Booking not found")
        return booking

    def _has_ledger_entry(self, db: Session, *, variant: str, booking_id: uuid.UUID, payee_id: uuid.UUID, line_key: str = "") -> bool:
        return db.execute(
            select(PayoutLedgerEntry.id).where(
                PayoutLedgerEntry.variant == variant,
                PayoutLedgerEntry.subject_id == booking_id,
                PayoutLedgerEntry.payee_id == payee_id,
                PayoutLedgerEntry.line_key == line_key,
            )
        ).first() is not None

    def _commit_new(self, db: Session, row, conflict_message: str):
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ValueError(conflict_message) from None
        db.refresh(row)
        return row

    # ─────────────────────────────────────────────
    # ASSIGN
    # ─────────────────────────────────────────────

    def assign_chef(
        self,
        db: Session,
        *,
        booking_id: uuid.UUID,
        chef_id: uuid.UUID,
        payout_percentage: Optional[float] = None,
        bonus_pct: float = 0.0,
        bonus_override: bool = False,
    ) -> BookingChef:
        booking = self._booking(db, booking_id)
        chef = db.get(Chef, chef_id)
        if not chef:
            raise ValueError("Chef not found")

        pct = payout_percentage if payout_percentage is not None else (
            chef.payout_percentage or self.settings.default_chef_payout_percentage
        )
        if pct < 0 or pct > 100:
            raise ValueError("payout_percentage must be between 0 and 100")

        base = percent_of(booking.quote_total_cents or 0, pct)
        payout = compute_chef_payout_with_bonus(
            base,
            bonus_pct,
            enabled=self.settings.chef_payout_bonus_enabled,
            override=bonus_override,
            cap_pct=self.settings.chef_payout_bonus_cap_pct,
        )

        booking.chef_payout_base_cents = payout.base_cents
        booking.chef_payout_bonus_cents = payout.bonus_cents
        booking.chef_payout_amount_cents = payout.total_cents

        row = BookingChef(
            booking_id=booking.id,
            chef_id=chef.id,
            payout_percentage=pct,
            payout_amount_cents=payout.total_cents,
        )
        return self._commit_new(db, row, "Chef already assigned to booking")

    def assign_farmer(
        self,
        db: Session,
        *,
        booking_id: uuid.UUID,
        farmer_id: uuid.UUID,
        role: str = "supplier",
        payout_percentage: Optional[float] = None,
    ) -> BookingFarmer:
        booking = self._booking(db, booking_id)
        farmer = db.get(Farmer, farmer_id)
        if not farmer:
            raise ValueError("Farmer not found")

        pct = payout_percentage if payout_percentage is not None else farmer.payout_percentage
        if pct < 0 or pct > 100:
            raise ValueError("payout_percentage must be between 0 and 100")

        row = BookingFarmer(
            booking_id=booking.id,
            farmer_id=farmer.id,
            role=role,
            payout_percentage=pct,
            payout_amount_cents=percent_of(booking.quote_total_cents or 0, pct),
        )
        return self._commit_new(db, row, "Farmer already assigned to booking")

    def add_ingredient(
        self,
        db: Session,
        *,
        booking_id: uuid.UUID,
        farmer_id: uuid.UUID,
        ingredient_id: str,
        quantity: float,
        total_cents: int,
    ) -> BookingIngredient:
        booking = self._booking(db, booking_id)
        if not db.get(Farmer, farmer_id):
            raise ValueError("Farmer not found")
        if total_cents < 0:
            raise ValueError("total_cents must be non-negative")

        row = BookingIngredient(
            booking_id=booking.id,
            farmer_id=farmer_id,
            ingredient_id=ingredient_id,
            quantity=quantity,
            total_cents=total_cents,
        )
        return self._commit_new(db, row, "Ingredient already on booking")

    def set_fulfillment_status(self, db: Session, *, booking_ingredient_id: uuid.UUID, status: str) -> BookingIngredient:
        row = db.get(BookingIngredient, booking_ingredient_id)
        if not row:
            raise ValueError("Booking ingredient not found")
        if status not in {s.value for s in FulfillmentStatus}:
            raise ValueError(f"Invalid fulfillment status: {status}")
        if row.payout_status == AssignmentStatus.paid.value:
            raise ValueError("Ingredient payout already completed")

        row.fulfillment_status = status
        db.commit()
        db.refresh(row)
        return row

    # ─────────────────────────────────────────────
    # RECOMPUTE
    # ─────────────────────────────────────────────

    def recompute_payout_amounts(self, db: Session, *, booking_id: uuid.UUID) -> int:
        """
        Re-derive percentage-based amounts after the booking total changed.
        Amounts already captured by a ledger entry (or paid) are frozen.
        Returns the number of assignments updated.
        """
        booking = self._booking(db, booking_id)
        total = booking.quote_total_cents or 0
        updated = 0

        chefs = db.execute(select(BookingChef).where(BookingChef.booking_id == booking.id)).scalars().all()
        for bc in chefs:
            if bc.payout_status == AssignmentStatus.paid.value:
                continue
            if self._has_ledger_entry(db, variant=PayoutVariantName.chef.value, booking_id=booking.id, payee_id=bc.chef_id):
                continue
            base = percent_of(total, bc.payout_percentage)
            bonus_pct = (
                (booking.chef_payout_bonus_cents or 0) / booking.chef_payout_base_cents * 100
                if booking.chef_payout_base_cents else 0.0
            )
            payout = compute_chef_payout_with_bonus(
                base,
                bonus_pct,
                status=bc.payout_status,
                enabled=self.settings.chef_payout_bonus_enabled,
                cap_pct=self.settings.chef_payout_bonus_cap_pct,
            )
            if bc.payout_amount_cents != payout.total_cents:
                bc.payout_amount_cents = payout.total_cents
                booking.chef_payout_base_cents = payout.base_cents
                booking.chef_payout_bonus_cents = payout.bonus_cents
                booking.chef_payout_amount_cents = payout.total_cents
                updated += 1

        farmers = db.execute(select(BookingFarmer).where(BookingFarmer.booking_id == booking.id)).scalars().all()
        for bf in farmers:
            if bf.payout_status == AssignmentStatus.paid.value:
                continue
            if self._has_ledger_entry(db, variant=PayoutVariantName.farmer.value, booking_id=booking.id, payee_id=bf.farmer_id):
                continue
            amount = percent_of(total, bf.payout_percentage)
            if bf.payout_amount_cents != amount:
                bf.payout_amount_cents = amount
                updated += 1

        db.commit()
        return updated
