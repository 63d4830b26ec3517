"""
Payout variants: what differs between chef, farmer, ingredient and
cooperative payouts. The state machine itself lives in payout_orchestrator.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from payout_engine.models.assignments import BookingChef, BookingFarmer, BookingIngredient
from payout_engine.models.booking import Booking
from payout_engine.models.cooperative import CooperativeMember, CooperativePayout, CooperativePeriod
from payout_engine.models.enums import (
    ConnectStatus,
    FulfillmentStatus,
    PayoutVariantName,
    SubjectPayoutStatus,
    SubjectType,
)
from payout_engine.models.payee import Chef, Farmer
from payout_engine.services.eligibility import PayeeAccount
from payout_engine.services.margin_guardrails import MarginCheckInput

JOB_NOT_COMPLETED = "Job must be completed before payout can be processed"
BOOKING_NOT_PAID = "Booking is not fully paid"
INGREDIENT_NOT_DELIVERED = "Ingredient must be delivered before payout can be processed"
PERIOD_NOT_CLOSED = "Cooperative period must be closed before payout can be processed"
PERIOD_NOT_FUNDED = "Cooperative period is not funded"

# paid may be set by hand before the transfer settles
PAYABLE_FULFILLMENT = (FulfillmentStatus.delivered.value, FulfillmentStatus.paid.value)


def _account(payee_id: uuid.UUID, label: str, row) -> PayeeAccount:
    return PayeeAccount(
        payee_id=payee_id,
        label=label,
        stripe_account_id=row.stripe_account_id,
        connect_status=row.connect_status,
        payouts_enabled=bool(row.payouts_enabled),
    )


class PayoutVariant:
    """
    Base variant. Subclasses set the models and override the hooks that
    differ; everything an assignment table has in common is handled here.
    """

    name: str
    subject_type: str
    assignment_model: Any
    subject_model: Any
    payee_label: str
    uses_guardrails: bool = False

    # ─────────────────────────────────────────────
    # LOADING
    # ─────────────────────────────────────────────

    def load_assignment(self, db: Session, assignment_id: uuid.UUID):
        return db.get(self.assignment_model, assignment_id)

    def subject_id(self, assignment) -> uuid.UUID:
        return assignment.booking_id

    def load_subject(self, db: Session, assignment):
        return db.get(self.subject_model, self.subject_id(assignment))

    def select_assignments(self, *, subject_id: Optional[uuid.UUID], statuses: Sequence[str]) -> Select:
        model = self.assignment_model
        stmt = select(model.id).where(model.payout_status.in_(list(statuses)))
        if subject_id is not None:
            stmt = stmt.where(self.subject_column() == subject_id)
        return stmt.order_by(model.id)

    def subject_column(self):
        return self.assignment_model.booking_id

    # ─────────────────────────────────────────────
    # PAYEE / LEDGER KEY
    # ─────────────────────────────────────────────

    def ledger_payee_id(self, assignment) -> uuid.UUID:
        raise NotImplementedError

    def line_key(self, assignment) -> str:
        return ""

    def resolve_payee(self, db: Session, assignment) -> Optional[PayeeAccount]:
        raise NotImplementedError

    def amount_cents(self, assignment) -> int:
        return int(assignment.payout_amount_cents or 0)

    # ─────────────────────────────────────────────
    # GATING
    # ─────────────────────────────────────────────

    def preconditions(self, subject, assignment) -> List[str]:
        blockers: List[str] = []
        if subject.job_completed_at is None:
            blockers.append(JOB_NOT_COMPLETED)
        if subject.fully_paid_at is None:
            blockers.append(BOOKING_NOT_PAID)
        return blockers

    def margin_input(self, subject, assignment) -> Optional[MarginCheckInput]:
        return None

    # ─────────────────────────────────────────────
    # TRANSFER
    # ─────────────────────────────────────────────

    def description(self, subject, assignment) -> str:
        return f"Payout for booking {subject.name} ({str(subject.id)[:8]})"

    def metadata(self, subject, assignment) -> Dict[str, str]:
        return {
            "variant": self.name,
            "subject_id": str(subject.id),
            "assignment_id": str(assignment.id),
        }

    # ─────────────────────────────────────────────
    # DENORMALIZATION HOOKS (cache only; the ledger is truth)
    # ─────────────────────────────────────────────

    def on_blocked(self, subject, assignment, blockers: List[str]) -> None:
        pass

    def on_failed(self, subject, assignment, message: str) -> None:
        pass

    def on_paid(self, subject, assignment, *, amount_cents: int, transfer_id: str, paid_at: datetime) -> None:
        pass


class ChefPayoutVariant(PayoutVariant):
    name = PayoutVariantName.chef.value
    subject_type = SubjectType.booking.value
    assignment_model = BookingChef
    subject_model = Booking
    payee_label = "Chef"
    uses_guardrails = True

    def ledger_payee_id(self, assignment) -> uuid.UUID:
        return assignment.chef_id

    def resolve_payee(self, db: Session, assignment) -> Optional[PayeeAccount]:
        chef = db.get(Chef, assignment.chef_id)
        return _account(chef.id, self.payee_label, chef) if chef else None

    def margin_input(self, subject: Booking, assignment) -> Optional[MarginCheckInput]:
        total = subject.quote_total_cents
        if total is None or total <= 0:
            return None

        amount = self.amount_cents(assignment)
        job_value = total - (subject.quote_tax_cents or 0) - (subject.quote_service_fee_cents or 0)
        if job_value <= 0:
            job_value = subject.quote_subtotal_cents or 0

        return MarginCheckInput(
            quote_total_cents=total,
            payout_amount_cents=amount,
            payout_base_cents=subject.chef_payout_base_cents if subject.chef_payout_base_cents is not None else amount,
            payout_bonus_cents=subject.chef_payout_bonus_cents or 0,
            rate_multiplier=subject.chef_rate_multiplier,
            surge_multiplier=subject.surge_multiplier_snapshot,
            job_value_cents=job_value,
            region_code=subject.region_code,
        )

    def on_blocked(self, subject: Booking, assignment, blockers: List[str]) -> None:
        subject.chef_payout_status = SubjectPayoutStatus.blocked.value
        subject.chef_payout_blockers = list(blockers)

    def on_failed(self, subject: Booking, assignment, message: str) -> None:
        subject.chef_payout_status = SubjectPayoutStatus.failed.value
        subject.chef_payout_blockers = [message]

    def on_paid(self, subject: Booking, assignment, *, amount_cents: int, transfer_id: str, paid_at: datetime) -> None:
        subject.chef_payout_status = SubjectPayoutStatus.paid.value
        subject.chef_payout_blockers = []
        subject.chef_payout_amount_cents = amount_cents
        subject.chef_payout_paid_at = paid_at
        subject.stripe_transfer_id = transfer_id
        subject.payout_released_at = paid_at


class FarmerPayoutVariant(PayoutVariant):
    name = PayoutVariantName.farmer.value
    subject_type = SubjectType.booking.value
    assignment_model = BookingFarmer
    subject_model = Booking
    payee_label = "Farmer"

    def ledger_payee_id(self, assignment) -> uuid.UUID:
        return assignment.farmer_id

    def resolve_payee(self, db: Session, assignment) -> Optional[PayeeAccount]:
        farmer = db.get(Farmer, assignment.farmer_id)
        return _account(farmer.id, self.payee_label, farmer) if farmer else None

    def description(self, subject, assignment) -> str:
        return f"Payout for booking {subject.name} ({assignment.role}) - {str(subject.id)[:8]}"


class IngredientPayoutVariant(PayoutVariant):
    name = PayoutVariantName.ingredient.value
    subject_type = SubjectType.booking.value
    assignment_model = BookingIngredient
    subject_model = Booking
    payee_label = "Farmer"

    def ledger_payee_id(self, assignment) -> uuid.UUID:
        return assignment.farmer_id

    def line_key(self, assignment) -> str:
        # one farmer can supply several lines on a booking
        return assignment.ingredient_id

    def resolve_payee(self, db: Session, assignment) -> Optional[PayeeAccount]:
        farmer = db.get(Farmer, assignment.farmer_id)
        return _account(farmer.id, self.payee_label, farmer) if farmer else None

    def amount_cents(self, assignment) -> int:
        return int(assignment.total_cents or 0)

    def preconditions(self, subject, assignment) -> List[str]:
        blockers = super().preconditions(subject, assignment)
        if assignment.fulfillment_status not in PAYABLE_FULFILLMENT:
            blockers.append(INGREDIENT_NOT_DELIVERED)
        return blockers

    def description(self, subject, assignment) -> str:
        return f"Ingredient payout for booking {subject.name} ({assignment.ingredient_id}) - {str(subject.id)[:8]}"

    def on_paid(self, subject, assignment, *, amount_cents: int, transfer_id: str, paid_at: datetime) -> None:
        assignment.fulfillment_status = FulfillmentStatus.paid.value


class CooperativePayoutVariant(PayoutVariant):
    name = PayoutVariantName.cooperative.value
    subject_type = SubjectType.cooperative_period.value
    assignment_model = CooperativePayout
    subject_model = CooperativePeriod
    payee_label = "Cooperative member"

    def subject_id(self, assignment) -> uuid.UUID:
        return assignment.period_id

    def subject_column(self):
        return CooperativePayout.period_id

    def ledger_payee_id(self, assignment) -> uuid.UUID:
        return assignment.member_id

    def resolve_payee(self, db: Session, assignment) -> Optional[PayeeAccount]:
        member = db.get(CooperativeMember, assignment.member_id)
        if member is None:
            return None
        linked = []
        if member.farmer_id is not None:
            linked.append(db.get(Farmer, member.farmer_id))
        if member.chef_id is not None:
            linked.append(db.get(Chef, member.chef_id))
        linked = [row for row in linked if row is not None]
        if not linked:
            return PayeeAccount(
                payee_id=member.id,
                label=self.payee_label,
                stripe_account_id=None,
                connect_status=None,
                payouts_enabled=False,
            )
        # first payable account wins (farmer before chef); otherwise report on the first link
        for row in linked:
            if row.connect_status == ConnectStatus.connected.value and row.payouts_enabled:
                return _account(member.id, self.payee_label, row)
        return _account(member.id, self.payee_label, linked[0])

    def amount_cents(self, assignment) -> int:
        return int(assignment.amount_cents or 0)

    def preconditions(self, subject: CooperativePeriod, assignment) -> List[str]:
        blockers: List[str] = []
        if subject.closed_at is None:
            blockers.append(PERIOD_NOT_CLOSED)
        if subject.funded_at is None:
            blockers.append(PERIOD_NOT_FUNDED)
        return blockers

    def description(self, subject: CooperativePeriod, assignment) -> str:
        return f"Cooperative payout for {subject.period} ({str(assignment.member_id)[:8]})"


VARIANTS: Dict[str, PayoutVariant] = {
    v.name: v
    for v in (
        ChefPayoutVariant(),
        FarmerPayoutVariant(),
        IngredientPayoutVariant(),
        CooperativePayoutVariant(),
    )
}

BOOKING_VARIANTS = tuple(v for v in VARIANTS.values() if v.subject_type == SubjectType.booking.value)
