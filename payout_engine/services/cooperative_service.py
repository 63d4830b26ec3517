from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payout_engine.models.assignments import BookingChef, BookingFarmer, BookingIngredient
from payout_engine.models.cooperative import CooperativeMember, CooperativePayout, CooperativePeriod
from payout_engine.models.enums import AssignmentStatus, MemberStatus, PeriodType, SubjectType
from payout_engine.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
SHARE_QUANTUM = Decimal("0.0001")


def _now():
    return datetime.now(timezone.utc)


@dataclass
class ShareCalculation:
    shares_calculated: int
    total_impact_score: float
    shares: Dict[uuid.UUID, Decimal] = field(default_factory=dict)


def compute_shares(scores: Sequence[Tuple[uuid.UUID, float]]) -> Dict[uuid.UUID, Decimal]:
    """
    Impact-weighted shares in percent, 4 dp, summing to exactly 100.

    All-zero scores split equally. The rounding residual goes to the
    largest share (first one on ties) so the total never drifts.
    """
    if not scores:
        return {}

    weights = [(member_id, Decimal(str(max(score or 0.0, 0.0)))) for member_id, score in scores]
    total = sum((w for _, w in weights), Decimal("0"))

    if total == 0:
        raw = {member_id: HUNDRED / len(weights) for member_id, _ in weights}
    else:
        raw = {member_id: w / total * HUNDRED for member_id, w in weights}

    shares = {member_id: value.quantize(SHARE_QUANTUM, rounding=ROUND_HALF_UP) for member_id, value in raw.items()}
    residual = HUNDRED - sum(shares.values(), Decimal("0"))
    if residual:
        largest = max(weights, key=lambda mw: shares[mw[0]])[0]
        shares[largest] += residual
    return shares


def allocate_cents(total_cents: int, shares: Dict[uuid.UUID, Decimal]) -> Dict[uuid.UUID, int]:
    """
    Largest-remainder allocation: rows sum to total_cents exactly.
    """
    if not shares or total_cents <= 0:
        return {member_id: 0 for member_id in shares}

    exact = {member_id: Decimal(total_cents) * share / HUNDRED for member_id, share in shares.items()}
    floored = {member_id: int(value.to_integral_value(rounding=ROUND_FLOOR)) for member_id, value in exact.items()}
    remaining = total_cents - sum(floored.values())

    order = sorted(exact, key=lambda m: (exact[m] - floored[m], shares[m]), reverse=True)
    for member_id in order[:max(remaining, 0)]:
        floored[member_id] += 1
    return floored


# points per paid contribution; certifications, training and impact events are not tracked here
INGREDIENT_POINTS = 10
FARMER_ASSIGNMENT_POINTS = 20
CHEF_ASSIGNMENT_POINTS = 30
MAX_IMPACT_SCORE = 1000


@dataclass
class ImpactRecalculation:
    members_updated: int
    scores: Dict[uuid.UUID, float] = field(default_factory=dict)
    breakdowns: Dict[uuid.UUID, Dict[str, int]] = field(default_factory=dict)


def _count_paid(db: Session, model, column, value) -> int:
    stmt = select(func.count()).select_from(model).where(
        column == value,
        model.payout_status == AssignmentStatus.paid.value,
    )
    return int(db.execute(stmt).scalar_one())


def compute_member_impact_score(db: Session, member: CooperativeMember) -> Tuple[int, Dict[str, int]]:
    """
    Score from settled payouts of the member's linked farmer and chef, capped at 1000.
    Inactive members score 0.
    """
    if member.status != MemberStatus.active.value:
        return 0, {}

    breakdown: Dict[str, int] = {}
    if member.farmer_id is not None:
        breakdown["ingredients_sourced"] = INGREDIENT_POINTS * _count_paid(
            db, BookingIngredient, BookingIngredient.farmer_id, member.farmer_id
        )
        breakdown["farmer_assignments"] = FARMER_ASSIGNMENT_POINTS * _count_paid(
            db, BookingFarmer, BookingFarmer.farmer_id, member.farmer_id
        )
    if member.chef_id is not None:
        breakdown["chef_bookings"] = CHEF_ASSIGNMENT_POINTS * _count_paid(
            db, BookingChef, BookingChef.chef_id, member.chef_id
        )
    return min(sum(breakdown.values()), MAX_IMPACT_SCORE), breakdown


class CooperativeService:
    def __init__(self, audit: Optional[AuditService] = None):
        self.audit = audit or AuditService()

    # ─────────────────────────────────────────────
    # SHARES
    # ─────────────────────────────────────────────

    def calculate_payout_shares(self, db: Session, *, actor_user_id: Optional[str] = None) -> ShareCalculation:
        members = db.execute(select(CooperativeMember).order_by(CooperativeMember.id)).scalars().all()
        active = [m for m in members if m.status == MemberStatus.active.value]

        shares = compute_shares([(m.id, m.impact_score) for m in active])
        for m in members:
            m.payout_share_percent = shares.get(m.id, Decimal("0"))

        total_impact = float(sum(max(m.impact_score or 0.0, 0.0) for m in active))

        self.audit.write(
            db,
            subject_type="cooperative",
            subject_id=None,
            actor_user_id=actor_user_id,
            action=AuditAction.SHARES_RECALCULATED,
            details={
                "shares_calculated": len(active),
                "total_impact_score": total_impact,
                "shares": {str(k): str(v) for k, v in shares.items()},
            },
            commit=False,
        )
        db.commit()

        logger.info("[cooperative] shares recalculated members=%d total_impact=%s", len(active), total_impact)
        return ShareCalculation(
            shares_calculated=len(active),
            total_impact_score=total_impact,
            shares=shares,
        )

    def recalculate_impact_scores(self, db: Session, *, actor_user_id: Optional[str] = None) -> ImpactRecalculation:
        """Rescore every member from paid history. Shares are not touched; run calculate_payout_shares after."""
        members = db.execute(select(CooperativeMember).order_by(CooperativeMember.id)).scalars().all()

        result = ImpactRecalculation(members_updated=0)
        for m in members:
            score, breakdown = compute_member_impact_score(db, m)
            if m.impact_score != score:
                m.impact_score = float(score)
                result.members_updated += 1
            result.scores[m.id] = float(score)
            result.breakdowns[m.id] = breakdown

        self.audit.write(
            db,
            subject_type="cooperative",
            subject_id=None,
            actor_user_id=actor_user_id,
            action=AuditAction.IMPACT_SCORES_RECALCULATED,
            details={
                "members_updated": result.members_updated,
                "scores": {str(k): v for k, v in result.scores.items()},
            },
            commit=False,
        )
        db.commit()

        logger.info("[cooperative] impact scores recalculated members=%d updated=%d", len(members), result.members_updated)
        return result

    # ─────────────────────────────────────────────
    # PERIODS
    # ─────────────────────────────────────────────

    def get_period(self, db: Session, *, period_id: uuid.UUID) -> CooperativePeriod:
        row = db.get(CooperativePeriod, period_id)
        if not row:
            raise ValueError("Cooperative period not found")
        return row

    def create_period(
        self,
        db: Session,
        *,
        period: str,
        period_type: str,
        total_profit_cents: int,
    ) -> CooperativePeriod:
        if period_type not in {p.value for p in PeriodType}:
            raise ValueError(f"Invalid period_type: {period_type}")
        if total_profit_cents < 0:
            raise ValueError("total_profit_cents must be non-negative")

        existing = db.execute(
            select(CooperativePeriod).where(CooperativePeriod.period == period)
        ).scalar_one_or_none()
        if existing:
            raise ValueError(f"Cooperative period {period} already exists")

        row = CooperativePeriod(
            period=period,
            period_type=period_type,
            total_profit_cents=total_profit_cents,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    def close_period(self, db: Session, *, period_id: uuid.UUID) -> CooperativePeriod:
        row = self.get_period(db, period_id=period_id)
        if row.closed_at is None:
            row.closed_at = _now()
            db.commit()
            db.refresh(row)
        return row

    def mark_funded(self, db: Session, *, period_id: uuid.UUID) -> CooperativePeriod:
        row = self.get_period(db, period_id=period_id)
        if row.funded_at is None:
            row.funded_at = _now()
            db.commit()
            db.refresh(row)
        return row

    # ─────────────────────────────────────────────
    # DISTRIBUTION
    # ─────────────────────────────────────────────

    def prepare_distribution(
        self,
        db: Session,
        *,
        period_id: uuid.UUID,
        actor_user_id: Optional[str] = None,
    ) -> List[CooperativePayout]:
        """
        Recalculate shares, then create one payout row per active member with
        a positive share. Rows already present for the period are kept as-is
        (their amounts may already be in the ledger).
        """
        period = self.get_period(db, period_id=period_id)
        calc = self.calculate_payout_shares(db, actor_user_id=actor_user_id)

        positive = {m: s for m, s in calc.shares.items() if s > 0}
        amounts = allocate_cents(period.total_profit_cents, positive)

        existing = set(
            db.execute(
                select(CooperativePayout.member_id).where(CooperativePayout.period_id == period.id)
            ).scalars().all()
        )

        members = {
            m.id: m
            for m in db.execute(
                select(CooperativeMember).where(CooperativeMember.id.in_(list(positive)))
            ).scalars().all()
        } if positive else {}

        created: List[CooperativePayout] = []
        for member_id in sorted(positive):
            if member_id in existing:
                continue
            member = members[member_id]
            row = CooperativePayout(
                period_id=period.id,
                member_id=member_id,
                amount_cents=amounts[member_id],
                impact_score=member.impact_score,
                payout_share_percent=positive[member_id],
                total_cooperative_profit_cents=period.total_profit_cents,
            )
            db.add(row)
            created.append(row)

        self.audit.write(
            db,
            subject_type=SubjectType.cooperative_period.value,
            subject_id=period.id,
            actor_user_id=actor_user_id,
            action=AuditAction.DISTRIBUTION_PREPARED,
            details={
                "period": period.period,
                "total_profit_cents": period.total_profit_cents,
                "payouts_created": len(created),
            },
            commit=False,
        )
        db.commit()
        for row in created:
            db.refresh(row)

        logger.info("[cooperative] period %s: %d payout rows created", period.period, len(created))
        return created
