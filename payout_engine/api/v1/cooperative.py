# payout_engine/api/v1/cooperative.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from payout_engine.api.v1.payouts import payee_results_out
from payout_engine.core.deps import get_dispatcher
from payout_engine.db.session import get_db
from payout_engine.models.enums import PayoutVariantName
from payout_engine.schemas.cooperative import (
    CooperativePayoutOut,
    DistributeRequest,
    DistributionOut,
    ImpactRecalculationOut,
    PeriodCreate,
    PeriodOut,
    ShareCalculationOut,
    ShareCalculationRequest,
)
from payout_engine.services.cooperative_service import CooperativeService

router = APIRouter(prefix="/cooperative")


def _status_for(e: ValueError) -> int:
    return 404 if "not found" in str(e).lower() else 409


@router.post("/shares/calculate", response_model=ShareCalculationOut)
async def calculate_shares(
    req: Optional[ShareCalculationRequest] = None,
    db: Session = Depends(get_db),
):
    calc = CooperativeService().calculate_payout_shares(db, actor_user_id=req.actor_user_id if req else None)
    return ShareCalculationOut(
        shares_calculated=calc.shares_calculated,
        total_impact_score=calc.total_impact_score,
        shares={str(k): v for k, v in calc.shares.items()},
    )


@router.post("/impact-scores/recalculate", response_model=ImpactRecalculationOut)
async def recalculate_impact_scores(
    req: Optional[ShareCalculationRequest] = None,
    db: Session = Depends(get_db),
):
    calc = CooperativeService().recalculate_impact_scores(db, actor_user_id=req.actor_user_id if req else None)
    return ImpactRecalculationOut(
        members_updated=calc.members_updated,
        scores={str(k): v for k, v in calc.scores.items()},
        breakdowns={str(k): v for k, v in calc.breakdowns.items()},
    )


@router.post("/periods", response_model=PeriodOut, status_code=201)
async def create_period(req: PeriodCreate, db: Session = Depends(get_db)):
    try:
        return CooperativeService().create_period(
            db,
            period=req.period,
            period_type=req.period_type,
            total_profit_cents=req.total_profit_cents,
        )
    except ValueError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e))


@router.post("/periods/{period_id}/close", response_model=PeriodOut)
async def close_period(period_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return CooperativeService().close_period(db, period_id=period_id)
    except ValueError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e))


@router.post("/periods/{period_id}/funded", response_model=PeriodOut)
async def mark_period_funded(period_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return CooperativeService().mark_funded(db, period_id=period_id)
    except ValueError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e))


@router.post("/periods/{period_id}/distribute", response_model=DistributionOut)
def distribute_period(
    period_id: uuid.UUID,
    request: Request,
    req: Optional[DistributeRequest] = None,
    db: Session = Depends(get_db),
):
    req = req or DistributeRequest()
    try:
        created = CooperativeService().prepare_distribution(db, period_id=period_id, actor_user_id=req.actor_user_id)
    except ValueError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e))

    payouts = [CooperativePayoutOut.model_validate(row) for row in created]
    results = []
    if req.dispatch:
        dispatcher = get_dispatcher(request, PayoutVariantName.cooperative.value)
        results = payee_results_out(dispatcher.try_payouts_for_subject(period_id))

    return DistributionOut(period_id=period_id, payouts_created=payouts, results=results)
