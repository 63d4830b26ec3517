# payout_engine/api/v1/payouts.py
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from payout_engine.core.deps import get_dispatcher, get_orchestrator
from payout_engine.db.session import get_db
from payout_engine.schemas.payouts import (
    LedgerEntryOut,
    PayeePayoutResultOut,
    PayoutResultOut,
    PayoutRunRequest,
    SweepRequest,
)
from payout_engine.services.bulk_dispatcher import DEFAULT_SWEEP_STATUSES, PayeePayoutResult
from payout_engine.services.payout_ledger import PayoutLedgerService
from payout_engine.services.payout_orchestrator import MarginOverride, PayoutResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts")


def result_out(r: PayoutResult) -> PayoutResultOut:
    return PayoutResultOut(**r.to_dict())


def payee_results_out(results: List[PayeePayoutResult]) -> List[PayeePayoutResultOut]:
    return [PayeePayoutResultOut(assignment_id=r.assignment_id, result=result_out(r.result)) for r in results]


# ─────────────────────────────────────────────────────────────
# LEDGER (read-only)
# ─────────────────────────────────────────────────────────────

@router.get("/ledger", response_model=List[LedgerEntryOut])
async def list_ledger(
    variant: Optional[str] = None,
    subject_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return PayoutLedgerService().list_entries(db, variant=variant, subject_id=subject_id, status=status)


# ─────────────────────────────────────────────────────────────
# RUN
# Plain def: these block on the rail, so FastAPI runs them in its threadpool.
# ─────────────────────────────────────────────────────────────

@router.post("/{variant}/assignments/{assignment_id}/run", response_model=PayoutResultOut)
def run_assignment_payout(
    variant: str,
    assignment_id: uuid.UUID,
    request: Request,
    req: Optional[PayoutRunRequest] = None,
    db: Session = Depends(get_db),
):
    orchestrator = get_orchestrator(request, variant)
    override = None
    if req is not None and req.override is not None:
        override = MarginOverride(user_id=req.override.user_id, reason=req.override.reason)

    result = orchestrator.try_payout(db, assignment_id, override=override)
    logger.info(
        "[payouts] run variant=%s assignment=%s outcome=%s request_id=%s",
        variant, assignment_id, result.outcome.value, getattr(request.state, "request_id", None),
    )
    return result_out(result)


@router.post("/{variant}/subjects/{subject_id}/run", response_model=List[PayeePayoutResultOut])
def run_subject_payouts(variant: str, subject_id: uuid.UUID, request: Request):
    dispatcher = get_dispatcher(request, variant)
    return payee_results_out(dispatcher.try_payouts_for_subject(subject_id))


@router.post("/{variant}/sweep", response_model=List[PayeePayoutResultOut])
def sweep_payouts(variant: str, request: Request, req: Optional[SweepRequest] = None):
    dispatcher = get_dispatcher(request, variant)
    statuses = tuple(req.statuses) if req and req.statuses else DEFAULT_SWEEP_STATUSES
    limit = req.limit if req else None
    return payee_results_out(dispatcher.sweep(statuses=statuses, limit=limit))
