# payout_engine/api/v1/bookings.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from payout_engine.api.v1.payouts import payee_results_out
from payout_engine.core.deps import get_dispatcher
from payout_engine.db.session import get_db
from payout_engine.models.enums import SubjectType
from payout_engine.schemas.payouts import HoldOut, HoldRequest, ReleaseRequest
from payout_engine.services.payout_hold_service import PayoutHoldService
from payout_engine.services.payout_variants import BOOKING_VARIANTS

router = APIRouter(prefix="/bookings")


def _hold_out(subject, released: int = 0, payouts=None) -> HoldOut:
    return HoldOut(
        subject_id=subject.id,
        payout_hold=subject.payout_hold,
        payout_hold_reason=subject.payout_hold_reason,
        payout_released_at=subject.payout_released_at,
        assignments_released=released,
        payouts=payouts or [],
    )


@router.post("/{booking_id}/payout-hold", response_model=HoldOut)
async def set_payout_hold(
    booking_id: uuid.UUID,
    req: HoldRequest,
    db: Session = Depends(get_db),
):
    try:
        booking = PayoutHoldService().set_hold(
            db,
            subject_type=SubjectType.booking.value,
            subject_id=booking_id,
            reason=req.reason,
            actor_user_id=req.actor_user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _hold_out(booking)


@router.post("/{booking_id}/release-payout", response_model=HoldOut)
def release_payout(
    booking_id: uuid.UUID,
    request: Request,
    req: Optional[ReleaseRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Release the hold, then attempt every pending payout on the booking.
    """
    try:
        booking, released = PayoutHoldService().release_hold(
            db,
            subject_type=SubjectType.booking.value,
            subject_id=booking_id,
            actor_user_id=req.actor_user_id if req else None,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    results = []
    for variant in BOOKING_VARIANTS:
        results.extend(get_dispatcher(request, variant.name).try_payouts_for_subject(booking_id))

    db.refresh(booking)
    return _hold_out(booking, released, payee_results_out(results))
