# payout_engine/api/v1/guardrails.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from payout_engine.db.session import get_db
from payout_engine.schemas.guardrails import GuardrailConfigIn, GuardrailConfigOut, OverrideLogList, OverrideLogOut
from payout_engine.services.margin_guardrails import MarginGuardrailService

router = APIRouter(prefix="/guardrails")


@router.get("/configs", response_model=List[GuardrailConfigOut])
async def list_configs(db: Session = Depends(get_db)):
    return MarginGuardrailService().list_configs(db)


@router.put("/configs", response_model=GuardrailConfigOut)
async def upsert_config(req: GuardrailConfigIn, db: Session = Depends(get_db)):
    try:
        return MarginGuardrailService().upsert_config(
            db,
            region_code=req.region_code,
            min_gross_margin_pct=req.min_gross_margin_pct,
            max_bonus_plus_tier_pct=req.max_bonus_plus_tier_pct,
            max_surge_multiplier=req.max_surge_multiplier,
            min_job_value_cents=req.min_job_value_cents,
            block_or_warn=req.block_or_warn,
            actor_user_id=req.actor_user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/overrides", response_model=OverrideLogList)
async def list_overrides(limit: int = Query(default=100, ge=1, le=1000), db: Session = Depends(get_db)):
    rows = MarginGuardrailService().list_override_logs(db, limit=limit)
    return OverrideLogList(items=[OverrideLogOut.model_validate(r) for r in rows])
