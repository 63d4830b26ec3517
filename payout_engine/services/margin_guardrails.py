from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from payout_engine.models.audit_log import AuditLog
from payout_engine.models.margin_guardrail import MarginGuardrailConfig
from payout_engine.services.audit_service import AuditAction, AuditService


@dataclass(frozen=True)
class MarginCheckInput:
    quote_total_cents: int
    payout_amount_cents: int
    payout_base_cents: int  # after tier multiplier
    payout_bonus_cents: int
    rate_multiplier: Optional[float]
    surge_multiplier: Optional[float]
    job_value_cents: int
    region_code: Optional[str]


@dataclass(frozen=True)
class MarginCheckResult:
    passed: bool
    block_or_warn: bool  # True = block on failure, False = warn
    gross_margin_pct: float
    bonus_plus_tier_pct: float
    fail_reasons: List[str] = field(default_factory=list)

    @property
    def message(self) -> Optional[str]:
        return "; ".join(self.fail_reasons) if self.fail_reasons else None


def normalize_region(region_code: Optional[str]) -> Optional[str]:
    code = (region_code or "").strip().upper()
    return code or None


def _fmt_pct(value: float) -> str:
    return f"{value:g}"


def check_margin(data: MarginCheckInput, config: Optional[MarginGuardrailConfig]) -> MarginCheckResult:
    """
    Pure margin evaluation against a resolved config. No config means pass.
    """
    total = data.quote_total_cents
    gross_margin_pct = ((total - data.payout_amount_cents) / total) * 100 if total > 0 else 0.0

    if config is None:
        return MarginCheckResult(
            passed=True,
            block_or_warn=True,
            gross_margin_pct=gross_margin_pct,
            bonus_plus_tier_pct=0.0,
        )

    reasons: List[str] = []

    if gross_margin_pct < config.min_gross_margin_pct:
        reasons.append(
            f"Gross margin {gross_margin_pct:.1f}% is below minimum {_fmt_pct(config.min_gross_margin_pct)}%"
        )

    # Tier uplift is what the rate multiplier added on top of the untiered base
    multiplier = data.rate_multiplier if data.rate_multiplier is not None else 1.0
    base = data.payout_base_cents
    base_before_tier = int(round(base / multiplier)) if multiplier > 0 else base
    tier_uplift_cents = base - base_before_tier
    bonus_plus_tier_cents = tier_uplift_cents + data.payout_bonus_cents
    bonus_plus_tier_pct = (bonus_plus_tier_cents / total) * 100 if total > 0 else 0.0
    if bonus_plus_tier_pct > config.max_bonus_plus_tier_pct:
        reasons.append(
            f"Bonus + tier uplift {bonus_plus_tier_pct:.1f}% exceeds max {_fmt_pct(config.max_bonus_plus_tier_pct)}%"
        )

    if (
        config.max_surge_multiplier is not None
        and data.surge_multiplier is not None
        and data.surge_multiplier > config.max_surge_multiplier
    ):
        reasons.append(
            f"Surge multiplier {_fmt_pct(data.surge_multiplier)} exceeds region cap {_fmt_pct(config.max_surge_multiplier)}"
        )

    if config.min_job_value_cents is not None and data.job_value_cents < config.min_job_value_cents:
        reasons.append(
            f"Job value {data.job_value_cents}¢ is below minimum {config.min_job_value_cents}¢"
        )

    return MarginCheckResult(
        passed=not reasons,
        block_or_warn=config.block_or_warn,
        gross_margin_pct=gross_margin_pct,
        bonus_plus_tier_pct=bonus_plus_tier_pct,
        fail_reasons=reasons,
    )


class MarginGuardrailService:
    """
    Regional margin policy: config lookup, evaluation and override audit.
    """

    OVERRIDE_ACTIONS = (AuditAction.MARGIN_OVERRIDE_BLOCK, AuditAction.MARGIN_WARN_PROCEED)

    def __init__(self, audit: Optional[AuditService] = None):
        self.audit = audit or AuditService()

    def _config_for(self, db: Session, region_code: Optional[str]) -> Optional[MarginGuardrailConfig]:
        if region_code is None:
            stmt = select(MarginGuardrailConfig).where(MarginGuardrailConfig.region_code.is_(None))
        else:
            stmt = select(MarginGuardrailConfig).where(MarginGuardrailConfig.region_code == region_code)
        return db.execute(stmt.limit(1)).scalar_one_or_none()

    def get_config(self, db: Session, region_code: Optional[str]) -> Optional[MarginGuardrailConfig]:
        """Region-specific row first, then the global row (region_code NULL)."""
        code = normalize_region(region_code)
        if code:
            row = self._config_for(db, code)
            if row is not None:
                return row
        return self._config_for(db, None)

    def evaluate(self, db: Session, data: MarginCheckInput) -> MarginCheckResult:
        return check_margin(data, self.get_config(db, data.region_code))

    def list_configs(self, db: Session) -> List[MarginGuardrailConfig]:
        rows = db.execute(select(MarginGuardrailConfig)).scalars().all()
        # global first, then by region
        return sorted(rows, key=lambda r: (r.region_code is not None, r.region_code or ""))

    def upsert_config(
        self,
        db: Session,
        *,
        region_code: Optional[str],
        min_gross_margin_pct: float,
        max_bonus_plus_tier_pct: float,
        max_surge_multiplier: Optional[float] = None,
        min_job_value_cents: Optional[int] = None,
        block_or_warn: bool = True,
        actor_user_id: Optional[str] = None,
    ) -> MarginGuardrailConfig:
        if min_gross_margin_pct < 0 or min_gross_margin_pct > 100:
            raise ValueError("min_gross_margin_pct must be between 0 and 100")
        if max_bonus_plus_tier_pct < 0:
            raise ValueError("max_bonus_plus_tier_pct must be non-negative")

        code = normalize_region(region_code)
        row = self._config_for(db, code)
        if row is None:
            row = MarginGuardrailConfig(region_code=code)
            db.add(row)

        row.min_gross_margin_pct = min_gross_margin_pct
        row.max_bonus_plus_tier_pct = max_bonus_plus_tier_pct
        row.max_surge_multiplier = max_surge_multiplier
        row.min_job_value_cents = min_job_value_cents
        row.block_or_warn = block_or_warn
        db.flush()

        self.audit.write(
            db,
            subject_type="margin_guardrail_config",
            subject_id=row.id,
            actor_user_id=actor_user_id,
            action=AuditAction.MARGIN_CONFIG_UPSERTED,
            details={
                "region_code": code,
                "min_gross_margin_pct": min_gross_margin_pct,
                "max_bonus_plus_tier_pct": max_bonus_plus_tier_pct,
                "max_surge_multiplier": max_surge_multiplier,
                "min_job_value_cents": min_job_value_cents,
                "block_or_warn": block_or_warn,
            },
            commit=False,
        )
        db.commit()
        db.refresh(row)
        return row

    def log_override(
        self,
        db: Session,
        *,
        subject_type: str,
        subject_id: uuid.UUID,
        user_id: Optional[str],
        action: str,
        reason: Optional[str] = None,
        result: Optional[MarginCheckResult] = None,
    ) -> AuditLog:
        details = {}
        if result is not None:
            details = {
                "gross_margin_pct": round(result.gross_margin_pct, 4),
                "bonus_plus_tier_pct": round(result.bonus_plus_tier_pct, 4),
                "fail_reasons": list(result.fail_reasons),
            }
        return self.audit.write(
            db,
            subject_type=subject_type,
            subject_id=subject_id,
            actor_user_id=user_id,
            action=action,
            reason=reason,
            details=details,
        )

    def list_override_logs(self, db: Session, *, limit: int = 100) -> List[AuditLog]:
        return self.audit.list_entries(db, actions=list(self.OVERRIDE_ACTIONS), limit=limit)
