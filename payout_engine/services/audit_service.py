from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from payout_engine.core.hashing import details_hash
from payout_engine.models.audit_log import AuditLog


class AuditAction:
    # Margin guardrails
    MARGIN_OVERRIDE_BLOCK = "margin_override_block"
    MARGIN_WARN_PROCEED = "margin_warn_proceed"
    MARGIN_CONFIG_UPSERTED = "margin_config_upserted"

    # Holds
    PAYOUT_HOLD_SET = "payout_hold_set"
    PAYOUT_HOLD_RELEASED = "payout_hold_released"

    # Cooperative
    SHARES_RECALCULATED = "shares_recalculated"
    IMPACT_SCORES_RECALCULATED = "impact_scores_recalculated"
    DISTRIBUTION_PREPARED = "distribution_prepared"


class AuditService:
    def write(
        self,
        db: Session,
        *,
        subject_type: str,
        subject_id: Optional[uuid.UUID],
        actor_user_id: Optional[str],
        action: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> AuditLog:
        """
        Append-only insert. commit=False lets the caller fold the entry into
        its own transaction.
        """
        details = details or {}
        row = AuditLog(
            subject_type=subject_type,
            subject_id=subject_id,
            actor_user_id=actor_user_id,
            action=action,
            reason=reason,
            details_json=details,
            details_hash=details_hash(details),
        )
        db.add(row)
        if commit:
            db.commit()
            db.refresh(row)
        else:
            db.flush()
        return row

    def list_entries(
        self,
        db: Session,
        *,
        actions: Optional[List[str]] = None,
        subject_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        stmt = select(AuditLog)
        if actions:
            stmt = stmt.where(AuditLog.action.in_(actions))
        if subject_id is not None:
            stmt = stmt.where(AuditLog.subject_id == subject_id)
        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id).limit(limit)
        return list(db.execute(stmt).scalars().all())
