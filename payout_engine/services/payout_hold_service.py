from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from payout_engine.models.booking import Booking
from payout_engine.models.cooperative import CooperativePeriod
from payout_engine.models.enums import AssignmentStatus, SubjectType
from payout_engine.services.audit_service import AuditAction, AuditService
from payout_engine.services.payout_variants import VARIANTS


def _now():
    return datetime.now(timezone.utc)


SUBJECT_MODELS = {
    SubjectType.booking.value: Booking,
    SubjectType.cooperative_period.value: CooperativePeriod,
}


class PayoutHoldService:
    """
    Manual admin hold on a whole subject. A held subject never pays out,
    whatever its assignments look like.
    """

    def __init__(self, audit: Optional[AuditService] = None):
        self.audit = audit or AuditService()

    def _subject(self, db: Session, subject_type: str, subject_id: uuid.UUID):
        model = SUBJECT_MODELS.get(subject_type)
        if model is None:
            raise ValueError(f"Unknown subject type: {subject_type}")
        row = db.get(model, subject_id)
        if not row:
            raise ValueError(f"{subject_type} not found")
        return row

    def set_hold(
        self,
        db: Session,
        *,
        subject_type: str,
        subject_id: uuid.UUID,
        reason: Optional[str],
        actor_user_id: Optional[str],
    ):
        subject = self._subject(db, subject_type, subject_id)
        subject.payout_hold = True
        subject.payout_hold_reason = (reason or "").strip() or None

        self.audit.write(
            db,
            subject_type=subject_type,
            subject_id=subject_id,
            actor_user_id=actor_user_id,
            action=AuditAction.PAYOUT_HOLD_SET,
            reason=subject.payout_hold_reason,
            commit=False,
        )
        db.commit()
        db.refresh(subject)
        return subject

    def release_hold(
        self,
        db: Session,
        *,
        subject_type: str,
        subject_id: uuid.UUID,
        actor_user_id: Optional[str],
    ) -> Tuple[object, int]:
        """
        Clear the hold and put on_hold assignments back to pending.
        Returns (subject, assignments_released).
        """
        subject = self._subject(db, subject_type, subject_id)
        now = _now()
        subject.payout_hold = False
        subject.payout_hold_reason = None
        subject.payout_released_at = now

        released = 0
        for variant in VARIANTS.values():
            if variant.subject_type != subject_type:
                continue
            model = variant.assignment_model
            result = db.execute(
                update(model)
                .where(
                    variant.subject_column() == subject_id,
                    model.payout_status == AssignmentStatus.on_hold.value,
                )
                .values(payout_status=AssignmentStatus.pending.value)
                .execution_options(synchronize_session=False)
            )
            released += result.rowcount or 0

        self.audit.write(
            db,
            subject_type=subject_type,
            subject_id=subject_id,
            actor_user_id=actor_user_id,
            action=AuditAction.PAYOUT_HOLD_RELEASED,
            details={"assignments_released": released},
            commit=False,
        )
        db.commit()
        db.refresh(subject)
        return subject, released
