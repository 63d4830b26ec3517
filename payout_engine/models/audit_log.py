# payout_engine/models/audit_log.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Uuid, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.db.base import Base
from payout_engine.models.column_types import JSONType


class AuditLog(Base):
    """
    Append-only audit trail (never UPDATE).
    Margin overrides, payout holds/releases and share recalculations land here.
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    subject_type: Mapped[str] = mapped_column(String(32), nullable=False)
    subject_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    actor_user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    details_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    details_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        Index("ix_audit_subject", "subject_type", "subject_id"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_created", "created_at"),
    )
