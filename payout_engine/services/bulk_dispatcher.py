from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from payout_engine.models.enums import AssignmentStatus
from payout_engine.services.payout_orchestrator import PayoutOrchestrator, PayoutOutcome, PayoutResult

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_STATUSES = (
    AssignmentStatus.pending.value,
    AssignmentStatus.on_hold.value,
    AssignmentStatus.failed.value,
)


@dataclass
class PayeePayoutResult:
    assignment_id: uuid.UUID
    result: PayoutResult


class BulkDispatcher:
    """
    Runs the orchestrator for many assignments in parallel.

    Each task gets its own Session from session_factory, so one payee's
    failure never rolls back another payee's settlement.
    """

    def __init__(
        self,
        orchestrator: PayoutOrchestrator,
        session_factory: Callable[[], Session],
        *,
        max_workers: int = 8,
    ):
        self.orchestrator = orchestrator
        self.session_factory = session_factory
        self.max_workers = max(1, max_workers)

    def _assignment_ids(
        self,
        *,
        subject_id: Optional[uuid.UUID],
        statuses: Sequence[str],
        limit: Optional[int] = None,
    ) -> List[uuid.UUID]:
        stmt = self.orchestrator.variant.select_assignments(subject_id=subject_id, statuses=statuses)
        if limit is not None:
            stmt = stmt.limit(limit)
        db = self.session_factory()
        try:
            return list(db.execute(stmt).scalars().all())
        finally:
            db.close()

    def _run_one(self, assignment_id: uuid.UUID) -> PayeePayoutResult:
        db = self.session_factory()
        try:
            result = self.orchestrator.try_payout(db, assignment_id)
        except Exception as exc:
            # try_payout already converts errors; this covers session setup failures
            logger.exception("[dispatch] assignment %s crashed", assignment_id)
            result = PayoutResult(PayoutOutcome.ERROR, success=False, error=str(exc), retryable=True)
        finally:
            db.close()
        return PayeePayoutResult(assignment_id=assignment_id, result=result)

    def run(self, assignment_ids: Sequence[uuid.UUID]) -> List[PayeePayoutResult]:
        if not assignment_ids:
            return []
        workers = min(self.max_workers, len(assignment_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payout") as pool:
            # map keeps input order
            return list(pool.map(self._run_one, assignment_ids))

    def try_payouts_for_subject(
        self,
        subject_id: uuid.UUID,
        *,
        statuses: Sequence[str] = (AssignmentStatus.pending.value,),
    ) -> List[PayeePayoutResult]:
        ids = self._assignment_ids(subject_id=subject_id, statuses=statuses)
        results = self.run(ids)
        settled = sum(1 for r in results if r.result.outcome == PayoutOutcome.SETTLED)
        logger.info(
            "[dispatch] subject=%s variant=%s assignments=%d settled=%d",
            subject_id, self.orchestrator.variant.name, len(results), settled,
        )
        return results

    def sweep(
        self,
        *,
        statuses: Sequence[str] = DEFAULT_SWEEP_STATUSES,
        limit: Optional[int] = None,
    ) -> List[PayeePayoutResult]:
        """Retry pass over every subject of this variant (scheduler entry point)."""
        ids = self._assignment_ids(subject_id=None, statuses=statuses, limit=limit)
        results = self.run(ids)
        logger.info(
            "[dispatch] sweep variant=%s assignments=%d",
            self.orchestrator.variant.name, len(results),
        )
        return results
