"""
Payout orchestrator: one idempotent state machine shared by every variant.

Safe to call any number of times, concurrently, for the same assignment.
At most one rail transfer is ever created per ledger entry.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payout_engine.core.config import Settings
from payout_engine.models.enums import AssignmentStatus, LedgerStatus
from payout_engine.models.payout_ledger import PayoutLedgerEntry
from payout_engine.services.audit_service import AuditAction
from payout_engine.services.eligibility import EligibilityResolver, PayeeAccount
from payout_engine.services.margin_guardrails import MarginGuardrailService
from payout_engine.services.payment_rail import PaymentRailClient, RailError, RailUnavailable, TransferCreated
from payout_engine.services.payout_ledger import PayoutLedgerService
from payout_engine.services.payout_variants import VARIANTS, PayoutVariant

logger = logging.getLogger(__name__)

ALREADY_COMPLETED = "Payout already completed"


def _now():
    return datetime.now(timezone.utc)


class PayoutOutcome(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_PAID = "already_paid"
    ON_HOLD = "on_hold"
    PRECONDITIONS_UNMET = "preconditions_unmet"
    BLOCKED = "blocked"
    INVALID_AMOUNT = "invalid_amount"
    IN_PROGRESS = "in_progress"
    LEDGER_ERROR = "ledger_error"
    TRANSFER_FAILED = "transfer_failed"
    SETTLED = "settled"
    ERROR = "error"


@dataclass
class PayoutResult:
    outcome: PayoutOutcome
    success: bool
    payout_created: bool = False
    payout_id: Optional[uuid.UUID] = None
    transfer_id: Optional[str] = None
    blockers: List[str] = field(default_factory=list)
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["outcome"] = self.outcome.value
        d["payout_id"] = str(self.payout_id) if self.payout_id else None
        return d


@dataclass(frozen=True)
class MarginOverride:
    user_id: str
    reason: Optional[str] = None


class PayoutOrchestrator:
    def __init__(
        self,
        *,
        variant: PayoutVariant,
        rail: PaymentRailClient,
        ledger: PayoutLedgerService,
        guardrails: MarginGuardrailService,
        eligibility: EligibilityResolver,
    ):
        self.variant = variant
        self.rail = rail
        self.ledger = ledger
        self.guardrails = guardrails
        self.eligibility = eligibility

    # ─────────────────────────────────────────────
    # PUBLIC API
    # ─────────────────────────────────────────────

    def try_payout(
        self,
        db: Session,
        assignment_id: uuid.UUID,
        *,
        override: Optional[MarginOverride] = None,
    ) -> PayoutResult:
        """
        Never raises: every path ends in a PayoutResult.
        """
        try:
            return self._run(db, assignment_id, override)
        except Exception as exc:
            logger.exception(
                "[payout] unexpected error variant=%s assignment=%s",
                self.variant.name, assignment_id,
            )
            db.rollback()
            return PayoutResult(PayoutOutcome.ERROR, success=False, error=str(exc) or exc.__class__.__name__, retryable=True)

    # ─────────────────────────────────────────────
    # STATE MACHINE
    # ─────────────────────────────────────────────

    def _run(self, db: Session, assignment_id: uuid.UUID, override: Optional[MarginOverride]) -> PayoutResult:
        variant = self.variant

        assignment = variant.load_assignment(db, assignment_id)
        if assignment is None:
            return PayoutResult(PayoutOutcome.NOT_FOUND, success=False, error="Assignment not found")
        subject = variant.load_subject(db, assignment)
        if subject is None:
            return PayoutResult(PayoutOutcome.NOT_FOUND, success=False, error="Payout subject not found")

        settled = self.check_already_settled(db, assignment, subject)
        if settled is not None:
            return settled

        hold = self.check_hold(subject)
        if hold is not None:
            return hold

        blockers = variant.preconditions(subject, assignment)
        if blockers:
            return PayoutResult(PayoutOutcome.PRECONDITIONS_UNMET, success=True, blockers=blockers)

        payee = variant.resolve_payee(db, assignment)
        blockers = self.check_eligibility(payee)
        if blockers:
            return self._block(db, assignment, subject, blockers)

        blockers = self.check_guardrails(db, assignment, subject, override)
        if blockers:
            return self._block(db, assignment, subject, blockers)

        amount_cents = variant.amount_cents(assignment)
        if amount_cents <= 0:
            logger.warning(
                "[payout] invalid amount variant=%s assignment=%s amount=%s",
                variant.name, assignment.id, amount_cents,
            )
            return PayoutResult(PayoutOutcome.INVALID_AMOUNT, success=False, error="Invalid payout amount")

        return self._settle(db, assignment, subject, payee, amount_cents)

    def check_already_settled(self, db: Session, assignment, subject) -> Optional[PayoutResult]:
        if assignment.payout_status == AssignmentStatus.paid.value or assignment.transfer_id:
            return PayoutResult(
                PayoutOutcome.ALREADY_PAID,
                success=True,
                transfer_id=assignment.transfer_id,
                error=ALREADY_COMPLETED,
            )

        entry = self.ledger.get_entry(
            db,
            variant=self.variant.name,
            subject_id=self.variant.subject_id(assignment),
            payee_id=self.variant.ledger_payee_id(assignment),
            line_key=self.variant.line_key(assignment),
        )
        if entry is not None and entry.status == LedgerStatus.paid.value:
            return self._reconcile(db, entry, assignment, subject)
        return None

    def check_hold(self, subject) -> Optional[PayoutResult]:
        if not subject.payout_hold:
            return None
        reason = subject.payout_hold_reason or "No reason provided"
        return PayoutResult(PayoutOutcome.ON_HOLD, success=True, blockers=[f"Payout on hold: {reason}"])

    def check_eligibility(self, payee: Optional[PayeeAccount]) -> List[str]:
        if payee is None:
            return [f"{self.variant.payee_label} not found"]
        return self.eligibility.resolve(payee)

    def check_guardrails(self, db: Session, assignment, subject, override: Optional[MarginOverride]) -> List[str]:
        if not self.variant.uses_guardrails:
            return []
        data = self.variant.margin_input(subject, assignment)
        if data is None:
            return []

        try:
            result = self.guardrails.evaluate(db, data)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("[payout] margin guardrail evaluation failed assignment=%s: %s", assignment.id, exc)
            return [f"Margin guardrail check failed: {exc.__class__.__name__}"]

        if result.passed:
            return []

        if override is not None and override.user_id:
            # recorded before the transfer so it survives any transfer outcome
            self.guardrails.log_override(
                db,
                subject_type=self.variant.subject_type,
                subject_id=subject.id,
                user_id=override.user_id,
                action=AuditAction.MARGIN_OVERRIDE_BLOCK,
                reason=override.reason,
                result=result,
            )
            return []

        if not result.block_or_warn:
            self.guardrails.log_override(
                db,
                subject_type=self.variant.subject_type,
                subject_id=subject.id,
                user_id=None,
                action=AuditAction.MARGIN_WARN_PROCEED,
                reason=result.message,
                result=result,
            )
            return []

        return [result.message or "Margin guardrail failed"]

    def _settle(self, db: Session, assignment, subject, payee: PayeeAccount, amount_cents: int) -> PayoutResult:
        variant = self.variant
        try:
            entry, created = self.ledger.create_or_get(
                db,
                variant=variant.name,
                subject_id=variant.subject_id(assignment),
                payee_id=variant.ledger_payee_id(assignment),
                line_key=variant.line_key(assignment),
                assignment_id=assignment.id,
                amount_cents=amount_cents,
                currency=self.rail.currency,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("[payout] ledger insert failed variant=%s assignment=%s", variant.name, assignment.id)
            return PayoutResult(PayoutOutcome.LEDGER_ERROR, success=False, error="Failed to create payout record")

        if not created:
            if entry.status == LedgerStatus.paid.value:
                return self._reconcile(db, entry, assignment, subject)
            if not self.ledger.claim(db, entry):
                if entry.status == LedgerStatus.paid.value:
                    return self._reconcile(db, entry, assignment, subject)
                logger.info("[payout] ledger %s claimed elsewhere, skipping", entry.id)
                return PayoutResult(
                    PayoutOutcome.IN_PROGRESS,
                    success=True,
                    payout_id=entry.id,
                    error="Payout already in progress",
                )
            if entry.amount_cents != amount_cents:
                logger.warning(
                    "[payout] ledger %s amount fixed at %s (assignment now %s)",
                    entry.id, entry.amount_cents, amount_cents,
                )

        try:
            transfer = self._transfer(entry, assignment, subject, payee)
        except RailError as exc:
            return self._fail(db, entry, assignment, subject, exc)
        except Exception as exc:
            # outcome unknown: fail the entry so the next claim re-queries the rail
            logger.exception("[payout] transfer crashed variant=%s ledger=%s", variant.name, entry.id)
            return self._fail(db, entry, assignment, subject, RailError(str(exc) or exc.__class__.__name__))

        entry = self.ledger.mark_paid(db, entry, transfer_id=transfer.transfer_id)
        self._mark_assignment_paid(db, entry, assignment, subject)

        logger.info(
            "[payout] settled variant=%s assignment=%s ledger=%s transfer=%s amount=%s",
            variant.name, assignment.id, entry.id, entry.transfer_id, entry.amount_cents,
        )
        return PayoutResult(
            PayoutOutcome.SETTLED,
            success=True,
            payout_created=True,
            payout_id=entry.id,
            transfer_id=entry.transfer_id,
        )

    def _transfer(self, entry: PayoutLedgerEntry, assignment, subject, payee: PayeeAccount) -> TransferCreated:
        # A previous attempt may have reached the rail before failing locally
        if entry.attempts > 1:
            found = self.rail.find_transfer(transfer_group=entry.transfer_group)
            if found is not None:
                logger.info("[payout] adopting existing transfer %s for ledger %s", found.transfer_id, entry.id)
                return found

        metadata = self.variant.metadata(subject, assignment)
        metadata["ledger_id"] = str(entry.id)
        return self.rail.create_transfer(
            account_id=payee.stripe_account_id,
            amount_cents=entry.amount_cents,
            description=self.variant.description(subject, assignment),
            transfer_group=entry.transfer_group,
            metadata=metadata,
        )

    # ─────────────────────────────────────────────
    # STATE WRITES
    # ─────────────────────────────────────────────

    def _block(self, db: Session, assignment, subject, blockers: List[str]) -> PayoutResult:
        assignment.payout_status = AssignmentStatus.on_hold.value
        assignment.payout_blockers = list(blockers)
        assignment.payout_error = "; ".join(blockers)
        self.variant.on_blocked(subject, assignment, blockers)
        db.commit()

        logger.warning(
            "[payout] blocked variant=%s assignment=%s blockers=%s",
            self.variant.name, assignment.id, blockers,
        )
        return PayoutResult(PayoutOutcome.BLOCKED, success=True, blockers=list(blockers))

    def _fail(self, db: Session, entry: PayoutLedgerEntry, assignment, subject, exc: RailError) -> PayoutResult:
        message = exc.message or "Transfer creation failed"
        self.ledger.mark_failed(db, entry, message=message)

        assignment.payout_status = AssignmentStatus.failed.value
        assignment.payout_error = message
        assignment.payout_blockers = [message]
        self.variant.on_failed(subject, assignment, message)
        db.commit()

        logger.warning(
            "[payout] transfer failed variant=%s assignment=%s ledger=%s: %s",
            self.variant.name, assignment.id, entry.id, message,
        )
        return PayoutResult(
            PayoutOutcome.TRANSFER_FAILED,
            success=False,
            payout_id=entry.id,
            blockers=[message],
            error=message,
            retryable=not isinstance(exc, RailUnavailable),
        )

    def _mark_assignment_paid(self, db: Session, entry: PayoutLedgerEntry, assignment, subject) -> None:
        paid_at = entry.paid_at or _now()
        assignment.payout_status = AssignmentStatus.paid.value
        assignment.transfer_id = entry.transfer_id
        assignment.paid_at = paid_at
        assignment.payout_error = None
        assignment.payout_blockers = []
        self.variant.on_paid(
            subject,
            assignment,
            amount_cents=entry.amount_cents,
            transfer_id=entry.transfer_id,
            paid_at=paid_at,
        )
        db.commit()

    def _reconcile(self, db: Session, entry: PayoutLedgerEntry, assignment, subject) -> PayoutResult:
        """Ledger says paid: bring the assignment and subject caches in line."""
        if assignment.payout_status != AssignmentStatus.paid.value or assignment.transfer_id != entry.transfer_id:
            logger.info("[payout] reconciling assignment %s from ledger %s", assignment.id, entry.id)
            self._mark_assignment_paid(db, entry, assignment, subject)
        return PayoutResult(
            PayoutOutcome.ALREADY_PAID,
            success=True,
            payout_id=entry.id,
            transfer_id=entry.transfer_id,
            error=ALREADY_COMPLETED,
        )


def build_orchestrators(rail: PaymentRailClient, settings: Settings) -> Dict[str, PayoutOrchestrator]:
    ledger = PayoutLedgerService(lease_seconds=settings.ledger_claim_lease_seconds)
    guardrails = MarginGuardrailService()
    eligibility = EligibilityResolver(rail)
    return {
        name: PayoutOrchestrator(
            variant=variant,
            rail=rail,
            ledger=ledger,
            guardrails=guardrails,
            eligibility=eligibility,
        )
        for name, variant in VARIANTS.items()
    }
