import threading
import uuid

from payout_engine.models.audit_log import AuditLog
from payout_engine.models.enums import LedgerStatus, PayoutVariantName
from payout_engine.models.margin_guardrail import MarginGuardrailConfig
from payout_engine.models.payout_ledger import PayoutLedgerEntry
from payout_engine.services.audit_service import AuditAction
from payout_engine.services.payout_orchestrator import MarginOverride, PayoutOutcome
from payout_engine.tests import factories as f


def ledger_rows(db):
    db.expire_all()
    return db.query(PayoutLedgerEntry).all()


def ready_chef_payout(db, rail, *, amount=5000, **booking_kw):
    booking = f.create_booking(db, **booking_kw)
    chef = f.create_chef(db, rail)
    bc = f.assign_chef(db, booking, chef, amount=amount)
    return booking, chef, bc


# ─────────────────────────────────────────────
# Happy path / idempotency
# ─────────────────────────────────────────────

def test_eligible_payout_settles(db, rail, orchestrators):
    booking, chef, bc = ready_chef_payout(db, rail)

    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.SETTLED
    assert result.success is True
    assert result.payout_created is True
    assert result.transfer_id

    rows = ledger_rows(db)
    assert len(rows) == 1
    assert rows[0].status == LedgerStatus.paid.value
    assert rows[0].transfer_id == result.transfer_id
    assert rows[0].amount_cents == 5000

    db.refresh(bc)
    db.refresh(booking)
    assert bc.payout_status == "paid"
    assert bc.transfer_id == result.transfer_id
    assert booking.chef_payout_status == "paid"
    assert booking.stripe_transfer_id == result.transfer_id
    assert booking.chef_payout_amount_cents == 5000

    assert rail.transfers[0]["destination"] == chef.stripe_account_id
    assert rail.transfers[0]["amount"] == 5000
    assert rail.transfers[0]["description"] == f"Payout for booking Harvest Dinner ({str(booking.id)[:8]})"
    assert rail.transfers[0]["transfer_group"] == f"payout_{rows[0].id}"


def test_second_call_is_a_no_op(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail)
    first = orchestrators["chef"].try_payout(db, bc.id)
    second = orchestrators["chef"].try_payout(db, bc.id)

    assert first.payout_created is True
    assert second.outcome == PayoutOutcome.ALREADY_PAID
    assert second.success is True
    assert second.payout_created is False
    assert second.error == "Payout already completed"
    assert second.transfer_id == first.transfer_id
    assert rail.create_calls == 1


def test_repeated_sequential_calls_create_one_transfer(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail)
    for _ in range(5):
        orchestrators["chef"].try_payout(db, bc.id)

    assert rail.create_calls == 1
    rows = ledger_rows(db)
    assert len(rows) == 1
    assert rows[0].status == LedgerStatus.paid.value


def test_concurrent_calls_create_one_transfer(db, rail, orchestrators, session_factory):
    _, _, bc = ready_chef_payout(db, rail)
    assignment_id = bc.id
    rail.transfer_delay = 0.05
    orchestrator = orchestrators["chef"]

    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(6)

    def worker():
        session = session_factory()
        try:
            barrier.wait()
            r = orchestrator.try_payout(session, assignment_id)
            with lock:
                results.append(r)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert rail.create_calls == 1
    assert len(rail.transfers) == 1
    assert sum(1 for r in results if r.payout_created) == 1
    assert all(r.outcome != PayoutOutcome.ERROR for r in results)

    rows = ledger_rows(db)
    assert len(rows) == 1
    assert rows[0].status == LedgerStatus.paid.value


def test_ledger_paid_but_assignment_stale_is_reconciled(db, rail, orchestrators):
    booking, _, bc = ready_chef_payout(db, rail)
    first = orchestrators["chef"].try_payout(db, bc.id)

    # simulate a crash between the ledger write and the assignment write
    db.refresh(bc)
    bc.payout_status = "pending"
    bc.transfer_id = None
    booking.chef_payout_status = None
    db.commit()

    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.ALREADY_PAID
    assert result.transfer_id == first.transfer_id
    db.refresh(bc)
    db.refresh(booking)
    assert bc.payout_status == "paid"
    assert bc.transfer_id == first.transfer_id
    assert booking.chef_payout_status == "paid"
    assert rail.create_calls == 1


# ─────────────────────────────────────────────
# No premature transfer
# ─────────────────────────────────────────────

def test_not_fully_paid_is_blocked(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, fully_paid=False)
    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.PRECONDITIONS_UNMET
    assert result.success is True
    assert result.payout_created is False
    assert result.blockers == ["Booking is not fully paid"]
    assert rail.create_calls == 0
    assert ledger_rows(db) == []


def test_job_not_completed_is_blocked(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, completed=False)
    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.blockers == ["Job must be completed before payout can be processed"]
    assert rail.create_calls == 0
    assert ledger_rows(db) == []
    db.refresh(bc)
    assert bc.payout_status == "pending"


def test_preconditions_accumulate(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, completed=False, fully_paid=False)
    result = orchestrators["chef"].try_payout(db, bc.id)
    assert len(result.blockers) == 2


def test_hold_is_blocked_with_reason(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, payout_hold=True, payout_hold_reason="Client dispute")
    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.ON_HOLD
    assert result.blockers == ["Payout on hold: Client dispute"]
    assert rail.create_calls == 0
    assert ledger_rows(db) == []


def test_hold_without_reason(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, payout_hold=True)
    result = orchestrators["chef"].try_payout(db, bc.id)
    assert result.blockers == ["Payout on hold: No reason provided"]


def test_ineligible_payee_is_blocked_without_ledger_row(db, rail, orchestrators):
    booking = f.create_booking(db)
    chef = f.create_chef(db, rail, payouts_enabled=False)
    bc = f.assign_chef(db, booking, chef)

    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.BLOCKED
    assert result.payout_created is False
    assert "Chef payouts are not enabled" in result.blockers
    assert "Stripe account does not have payouts enabled" in result.blockers
    assert rail.create_calls == 0
    assert ledger_rows(db) == []

    db.refresh(bc)
    db.refresh(booking)
    assert bc.payout_status == "on_hold"
    assert bc.payout_blockers == result.blockers
    assert booking.chef_payout_status == "blocked"
    assert booking.chef_payout_blockers == result.blockers


def test_blocked_payee_pays_once_fixed(db, rail, orchestrators):
    booking = f.create_booking(db)
    chef = f.create_chef(db, rail, payouts_enabled=False)
    bc = f.assign_chef(db, booking, chef)
    assert orchestrators["chef"].try_payout(db, bc.id).outcome == PayoutOutcome.BLOCKED

    chef.payouts_enabled = True
    db.commit()
    rail.set_account(chef.stripe_account_id, payouts_enabled=True)

    result = orchestrators["chef"].try_payout(db, bc.id)
    assert result.outcome == PayoutOutcome.SETTLED
    db.refresh(booking)
    assert booking.chef_payout_blockers == []


def test_missing_assignment_is_not_found(db, orchestrators):
    result = orchestrators["chef"].try_payout(db, uuid.uuid4())
    assert result.outcome == PayoutOutcome.NOT_FOUND
    assert result.success is False


def test_zero_amount_is_fatal(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, amount=0)
    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.INVALID_AMOUNT
    assert result.success is False
    assert result.error == "Invalid payout amount"
    assert rail.create_calls == 0
    assert ledger_rows(db) == []


# ─────────────────────────────────────────────
# Transfer failures
# ─────────────────────────────────────────────

def test_transfer_failure_then_retry_reuses_ledger_row(db, rail, orchestrators):
    booking, _, bc = ready_chef_payout(db, rail)
    rail.fail_transfers = 1

    first = orchestrators["chef"].try_payout(db, bc.id)
    assert first.outcome == PayoutOutcome.TRANSFER_FAILED
    assert first.success is False
    assert first.retryable is True
    assert first.error == "Connection reset by peer"

    rows = ledger_rows(db)
    assert len(rows) == 1
    assert rows[0].status == LedgerStatus.failed.value
    assert rows[0].error_message == "Connection reset by peer"
    db.refresh(bc)
    assert bc.payout_status == "failed"
    assert bc.payout_error == "Connection reset by peer"

    second = orchestrators["chef"].try_payout(db, bc.id)
    assert second.outcome == PayoutOutcome.SETTLED
    rows = ledger_rows(db)
    assert len(rows) == 1
    assert rows[0].status == LedgerStatus.paid.value
    assert rows[0].id == first.payout_id
    assert len(rail.transfers) == 1


def test_lost_transfer_response_is_adopted_not_repeated(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail)
    rail.lose_responses = 1

    first = orchestrators["chef"].try_payout(db, bc.id)
    assert first.outcome == PayoutOutcome.TRANSFER_FAILED
    assert len(rail.transfers) == 1

    second = orchestrators["chef"].try_payout(db, bc.id)
    assert second.outcome == PayoutOutcome.SETTLED
    assert second.transfer_id == rail.transfers[0]["id"]
    assert rail.create_calls == 1
    assert rail.find_calls == 1


def test_unexpected_transfer_error_releases_the_claim(db, rail, orchestrators, monkeypatch):
    _, _, bc = ready_chef_payout(db, rail)
    real_create = rail.create_transfer

    def broken_create(**kwargs):
        raise TypeError("sequence item 0: expected a bytes-like object")

    monkeypatch.setattr(rail, "create_transfer", broken_create)
    first = orchestrators["chef"].try_payout(db, bc.id)

    assert first.outcome == PayoutOutcome.TRANSFER_FAILED
    assert first.retryable is True
    entry = ledger_rows(db)[0]
    assert entry.status == LedgerStatus.failed.value
    assert entry.claimed_at is None

    monkeypatch.setattr(rail, "create_transfer", real_create)
    second = orchestrators["chef"].try_payout(db, bc.id)
    assert second.outcome == PayoutOutcome.SETTLED
    assert rail.find_calls == 1
    assert len(rail.transfers) == 1


def test_rail_unavailable_is_not_retryable(db, rail, orchestrators):
    booking, chef, bc = ready_chef_payout(db, rail)
    rail.unavailable = True

    # eligibility notices first
    result = orchestrators["chef"].try_payout(db, bc.id)
    assert result.outcome == PayoutOutcome.BLOCKED
    assert "Payment rail is not configured; payouts are disabled" in result.blockers


def test_ledger_amount_is_fixed_after_creation(db, rail, orchestrators):
    _, _, bc = ready_chef_payout(db, rail, amount=5000)
    rail.fail_transfers = 1
    orchestrators["chef"].try_payout(db, bc.id)

    db.refresh(bc)
    bc.payout_amount_cents = 8000
    db.commit()

    orchestrators["chef"].try_payout(db, bc.id)
    assert rail.transfers[0]["amount"] == 5000
    assert ledger_rows(db)[0].amount_cents == 5000


def test_paid_amount_never_changes_after_total_edit(db, rail, orchestrators):
    booking, _, bc = ready_chef_payout(db, rail, amount=5000)
    first = orchestrators["chef"].try_payout(db, bc.id)

    booking.quote_total_cents = 250_000
    db.commit()
    again = orchestrators["chef"].try_payout(db, bc.id)

    row = ledger_rows(db)[0]
    assert row.amount_cents == 5000
    assert row.transfer_id == first.transfer_id
    assert again.transfer_id == first.transfer_id


# ─────────────────────────────────────────────
# Margin guardrails
# ─────────────────────────────────────────────

def add_global_guardrail(db, **kw):
    data = dict(region_code=None, min_gross_margin_pct=40.0, max_bonus_plus_tier_pct=10.0, block_or_warn=True)
    data.update(kw)
    db.add(MarginGuardrailConfig(**data))
    db.commit()


def audit_actions(db):
    db.expire_all()
    return [a.action for a in db.query(AuditLog).all()]


def test_failing_margin_blocks_without_override(db, rail, orchestrators):
    add_global_guardrail(db)
    booking, _, bc = ready_chef_payout(db, rail, amount=80_000, total=100_000)

    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.BLOCKED
    assert result.blockers == ["Gross margin 20.0% is below minimum 40%"]
    assert rail.create_calls == 0
    assert ledger_rows(db) == []
    db.refresh(booking)
    assert booking.chef_payout_status == "blocked"


def test_override_is_audited_and_proceeds(db, rail, orchestrators):
    add_global_guardrail(db)
    booking, _, bc = ready_chef_payout(db, rail, amount=80_000, total=100_000)

    result = orchestrators["chef"].try_payout(db, bc.id, override=MarginOverride(user_id="admin-1", reason="Holiday event"))

    assert result.outcome == PayoutOutcome.SETTLED
    db.expire_all()
    log = db.query(AuditLog).filter(AuditLog.action == AuditAction.MARGIN_OVERRIDE_BLOCK).one()
    assert log.actor_user_id == "admin-1"
    assert log.reason == "Holiday event"
    assert log.subject_id == booking.id


def test_override_is_audited_even_when_transfer_fails(db, rail, orchestrators):
    add_global_guardrail(db)
    _, _, bc = ready_chef_payout(db, rail, amount=80_000, total=100_000)
    rail.fail_transfers = 1

    result = orchestrators["chef"].try_payout(db, bc.id, override=MarginOverride(user_id="admin-1"))

    assert result.outcome == PayoutOutcome.TRANSFER_FAILED
    assert AuditAction.MARGIN_OVERRIDE_BLOCK in audit_actions(db)


def test_warn_config_proceeds_with_audit(db, rail, orchestrators):
    add_global_guardrail(db, block_or_warn=False)
    _, _, bc = ready_chef_payout(db, rail, amount=80_000, total=100_000)

    result = orchestrators["chef"].try_payout(db, bc.id)

    assert result.outcome == PayoutOutcome.SETTLED
    assert AuditAction.MARGIN_WARN_PROCEED in audit_actions(db)


def test_passing_margin_writes_no_audit(db, rail, orchestrators):
    add_global_guardrail(db)
    _, _, bc = ready_chef_payout(db, rail, amount=50_000, total=100_000)

    result = orchestrators["chef"].try_payout(db, bc.id, override=MarginOverride(user_id="admin-1"))

    assert result.outcome == PayoutOutcome.SETTLED
    assert audit_actions(db) == []


def test_guardrail_skipped_without_quote_total(db, rail, orchestrators):
    add_global_guardrail(db)
    _, _, bc = ready_chef_payout(db, rail, amount=80_000, total=None)

    result = orchestrators["chef"].try_payout(db, bc.id)
    assert result.outcome == PayoutOutcome.SETTLED


# ─────────────────────────────────────────────
# Other variants
# ─────────────────────────────────────────────

def test_farmer_payout_settles_without_guardrails(db, rail, orchestrators):
    add_global_guardrail(db)
    booking = f.create_booking(db)
    farmer = f.create_farmer(db, rail)
    bf = f.assign_farmer(db, booking, farmer, amount=90_000, role="produce")

    result = orchestrators[PayoutVariantName.farmer.value].try_payout(db, bf.id)

    assert result.outcome == PayoutOutcome.SETTLED
    assert rail.transfers[0]["description"] == f"Payout for booking Harvest Dinner (produce) - {str(booking.id)[:8]}"
    db.refresh(booking)
    # chef cache untouched
    assert booking.chef_payout_status is None


def test_farmer_missing_account_blockers(db, rail, orchestrators):
    booking = f.create_booking(db)
    farmer = f.create_farmer(db, rail, account=False, connected=False, payouts_enabled=False)
    bf = f.assign_farmer(db, booking, farmer)

    result = orchestrators["farmer"].try_payout(db, bf.id)
    assert result.blockers == [
        "Farmer has no Stripe Connect account",
        "Farmer Stripe status: pending",
        "Farmer payouts are not enabled",
    ]


def test_ingredient_requires_delivery(db, rail, orchestrators):
    booking = f.create_booking(db)
    farmer = f.create_farmer(db, rail)
    bi = f.add_ingredient(db, booking, farmer, fulfillment="confirmed")

    result = orchestrators["ingredient"].try_payout(db, bi.id)
    assert result.outcome == PayoutOutcome.PRECONDITIONS_UNMET
    assert result.blockers == ["Ingredient must be delivered before payout can be processed"]


def test_ingredient_marked_paid_by_hand_still_settles(db, rail, orchestrators):
    booking = f.create_booking(db)
    farmer = f.create_farmer(db, rail)
    bi = f.add_ingredient(db, booking, farmer, fulfillment="paid")

    result = orchestrators["ingredient"].try_payout(db, bi.id)

    assert result.outcome == PayoutOutcome.SETTLED
    assert rail.transfers[0]["destination"] == farmer.stripe_account_id
    db.refresh(bi)
    assert bi.payout_status == "paid"


def test_ingredient_lines_from_same_farmer_settle_separately(db, rail, orchestrators):
    booking = f.create_booking(db)
    farmer = f.create_farmer(db, rail)
    carrots = f.add_ingredient(db, booking, farmer, ingredient_id="carrots", total=1200)
    leeks = f.add_ingredient(db, booking, farmer, ingredient_id="leeks", total=800)

    r1 = orchestrators["ingredient"].try_payout(db, carrots.id)
    r2 = orchestrators["ingredient"].try_payout(db, leeks.id)

    assert r1.outcome == PayoutOutcome.SETTLED
    assert r2.outcome == PayoutOutcome.SETTLED
    assert r1.transfer_id != r2.transfer_id
    assert sorted(t["amount"] for t in rail.transfers) == [800, 1200]
    db.refresh(carrots)
    assert carrots.fulfillment_status == "paid"
