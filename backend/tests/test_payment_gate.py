"""
Tests for the Payment Gate.

canPay follows payment_status exactly; block reasons name the defect;
blocking clears on the next sweep once the contractor is allowed.
"""
import pytest
from datetime import date, timedelta
from unittest.mock import MagicMock

from trade_compliance.models.analysis import DocumentSnapshot, InvoiceEvent
from trade_compliance.models.db_models import (
    AdminOverride, ComplianceDocumentDB, ComplianceStatus, ContractorDB, DocumentType, InvoiceDB, InvoiceStatus,
    PaymentRunDB, PaymentRunItemDB, PaymentStatus,
)
from trade_compliance.services.compliance import (
    ComplianceAggregator, DocumentService, DuplicateInvoiceError,
    InvalidTransitionError, InvoiceNotFoundError, InvoiceValidationError,
    PaymentGate, evaluate,
)
from trade_compliance.services.compliance.payment_gate import (
    REASON_INSURANCE_EXPIRED, REASON_MISSING_DOCUMENTS, REASON_NO_PUBLIC_LIABILITY,
    REASON_PAYMENT_BLOCKED, REASON_SUSPENDED, REASON_VERIFICATION_BLOCKED,
)


PL = frozenset({"public_liability"})
PL_EL = frozenset({"public_liability", "employers_liability"})


def snapshot(document_type, status):
    return DocumentSnapshot(document_type=DocumentType(document_type), status=status)


def invoice_event(contractor_id, amount=125_000, **overrides):
    fields = {
        "contractor_id": contractor_id,
        "amount": amount,
        "due_date": date(2026, 11, 1),
    }
    fields.update(overrides)
    return InvoiceEvent(**fields)


# =============================================================================
# TEST: DECISION
# =============================================================================

class TestEvaluate:

    def test_allowed_can_pay(self):
        decision = evaluate(PaymentStatus.ALLOWED)
        assert decision.can_pay is True
        assert decision.block_reason is None

    @pytest.mark.parametrize("status", [
        PaymentStatus.BLOCKED, PaymentStatus.ON_HOLD, PaymentStatus.PENDING_REVIEW,
    ])
    def test_everything_else_blocks(self, status):
        assert evaluate(status).can_pay is False

    @pytest.mark.parametrize("override,documents,mandatory,reason", [
        (AdminOverride.BLOCKED, [], PL, REASON_VERIFICATION_BLOCKED),
        (AdminOverride.SUSPENDED, [], PL, REASON_SUSPENDED),
        (None, [snapshot("public_liability", ComplianceStatus.EXPIRED)], PL, REASON_INSURANCE_EXPIRED),
        (None, [], PL, REASON_NO_PUBLIC_LIABILITY),
        (None, [snapshot("public_liability", ComplianceStatus.REJECTED)], PL, REASON_NO_PUBLIC_LIABILITY),
        (None, [snapshot("public_liability", ComplianceStatus.VALID)], PL_EL, REASON_MISSING_DOCUMENTS),
        (None, [snapshot("public_liability", ComplianceStatus.VALID)], PL, REASON_PAYMENT_BLOCKED),
    ])
    def test_block_reasons(self, override, documents, mandatory, reason):
        decision = evaluate(PaymentStatus.BLOCKED, override, documents, mandatory)
        assert decision.block_reason == reason


# =============================================================================
# TEST: INVOICES
# =============================================================================

class TestInvoices:

    def test_create_for_compliant_contractor(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        upload(contractor)

        result = PaymentGate(db, policy).create_invoice(invoice_event(contractor.id, invoice_number="INV-001"))

        assert result["status"] == "pending"
        assert result["can_pay"] is True
        assert result["block_reason"] is None

    def test_create_for_non_compliant_contractor_stays_pending(self, db, policy, make_contractor):
        contractor = make_contractor()

        result = PaymentGate(db, policy).create_invoice(invoice_event(contractor.id))

        assert result["status"] == "pending"
        assert result["can_pay"] is False
        assert result["block_reason"] == REASON_NO_PUBLIC_LIABILITY

    @pytest.mark.parametrize("amount", [0, -500])
    def test_amount_must_be_positive(self, db, policy, make_contractor, amount):
        contractor = make_contractor()
        with pytest.raises(InvoiceValidationError):
            PaymentGate(db, policy).create_invoice(invoice_event(contractor.id, amount=amount))

    def test_duplicate_invoice_number(self, db, policy, make_contractor):
        contractor = make_contractor()
        gate = PaymentGate(db, policy)
        gate.create_invoice(invoice_event(contractor.id, invoice_number="INV-7"))

        with pytest.raises(DuplicateInvoiceError):
            gate.create_invoice(invoice_event(contractor.id, invoice_number="INV-7"))

    def test_mark_paid_requires_allowed(self, db, policy, make_contractor):
        contractor = make_contractor()
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))

        with pytest.raises(InvalidTransitionError, match="Payment blocked"):
            gate.mark_paid(created["invoice_id"])

        assert db.get(InvoiceDB, created["invoice_id"]).status == InvoiceStatus.PENDING

    def test_mark_paid_rechecks_stale_contractor(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        uploaded = upload(contractor)
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))
        assert created["can_pay"] is True

        # Stored payment_status still says allowed
        db.get(ComplianceDocumentDB, uploaded.document_id).status = ComplianceStatus.EXPIRED
        db.commit()

        with pytest.raises(InvalidTransitionError, match=REASON_INSURANCE_EXPIRED):
            gate.mark_paid(created["invoice_id"])

        assert db.get(InvoiceDB, created["invoice_id"]).status == InvoiceStatus.PENDING

    def test_mark_paid_and_cancel_are_terminal(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        upload(contractor)
        gate = PaymentGate(db, policy)
        paid = gate.create_invoice(invoice_event(contractor.id))
        cancelled = gate.create_invoice(invoice_event(contractor.id))

        assert gate.mark_paid(paid["invoice_id"])["status"] == "paid"
        assert gate.cancel(cancelled["invoice_id"])["status"] == "cancelled"

        with pytest.raises(InvalidTransitionError):
            gate.mark_paid(cancelled["invoice_id"])
        with pytest.raises(InvalidTransitionError):
            gate.cancel(paid["invoice_id"])

    def test_unknown_invoice(self, db, policy):
        with pytest.raises(InvoiceNotFoundError):
            PaymentGate(db, policy).mark_paid("missing")


# =============================================================================
# TEST: PAYMENT RUN
# =============================================================================

class TestPaymentSweep:

    def test_approves_and_blocks(self, db, policy, make_contractor, upload):
        good = make_contractor(company_name="Good Sparks Ltd")
        upload(good)
        bad = make_contractor(company_name="Lapsed Roofing Ltd")

        gate = PaymentGate(db, policy)
        ok = gate.create_invoice(invoice_event(good.id, amount=100_000))
        held = gate.create_invoice(invoice_event(bad.id, amount=40_000))

        result = gate.run_payment_sweep(processed_by="finance-1")

        assert result["approved_invoices"] == 1
        assert result["blocked_invoices"] == 1
        assert result["approved_amount"] == 100_000
        assert result["blocked_amount"] == 40_000
        assert result["blocked_details"][0]["reason"] == REASON_NO_PUBLIC_LIABILITY

        assert db.get(InvoiceDB, ok["invoice_id"]).status == InvoiceStatus.APPROVED
        blocked = db.get(InvoiceDB, held["invoice_id"])
        assert blocked.status == InvoiceStatus.BLOCKED
        assert blocked.payment_block_reason == REASON_NO_PUBLIC_LIABILITY
        assert blocked.compliance_check_at is not None

        run = db.get(PaymentRunDB, result["payment_run_id"])
        assert run.status == "completed"
        assert db.query(PaymentRunItemDB).filter(PaymentRunItemDB.payment_run_id == run.id).count() == 2

    def test_blocking_is_not_sticky(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))
        gate.run_payment_sweep()
        assert db.get(InvoiceDB, created["invoice_id"]).status == InvoiceStatus.BLOCKED

        upload(contractor)
        gate.run_payment_sweep()

        invoice = db.get(InvoiceDB, created["invoice_id"])
        assert invoice.status == InvoiceStatus.APPROVED
        assert invoice.payment_block_reason is None

    def test_notifies_only_on_first_block(self, db, policy, make_contractor):
        contractor = make_contractor()
        notifier = MagicMock()
        gate = PaymentGate(db, policy, notifier=notifier)
        gate.create_invoice(invoice_event(contractor.id))

        gate.run_payment_sweep()
        gate.run_payment_sweep()

        notifier.notify_payment_blocked.assert_called_once()
        _, reason, _ = notifier.notify_payment_blocked.call_args.args
        assert reason == REASON_NO_PUBLIC_LIABILITY

    def test_suspension_blocks_payment(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        upload(contractor)
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))

        ComplianceAggregator(db, policy).set_override(contractor.id, AdminOverride.SUSPENDED)
        gate.run_payment_sweep()

        invoice = db.get(InvoiceDB, created["invoice_id"])
        assert invoice.status == InvoiceStatus.BLOCKED
        assert invoice.payment_block_reason == REASON_SUSPENDED

    def test_paid_and_cancelled_are_untouched(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        upload(contractor)
        gate = PaymentGate(db, policy)
        paid = gate.create_invoice(invoice_event(contractor.id))
        gate.mark_paid(paid["invoice_id"])

        result = gate.run_payment_sweep()

        assert result["total_invoices"] == 0
        assert db.get(InvoiceDB, paid["invoice_id"]).status == InvoiceStatus.PAID

    def test_preview_is_read_only(self, db, policy, make_contractor):
        contractor = make_contractor()
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id, amount=9_900))

        preview = gate.preview()

        assert preview["total_invoices"] == 1
        assert preview["blocked_count"] == 1
        assert preview["blocked_amount"] == 9_900
        assert preview["invoices"][0]["block_reason"] == REASON_NO_PUBLIC_LIABILITY
        assert db.get(InvoiceDB, created["invoice_id"]).status == InvoiceStatus.PENDING
        assert db.query(PaymentRunDB).count() == 0

    def test_expired_insurance_reason(self, db, policy, make_contractor, upload, today):
        contractor = make_contractor()
        upload(contractor, days_to_expiry=2)
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))

        DocumentService(db, policy).reclassify_by_date(today + timedelta(days=2))
        ComplianceAggregator(db, policy).recompute(contractor.id)
        db.commit()
        gate.run_payment_sweep()

        invoice = db.get(InvoiceDB, created["invoice_id"])
        assert invoice.status == InvoiceStatus.BLOCKED
        assert invoice.payment_block_reason == REASON_INSURANCE_EXPIRED

    def test_sweep_rechecks_stale_contractor(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        uploaded = upload(contractor)
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))

        db.get(ComplianceDocumentDB, uploaded.document_id).status = ComplianceStatus.EXPIRED
        db.commit()
        gate.run_payment_sweep()

        invoice = db.get(InvoiceDB, created["invoice_id"])
        assert invoice.status == InvoiceStatus.BLOCKED
        assert invoice.payment_block_reason == REASON_INSURANCE_EXPIRED
        assert db.get(ContractorDB, contractor.id).payment_status == PaymentStatus.BLOCKED

    def test_unchanged_block_is_not_rewritten(self, db, policy, make_contractor):
        contractor = make_contractor()
        gate = PaymentGate(db, policy)
        created = gate.create_invoice(invoice_event(contractor.id))
        gate.run_payment_sweep()
        checked_at = db.get(InvoiceDB, created["invoice_id"]).compliance_check_at
        items = db.query(PaymentRunItemDB).count()
        assert gate.changed_invoice_count() == 0

        result = gate.run_payment_sweep()

        assert result["blocked_invoices"] == 1
        assert db.query(PaymentRunItemDB).count() == items
        invoice = db.get(InvoiceDB, created["invoice_id"])
        assert invoice.compliance_check_at == checked_at
        assert invoice.payment_block_reason == REASON_NO_PUBLIC_LIABILITY

    def test_changed_invoice_count(self, db, policy, make_contractor, upload):
        contractor = make_contractor()
        gate = PaymentGate(db, policy)
        gate.create_invoice(invoice_event(contractor.id))
        assert gate.changed_invoice_count() == 1

        gate.run_payment_sweep()
        assert gate.changed_invoice_count() == 0

        upload(contractor)
        assert gate.changed_invoice_count() == 1
