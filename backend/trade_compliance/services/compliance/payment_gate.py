"""
Payment Gate

Binary allow/block decision for invoices, driven only by the
contractor's derived payment_status. Block reasons cite the compliance
defect so finance can chase the right document.

Blocking is not sticky: the sweep re-checks blocked invoices and
approves them once the contractor is allowed again.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import CompliancePolicy
from ...models.analysis import DocumentSnapshot, GatingDecision, InvoiceEvent
from ...models.db_models import (
    AdminOverride, ComplianceStatus, ContractorDB, DocumentType,
    InvoiceDB, InvoiceStatus, PaymentRunDB, PaymentRunItemDB, PaymentStatus,
)
from .aggregator import ComplianceAggregator
from .classifier import satisfies_requirement
from .errors import (
    ContractorNotFoundError, DerivationError, DuplicateInvoiceError,
    InvalidTransitionError, InvoiceNotFoundError, InvoiceValidationError,
)


logger = logging.getLogger(__name__)


# =============================================================================
# BLOCK REASONS
# =============================================================================

REASON_VERIFICATION_BLOCKED = "Contractor verification blocked"
REASON_SUSPENDED = "Contractor suspended"
REASON_INSURANCE_EXPIRED = "Required insurance expired"
REASON_NO_PUBLIC_LIABILITY = "No valid public liability insurance"
REASON_MISSING_DOCUMENTS = "Required compliance documents missing or not yet verified"
REASON_PAYMENT_BLOCKED = "Contractor payment blocked"

# Invoice states the sweep decides on
GATED_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.BLOCKED)


def block_reason_for(
    override: Optional[AdminOverride],
    documents: Iterable[DocumentSnapshot],
    mandatory_types: FrozenSet[str],
) -> str:
    """Most specific reason a non-allowed contractor cannot be paid."""
    if override == AdminOverride.BLOCKED:
        return REASON_VERIFICATION_BLOCKED
    if override == AdminOverride.SUSPENDED:
        return REASON_SUSPENDED

    by_type = {DocumentType(doc.document_type).value: doc for doc in documents}

    for doc_type in sorted(mandatory_types):
        doc = by_type.get(doc_type)
        if doc is not None and doc.status == ComplianceStatus.EXPIRED:
            return REASON_INSURANCE_EXPIRED

    public_liability = by_type.get(DocumentType.PUBLIC_LIABILITY.value)
    if DocumentType.PUBLIC_LIABILITY.value in mandatory_types and (
        public_liability is None or not satisfies_requirement(public_liability.status)
    ):
        return REASON_NO_PUBLIC_LIABILITY

    if any(t not in by_type or not satisfies_requirement(by_type[t].status) for t in mandatory_types):
        return REASON_MISSING_DOCUMENTS

    return REASON_PAYMENT_BLOCKED


def evaluate(
    payment_status: PaymentStatus,
    override: Optional[AdminOverride] = None,
    documents: Iterable[DocumentSnapshot] = (),
    mandatory_types: FrozenSet[str] = frozenset(),
) -> GatingDecision:
    """can_pay is exactly payment_status == allowed."""
    if PaymentStatus(payment_status) == PaymentStatus.ALLOWED:
        return GatingDecision(can_pay=True)
    return GatingDecision(
        can_pay=False,
        block_reason=block_reason_for(override, documents, mandatory_types),
    )


class PaymentGate:
    """
    Invoice gating against contractor compliance.

    Each invoice decision takes the contractor row lock and commits on its
    own, so a decision and its write are atomic relative to uploads and
    invoice creation for the same contractor.
    """

    def __init__(
        self,
        db_session: Session,
        policy: Optional[CompliancePolicy] = None,
        notifier=None,
    ):
        self.db = db_session
        self.policy = policy or CompliancePolicy()
        self.aggregator = ComplianceAggregator(db_session, self.policy)
        self.notifier = notifier  # Optional NotificationScheduler for payment-blocked notices

    def decide(self, contractor: ContractorDB) -> GatingDecision:
        try:
            return evaluate(
                contractor.payment_status,
                contractor.admin_override,
                self.aggregator.snapshots(contractor.id),
                self.aggregator.mandatory_types_for(contractor),
            )
        except Exception as e:
            logger.exception(f"Gating failed for contractor {contractor.id}")
            raise DerivationError(f"Gating failed for contractor {contractor.id}: {e}") from e

    # =========================================================================
    # INVOICES
    # =========================================================================

    def create_invoice(self, event: InvoiceEvent) -> Dict[str, Any]:
        """
        Record a pending invoice and return the gate's current decision.
        The invoice stays pending until the next sweep.
        """
        if event.amount is None or event.amount <= 0:
            raise InvoiceValidationError("amount must be a positive number of pence")
        if event.due_date is None:
            raise InvoiceValidationError("due_date is required")

        try:
            contractor = self.aggregator.lock_contractor(event.contractor_id)
            if contractor.deleted_at is not None:
                raise ContractorNotFoundError(f"Contractor {event.contractor_id} not found")

            if event.invoice_number:
                existing = self.db.query(InvoiceDB).filter(
                    InvoiceDB.contractor_id == contractor.id,
                    InvoiceDB.invoice_number == event.invoice_number,
                ).first()
                if existing:
                    raise DuplicateInvoiceError(
                        f"Invoice {event.invoice_number} already exists for this contractor"
                    )

            decision = self.decide(contractor)

            invoice = InvoiceDB(
                id=str(uuid4()),
                contractor_id=contractor.id,
                invoice_number=event.invoice_number,
                amount=event.amount,
                currency=event.currency or "GBP",
                description=event.description,
                due_date=event.due_date,
                status=InvoiceStatus.PENDING,
                compliance_check_at=datetime.utcnow(),
            )
            self.db.add(invoice)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return {
            "invoice_id": invoice.id,
            "status": invoice.status.value,
            **decision.to_dict(),
        }

    def mark_paid(self, invoice_id: str) -> Dict[str, Any]:
        """
        Mark an invoice paid. Only allowed while the contractor's
        payment_status is allowed at the moment of the transition.
        """
        try:
            invoice = self._get_invoice(invoice_id)
            contractor = self.aggregator.lock_contractor(invoice.contractor_id)

            if invoice.status not in (InvoiceStatus.PENDING, InvoiceStatus.APPROVED):
                raise InvalidTransitionError(
                    f"Invoice {invoice_id} is {invoice.status.value} and cannot be paid"
                )

            self.aggregator.recompute(contractor.id)
            decision = self.decide(contractor)
            if not decision.can_pay:
                raise InvalidTransitionError(f"Payment blocked: {decision.block_reason}")

            invoice.status = InvoiceStatus.PAID
            invoice.payment_block_reason = None
            invoice.paid_at = datetime.utcnow()
            invoice.compliance_check_at = invoice.paid_at
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Invoice {invoice_id} paid")
        return {"invoice_id": invoice.id, "status": invoice.status.value}

    def cancel(self, invoice_id: str) -> Dict[str, Any]:
        try:
            invoice = self._get_invoice(invoice_id)
            if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
                raise InvalidTransitionError(
                    f"Invoice {invoice_id} is {invoice.status.value} and cannot be cancelled"
                )
            invoice.status = InvoiceStatus.CANCELLED
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return {"invoice_id": invoice.id, "status": invoice.status.value}

    def _get_invoice(self, invoice_id: str) -> InvoiceDB:
        invoice = self.db.get(InvoiceDB, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    # =========================================================================
    # PAYMENT RUN
    # =========================================================================

    def preview(self) -> Dict[str, Any]:
        """What a payment run would do right now. Read-only."""
        invoices = self._gated_invoices()
        rows = []
        for invoice in invoices:
            decision = self.decide(invoice.contractor)
            rows.append({
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "contractor_id": invoice.contractor_id,
                "company_name": invoice.contractor.company_name,
                "amount": invoice.amount,
                "due_date": invoice.due_date.isoformat(),
                "status": invoice.status.value,
                **decision.to_dict(),
            })

        payable = [r for r in rows if r["can_pay"]]
        blocked = [r for r in rows if not r["can_pay"]]

        return {
            "total_invoices": len(rows),
            "can_pay_count": len(payable),
            "blocked_count": len(blocked),
            "total_amount": sum(r["amount"] for r in rows),
            "approveable_amount": sum(r["amount"] for r in payable),
            "blocked_amount": sum(r["amount"] for r in blocked),
            "invoices": rows,
        }

    def run_payment_sweep(self, processed_by: Optional[str] = None, run_date: Optional[date] = None) -> Dict[str, Any]:
        """
        Approve or block every pending and blocked invoice.

        Each invoice is its own unit of work; re-running after a crash
        re-checks whatever is still pending or blocked.
        """
        run_date = run_date or date.today()
        invoice_ids = [inv.id for inv in self._gated_invoices()]

        payment_run = PaymentRunDB(
            id=str(uuid4()),
            run_date=run_date,
            status="in_progress",
            total_invoices=len(invoice_ids),
            processed_by=processed_by,
        )
        self.db.add(payment_run)
        self.db.commit()

        approved: List[Dict[str, Any]] = []
        blocked: List[Dict[str, Any]] = []

        try:
            for invoice_id in invoice_ids:
                outcome = self._gate_invoice(payment_run.id, invoice_id)
                if outcome is None:
                    continue
                if outcome["status"] == InvoiceStatus.APPROVED.value:
                    approved.append(outcome)
                else:
                    blocked.append(outcome)
        except Exception:
            self.db.rollback()
            payment_run.status = "failed"
            self.db.commit()
            raise

        approved_amount = sum(i["amount"] for i in approved)
        blocked_amount = sum(i["amount"] for i in blocked)

        payment_run.status = "completed"
        payment_run.approved_invoices = len(approved)
        payment_run.blocked_invoices = len(blocked)
        payment_run.approved_amount = approved_amount
        payment_run.blocked_amount = blocked_amount
        payment_run.total_amount = approved_amount + blocked_amount
        payment_run.completed_at = datetime.utcnow()
        self.db.commit()

        logger.info(
            f"Payment run {payment_run.id}: {len(approved)} approved, {len(blocked)} blocked"
        )

        return {
            "payment_run_id": payment_run.id,
            "run_date": run_date.isoformat(),
            "total_invoices": len(invoice_ids),
            "approved_invoices": len(approved),
            "blocked_invoices": len(blocked),
            "approved_amount": approved_amount,
            "blocked_amount": blocked_amount,
            "blocked_details": blocked,
        }

    def changed_invoice_count(self) -> int:
        """Gated invoices whose status or block reason a sweep would change now."""
        return sum(
            1 for invoice in self._gated_invoices()
            if self._would_change(invoice, self.decide(invoice.contractor))
        )

    @staticmethod
    def _would_change(invoice: InvoiceDB, decision: GatingDecision) -> bool:
        if invoice.status == InvoiceStatus.PENDING:
            return True
        return decision.can_pay or invoice.payment_block_reason != decision.block_reason

    def _gated_invoices(self) -> List[InvoiceDB]:
        return (
            self.db.query(InvoiceDB)
            .filter(InvoiceDB.status.in_(GATED_STATUSES))
            .order_by(InvoiceDB.created_at, InvoiceDB.id)
            .all()
        )

    def _gate_invoice(self, payment_run_id: str, invoice_id: str) -> Optional[Dict[str, Any]]:
        """Decide and write one invoice under the contractor lock, then commit."""
        invoice = self.db.get(InvoiceDB, invoice_id)
        contractor = self.aggregator.lock_contractor(invoice.contractor_id)
        self.db.refresh(invoice)

        # Paid or cancelled since the run was listed
        if invoice.status not in GATED_STATUSES:
            self.db.commit()
            return None

        # Stored payment_status can lag for contractors outside the daily recompute
        self.aggregator.recompute(contractor.id)
        decision = self.decide(contractor)
        previous_status = invoice.status
        now = datetime.utcnow()

        if not self._would_change(invoice, decision):
            self.db.commit()
            return self._outcome(invoice, decision)

        if decision.can_pay:
            invoice.status = InvoiceStatus.APPROVED
            invoice.payment_block_reason = None
            invoice.approved_at = now
        else:
            invoice.status = InvoiceStatus.BLOCKED
            invoice.payment_block_reason = decision.block_reason
        invoice.compliance_check_at = now

        self.db.add(PaymentRunItemDB(
            id=str(uuid4()),
            payment_run_id=payment_run_id,
            invoice_id=invoice.id,
            status=invoice.status,
            block_reason=decision.block_reason,
            checked_at=now,
        ))
        self.db.commit()

        if (self.notifier is not None
                and previous_status == InvoiceStatus.PENDING
                and invoice.status == InvoiceStatus.BLOCKED):
            self.notifier.notify_payment_blocked(contractor, decision.block_reason, invoice)

        return self._outcome(invoice, decision)

    @staticmethod
    def _outcome(invoice: InvoiceDB, decision: GatingDecision) -> Dict[str, Any]:
        return {
            "id": invoice.id,
            "contractor_id": invoice.contractor_id,
            "amount": invoice.amount,
            "status": invoice.status.value,
            "reason": decision.block_reason,
        }
