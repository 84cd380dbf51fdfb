"""
Invoice API Routes

Invoice creation with an immediate gating decision, payment-run preview
and execution, and the paid/cancelled transitions.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import CompliancePolicy
from ..database import get_db
from ..models.analysis import InvoiceEvent
from ..services.compliance import (
    ComplianceError, NotificationScheduler, NotificationTransport, PaymentGate,
)
from .common import get_policy, get_transport, to_http_exception


router = APIRouter(prefix="/invoices", tags=["invoices"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateInvoiceRequest(BaseModel):
    contractor_id: str
    amount: int = Field(..., gt=0, description="Amount in pence")
    due_date: date
    invoice_number: Optional[str] = None
    currency: str = Field(default="GBP", min_length=3, max_length=3)
    description: Optional[str] = None


class CreateInvoiceResponse(BaseModel):
    invoice_id: str
    status: str
    can_pay: bool
    block_reason: Optional[str] = None


class PaymentRunRequest(BaseModel):
    processed_by: Optional[str] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=CreateInvoiceResponse, status_code=201)
async def create_invoice(
    request: CreateInvoiceRequest,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Record a pending invoice and report whether it could be paid today."""
    gate = PaymentGate(db, policy)
    try:
        result = gate.create_invoice(InvoiceEvent(**request.model_dump()))
    except ComplianceError as e:
        raise to_http_exception(e)
    return CreateInvoiceResponse(**result)


@router.get("/payment-run", response_model=dict)
async def preview_payment_run(
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """What a payment run would approve and block right now. Read-only."""
    return PaymentGate(db, policy).preview()


@router.post("/payment-run", response_model=dict)
async def run_payment_run(
    request: Optional[PaymentRunRequest] = None,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
    transport: NotificationTransport = Depends(get_transport),
):
    """Approve or block every pending and blocked invoice."""
    notifier = NotificationScheduler(db, policy, transport)
    gate = PaymentGate(db, policy, notifier=notifier)
    try:
        return gate.run_payment_sweep(processed_by=request.processed_by if request else None)
    except ComplianceError as e:
        raise to_http_exception(e)


@router.post("/{invoice_id}/pay", response_model=dict)
async def pay_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Mark paid. Refused unless the contractor is allowed at this moment."""
    try:
        return PaymentGate(db, policy).mark_paid(invoice_id)
    except ComplianceError as e:
        raise to_http_exception(e)


@router.post("/{invoice_id}/cancel", response_model=dict)
async def cancel_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    try:
        return PaymentGate(db, policy).cancel(invoice_id)
    except ComplianceError as e:
        raise to_http_exception(e)
