"""
Contractor API Routes

Onboarding, compliance status lookup and administrative suspend/block.
verification_status, payment_status and risk_score are read-only here;
only the aggregator writes them.
"""
from datetime import date
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import CompliancePolicy
from ..database import get_db
from ..models.db_models import AdminOverride, ContractorDB
from ..services.compliance import ComplianceAggregator, ComplianceError
from ..services.compliance.documents import serialize_document
from ..services.compliance.payment_gate import PaymentGate
from .common import get_policy, to_http_exception


router = APIRouter(prefix="/contractors", tags=["contractors"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateContractorRequest(BaseModel):
    company_name: str = Field(..., min_length=1)
    contact_name: str = Field(..., min_length=1)
    trading_name: Optional[str] = None
    company_number: Optional[str] = Field(None, max_length=8, description="Companies House number")
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: Optional[str] = None
    has_employees: bool = Field(default=False, description="Makes employers' liability mandatory")


class OverrideRequest(BaseModel):
    """Suspend, block, or clear (null) the administrative override."""
    override: Optional[AdminOverride] = None
    performed_by: Optional[str] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=dict, status_code=201)
async def create_contractor(
    request: CreateContractorRequest,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Onboard a contractor. Starts unverified until documents arrive."""
    contractor = ContractorDB(id=str(uuid4()), **request.model_dump())
    db.add(contractor)
    db.flush()

    aggregate = ComplianceAggregator(db, policy).recompute(contractor.id)
    db.commit()

    return {
        "id": contractor.id,
        "company_name": contractor.company_name,
        **aggregate.to_dict(),
    }


@router.get("/{contractor_id}", response_model=dict)
@router.get("/{contractor_id}/compliance", response_model=dict)
async def get_contractor_compliance(
    contractor_id: str,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Current compliance aggregate, payment decision and current documents."""
    contractor = db.get(ContractorDB, contractor_id)
    if contractor is None or contractor.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Contractor not found")

    aggregator = ComplianceAggregator(db, policy)
    decision = PaymentGate(db, policy).decide(contractor)
    today = date.today()

    return {
        "contractor_id": contractor.id,
        "company_name": contractor.company_name,
        "verification_status": contractor.verification_status.value,
        "payment_status": contractor.payment_status.value,
        "risk_score": contractor.risk_score,
        "last_verified_at": contractor.last_verified_at.isoformat() if contractor.last_verified_at else None,
        "admin_override": contractor.admin_override.value if contractor.admin_override else None,
        "mandatory_document_types": sorted(aggregator.mandatory_types_for(contractor)),
        "payment": decision.to_dict(),
        "documents": [
            serialize_document(doc, today)
            for doc in aggregator.current_documents(contractor.id)
        ],
    }


@router.post("/{contractor_id}/override", response_model=dict)
async def set_contractor_override(
    contractor_id: str,
    request: OverrideRequest,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Administrative suspend/block. Takes precedence until cleared."""
    try:
        aggregate = ComplianceAggregator(db, policy).set_override(
            contractor_id,
            request.override,
            performed_by=request.performed_by,
        )
    except ComplianceError as e:
        raise to_http_exception(e)

    return aggregate.to_dict()
