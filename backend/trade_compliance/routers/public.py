"""
Public Verification API

Read-only lookup a customer can use to check a contractor before hiring.
Only active contractors are searchable, and only non-sensitive fields are
returned: no policy numbers, coverage amounts, contact details or
payment state.
"""
from datetime import date
from enum import Enum

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import CompliancePolicy
from ..database import get_db
from ..models.db_models import ContractorDB, VerificationStatus
from ..services.compliance import ComplianceAggregator
from .common import get_policy


router = APIRouter(prefix="/public", tags=["public"])


FOUND_DISCLAIMER = (
    "This verification is based on documents and data submitted to our system. "
    "Always conduct your own due diligence before engaging any contractor."
)
NOT_FOUND_DISCLAIMER = (
    "This company is not registered in our verification system. This does not "
    "necessarily mean they are not legitimate - please conduct your own due diligence."
)


class LookupType(str, Enum):
    COMPANY_NAME = "company_name"
    COMPANY_NUMBER = "company_number"


@router.get("/verify", response_model=dict)
async def verify_contractor(
    query: str = Query(..., min_length=2, max_length=255),
    type: LookupType = Query(LookupType.COMPANY_NAME),
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Find one active contractor by company number or name."""
    query = query.strip()
    lookup = db.query(ContractorDB).filter(
        ContractorDB.is_active.is_(True),
        ContractorDB.deleted_at.is_(None),
    )
    if type == LookupType.COMPANY_NUMBER:
        lookup = lookup.filter(ContractorDB.company_number == query.upper())
    else:
        lookup = lookup.filter(ContractorDB.company_name.ilike(f"%{query}%"))

    contractor = lookup.order_by(ContractorDB.company_name, ContractorDB.id).first()
    if contractor is None:
        return {
            "found": False,
            "verification_status": VerificationStatus.UNVERIFIED.value,
            "disclaimer": NOT_FOUND_DISCLAIMER,
        }

    today = date.today()
    documents = ComplianceAggregator(db, policy).current_documents(contractor.id)

    return {
        "found": True,
        "company_name": contractor.company_name,
        "trading_name": contractor.trading_name,
        "company_number": contractor.company_number,
        "verification_status": contractor.verification_status.value,
        "last_verified_at": contractor.last_verified_at.isoformat() if contractor.last_verified_at else None,
        "member_since": contractor.onboarded_at.isoformat() if contractor.onboarded_at else None,
        "documents": [
            {
                "document_type": doc.document_type.value,
                "status": doc.status.value,
                "provider_name": doc.provider_name,
                "expiry_date": doc.expiry_date.isoformat(),
                "days_until_expiry": (doc.expiry_date - today).days,
            }
            for doc in sorted(documents, key=lambda d: (d.expiry_date, d.document_type.value))
        ],
        "disclaimer": FOUND_DISCLAIMER,
    }
