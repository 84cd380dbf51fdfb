"""
Compliance Document API Routes

Upload handler hand-off, manual verification and administrative delete.
File storage happens upstream; these endpoints receive the stored
document's metadata, content hash and any AI analysis already produced.
"""
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import CompliancePolicy
from ..database import get_db
from ..models.analysis import DocumentUploadEvent
from ..models.db_models import ComplianceStatus, DocumentType
from ..services.compliance import ComplianceError, DocumentService
from ..services.compliance.documents import serialize_document
from .common import get_policy, to_http_exception


router = APIRouter(prefix="/documents", tags=["documents"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class UploadDocumentRequest(BaseModel):
    """Stored document handed over by the upload handler."""
    contractor_id: str = Field(..., description="Owning contractor")
    document_type: str = Field(..., description="public_liability, gas_safe, ...")
    provider_name: str = Field(..., description="Insurer or issuing body")
    expiry_date: Optional[date] = Field(None, description="Expiry date printed on the document")
    start_date: Optional[date] = None
    policy_number: Optional[str] = None
    registration_number: Optional[str] = None
    coverage_amount: Optional[int] = Field(None, description="Cover in pence")
    file_hash: Optional[str] = Field(None, description="SHA-256 of the stored file")
    ai_analysis: Optional[Dict[str, Any]] = Field(None, description="Vision model output, if already run")
    uploaded_by: Optional[str] = None


class UploadDocumentResponse(BaseModel):
    document_id: str
    version: int
    status: str
    verification_score: int
    rejection_reason: Optional[str] = None
    superseded_document_id: Optional[str] = None
    message: str


class VerifyDocumentRequest(BaseModel):
    """Manual override of a document's status."""
    status: ComplianceStatus
    verified_by: Optional[str] = None
    reason: Optional[str] = Field(None, description="Shown to the contractor when rejecting")


UPLOAD_MESSAGES = {
    ComplianceStatus.VALID: "Document verified successfully",
    ComplianceStatus.EXPIRING_SOON: "Document verified but expires soon",
    ComplianceStatus.EXPIRED: "Document has expired",
    ComplianceStatus.PENDING_REVIEW: "Document uploaded and pending review",
    ComplianceStatus.REJECTED: "Document rejected",
    ComplianceStatus.FRAUD_SUSPECTED: "Document flagged for manual review",
}


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=UploadDocumentResponse, status_code=201)
async def upload_document(
    request: UploadDocumentRequest,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """
    Score, classify and store a new document version.

    Superseding the contractor's current document of the same type and
    recomputing the contractor's compliance happen in the same transaction.
    """
    service = DocumentService(db, policy)
    event = DocumentUploadEvent(**request.model_dump())

    try:
        result = service.upload(event)
    except ComplianceError as e:
        raise to_http_exception(e)

    status = result.classification.status
    return UploadDocumentResponse(
        document_id=result.document_id,
        version=result.version,
        status=status.value,
        verification_score=result.classification.verification_score,
        rejection_reason=result.classification.rejection_reason,
        superseded_document_id=result.superseded_document_id,
        message=UPLOAD_MESSAGES[status],
    )


@router.post("/{document_id}/verify", response_model=dict)
async def verify_document(
    document_id: str,
    request: VerifyDocumentRequest,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Administrative status override. The only way out of fraud_suspected."""
    service = DocumentService(db, policy)
    try:
        return service.manual_verify(
            document_id,
            request.status,
            verified_by=request.verified_by,
            reason=request.reason,
        )
    except ComplianceError as e:
        raise to_http_exception(e)


@router.delete("/{document_id}", response_model=dict)
async def delete_document(
    document_id: str,
    performed_by: Optional[str] = None,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """Hard delete one document version (administrative)."""
    service = DocumentService(db, policy)
    try:
        return service.delete_document(document_id, performed_by=performed_by)
    except ComplianceError as e:
        raise to_http_exception(e)


@router.get("/contractor/{contractor_id}/history/{document_type}", response_model=dict)
async def get_document_history(
    contractor_id: str,
    document_type: DocumentType,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
):
    """All versions of one document type, newest first."""
    service = DocumentService(db, policy)
    versions = service.history(contractor_id, document_type)
    return {
        "contractor_id": contractor_id,
        "document_type": document_type.value,
        "versions": [serialize_document(doc) for doc in versions],
    }
