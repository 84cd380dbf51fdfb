"""
Trade Compliance Engine - Value Objects

Immutable inputs and outputs that flow between the scorer, classifier,
aggregator, payment gate and notification scheduler. None of these
objects touch the database.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from .db_models import (
    ComplianceStatus, DocumentType, NotificationChannel,
    PaymentStatus, VerificationStatus,
)


# =============================================================================
# AI ANALYSIS
# =============================================================================

class FraudSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


CRITICAL_SEVERITIES = frozenset({FraudSeverity.HIGH, FraudSeverity.CRITICAL})


@dataclass(frozen=True)
class FraudIndicator:
    """One forensic finding from the vision model."""
    type: str  # font_mismatch, date_manipulation, logo_inconsistency, ...
    severity: FraudSeverity
    confidence: float  # 0.0 to 1.0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "description": self.description,
        }


@dataclass(frozen=True)
class ExtractedDocumentData:
    """Fields read off the document. Any field may be missing."""
    policy_number: Optional[str] = None
    provider_name: Optional[str] = None
    insured_name: Optional[str] = None
    coverage_amount: Optional[float] = None  # Pounds, as printed on the certificate
    excess_amount: Optional[float] = None
    start_date: Optional[date] = None
    expiry_date: Optional[date] = None
    coverage_types: List[str] = field(default_factory=list)
    document_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policyNumber": self.policy_number,
            "providerName": self.provider_name,
            "insuredName": self.insured_name,
            "coverageAmount": self.coverage_amount,
            "excessAmount": self.excess_amount,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "expiryDate": self.expiry_date.isoformat() if self.expiry_date else None,
            "coverageTypes": list(self.coverage_types),
            "documentType": self.document_type,
        }


@dataclass(frozen=True)
class AIAnalysis:
    """Structured output of the document vision model."""
    quality_score: float  # 0 to 100
    extracted_data: ExtractedDocumentData = field(default_factory=ExtractedDocumentData)
    fraud_indicators: List[FraudIndicator] = field(default_factory=list)
    model_version: Optional[str] = None
    processing_time_ms: int = 0
    is_readable: bool = True  # False when the model could not read the scan reliably

    @property
    def has_critical_fraud(self) -> bool:
        return any(ind.severity in CRITICAL_SEVERITIES for ind in self.fraud_indicators)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualityScore": self.quality_score,
            "isReadable": self.is_readable,
            "extractedData": self.extracted_data.to_dict(),
            "fraudIndicators": [ind.to_dict() for ind in self.fraud_indicators],
            "modelVersion": self.model_version,
            "processingTimeMs": self.processing_time_ms,
        }


# =============================================================================
# SCORING & CLASSIFICATION OUTPUT
# =============================================================================

@dataclass(frozen=True)
class ScoreResult:
    """Output of the fraud/quality scorer."""
    score: int
    pre_rejection_score: float
    rejection_reasons: List[str] = field(default_factory=list)
    has_critical_fraud: bool = False


@dataclass(frozen=True)
class ClassificationResult:
    """Document classification handed back to the upload caller."""
    status: ComplianceStatus
    verification_score: int
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "verification_score": self.verification_score,
            "rejection_reason": self.rejection_reason,
        }


# =============================================================================
# CONTRACTOR & PAYMENT OUTPUT
# =============================================================================

@dataclass(frozen=True)
class DocumentSnapshot:
    """The slice of a current document the aggregator and gate read."""
    document_type: DocumentType
    status: ComplianceStatus
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class ContractorAggregate:
    contractor_id: str
    verification_status: VerificationStatus
    payment_status: PaymentStatus
    risk_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contractor_id": self.contractor_id,
            "verification_status": self.verification_status.value,
            "payment_status": self.payment_status.value,
            "risk_score": self.risk_score,
        }


@dataclass(frozen=True)
class GatingDecision:
    can_pay: bool
    block_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"can_pay": self.can_pay, "block_reason": self.block_reason}


# =============================================================================
# INBOUND EVENTS
# =============================================================================

@dataclass
class DocumentUploadEvent:
    """Upload handed over by the upload handler after storage."""
    contractor_id: str
    document_type: str
    provider_name: Optional[str]
    expiry_date: Optional[date]
    file_hash: Optional[str] = None
    coverage_amount: Optional[int] = None  # Pence
    start_date: Optional[date] = None
    policy_number: Optional[str] = None
    registration_number: Optional[str] = None
    ai_analysis: Optional[Dict[str, Any]] = None  # Raw model payload, if already analysed
    uploaded_by: Optional[str] = None


@dataclass
class InvoiceEvent:
    contractor_id: str
    amount: int  # Pence
    due_date: date
    invoice_number: Optional[str] = None
    currency: str = "GBP"
    description: Optional[str] = None


@dataclass(frozen=True)
class UploadResult:
    document_id: str
    version: int
    classification: ClassificationResult
    aggregate: ContractorAggregate
    superseded_document_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "version": self.version,
            **self.classification.to_dict(),
            "superseded_document_id": self.superseded_document_id,
            "contractor": self.aggregate.to_dict(),
        }


# =============================================================================
# OUTBOUND DISPATCH
# =============================================================================

@dataclass(frozen=True)
class DispatchRequest:
    """What the transport collaborator receives. No channel specifics."""
    channel: NotificationChannel
    recipient: str
    rendered_message: str
    template_id: str
    subject: Optional[str] = None
