"""Trade Compliance Engine - Data Models"""
from .db_models import (
    # Enums
    DocumentType, ComplianceStatus, VerificationStatus, PaymentStatus,
    AdminOverride, InvoiceStatus, NotificationChannel, NotificationStatus, ActorType,
    # Tables
    ContractorDB, ComplianceDocumentDB, CurrentDocumentDB, InvoiceDB,
    PaymentRunDB, PaymentRunItemDB, NotificationDB, VerificationLogDB,
)
from .analysis import (
    FraudSeverity, FraudIndicator, ExtractedDocumentData, AIAnalysis,
    ScoreResult, ClassificationResult, DocumentSnapshot, ContractorAggregate,
    GatingDecision, DocumentUploadEvent, InvoiceEvent, UploadResult, DispatchRequest,
)

__all__ = [
    "DocumentType", "ComplianceStatus", "VerificationStatus", "PaymentStatus",
    "AdminOverride", "InvoiceStatus", "NotificationChannel", "NotificationStatus", "ActorType",
    "ContractorDB", "ComplianceDocumentDB", "CurrentDocumentDB", "InvoiceDB",
    "PaymentRunDB", "PaymentRunItemDB", "NotificationDB", "VerificationLogDB",
    "FraudSeverity", "FraudIndicator", "ExtractedDocumentData", "AIAnalysis",
    "ScoreResult", "ClassificationResult", "DocumentSnapshot", "ContractorAggregate",
    "GatingDecision", "DocumentUploadEvent", "InvoiceEvent", "UploadResult", "DispatchRequest",
]
