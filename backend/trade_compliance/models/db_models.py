"""
Trade Compliance Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, BigInteger, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, Date, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class DocumentType(str, Enum):
    """Compliance artifact types a contractor can upload."""
    PUBLIC_LIABILITY = "public_liability"
    EMPLOYERS_LIABILITY = "employers_liability"
    PROFESSIONAL_INDEMNITY = "professional_indemnity"
    GAS_SAFE = "gas_safe"
    NICEIC = "niceic"
    NAPIT = "napit"
    OFTEC = "oftec"
    CSCS = "cscs"
    BUILDING_REGULATIONS = "building_regulations"
    OTHER_CERTIFICATION = "other_certification"


class ComplianceStatus(str, Enum):
    """Lifecycle status of a single compliance document."""
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"
    FRAUD_SUSPECTED = "fraud_suspected"


class VerificationStatus(str, Enum):
    """Derived contractor verification status."""
    VERIFIED = "verified"
    PARTIALLY_VERIFIED = "partially_verified"
    UNVERIFIED = "unverified"
    SUSPENDED = "suspended"
    BLOCKED = "blocked"


class PaymentStatus(str, Enum):
    """Derived contractor payment eligibility."""
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"
    PENDING_REVIEW = "pending_review"


class AdminOverride(str, Enum):
    """Administrative action that forces a verification status until cleared."""
    SUSPENDED = "suspended"
    BLOCKED = "blocked"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"
    PAID = "paid"
    CANCELLED = "cancelled"


class NotificationChannel(str, Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ActorType(str, Enum):
    """Who triggered a recorded check."""
    USER = "user"
    SYSTEM = "system"


# =============================================================================
# CONTRACTORS
# =============================================================================

class ContractorDB(Base):
    """
    Sub-contractor company and contact details.

    verification_status, payment_status, risk_score and last_verified_at are
    derived columns written only by the aggregator.
    """
    __tablename__ = "contractors"

    id = Column(String(36), primary_key=True)  # UUID

    company_name = Column(String(255), nullable=False)
    trading_name = Column(String(255), nullable=True)
    company_number = Column(String(8), nullable=True, index=True)  # Companies House ID
    contact_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    whatsapp_number = Column(String(32), nullable=True)
    has_employees = Column(Boolean, default=False)  # Widens the mandatory document set

    # Derived status
    verification_status = Column(SQLEnum(VerificationStatus), default=VerificationStatus.UNVERIFIED, nullable=False)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING_REVIEW, nullable=False)
    risk_score = Column(Integer, default=50, nullable=False)
    last_verified_at = Column(DateTime, nullable=True)

    # Administrative suspend/block, takes precedence over computed status
    admin_override = Column(SQLEnum(AdminOverride), nullable=True)

    is_active = Column(Boolean, default=True)
    onboarded_at = Column(DateTime, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)  # Soft delete

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    documents = relationship("ComplianceDocumentDB", back_populates="contractor", cascade="all, delete-orphan")
    invoices = relationship("InvoiceDB", back_populates="contractor")


# =============================================================================
# COMPLIANCE DOCUMENTS
# =============================================================================

class ComplianceDocumentDB(Base):
    """
    One uploaded compliance artifact version.
    Append-only: a superseded version is never mutated except audit fields.
    """
    __tablename__ = "compliance_documents"

    id = Column(String(36), primary_key=True)  # UUID
    contractor_id = Column(String(36), ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False, index=True)

    document_type = Column(SQLEnum(DocumentType), nullable=False, index=True)
    provider_name = Column(String(255), nullable=False)
    policy_number = Column(String(100), nullable=True)
    registration_number = Column(String(100), nullable=True)
    coverage_amount = Column(BigInteger, nullable=True)  # Pence
    start_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=False, index=True)
    file_hash = Column(String(64), nullable=True, index=True)  # SHA-256 for duplicate detection

    # Verification
    status = Column(SQLEnum(ComplianceStatus), default=ComplianceStatus.PENDING_REVIEW, nullable=False, index=True)
    verification_score = Column(Integer, default=0, nullable=False)
    ai_analysis = Column(JSON, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    manually_verified = Column(Boolean, default=False)
    verified_by = Column(String(36), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    # Versioning
    version = Column(Integer, default=1, nullable=False)
    replaced_by_id = Column(String(36), ForeignKey("compliance_documents.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    contractor = relationship("ContractorDB", back_populates="documents")


class CurrentDocumentDB(Base):
    """
    Current-version index: one row per (contractor, document type) pointing
    at the document that is current. Moved atomically with each new upload.
    """
    __tablename__ = "current_documents"

    contractor_id = Column(String(36), ForeignKey("contractors.id", ondelete="CASCADE"), primary_key=True)
    document_type = Column(SQLEnum(DocumentType), primary_key=True)
    document_id = Column(String(36), ForeignKey("compliance_documents.id", ondelete="CASCADE"), nullable=False, unique=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    document = relationship("ComplianceDocumentDB")


# =============================================================================
# INVOICES & PAYMENT RUNS
# =============================================================================

class InvoiceDB(Base):
    """A payable owed to a contractor. Transitions driven by the payment gate."""
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("contractor_id", "invoice_number", name="uq_invoice_contractor_number"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    contractor_id = Column(String(36), ForeignKey("contractors.id", ondelete="RESTRICT"), nullable=False, index=True)

    invoice_number = Column(String(64), nullable=True)
    amount = Column(BigInteger, nullable=False)  # Pence
    currency = Column(String(3), default="GBP")
    description = Column(Text, nullable=True)
    due_date = Column(Date, nullable=False)

    status = Column(SQLEnum(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False, index=True)
    payment_block_reason = Column(Text, nullable=True)
    compliance_check_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    contractor = relationship("ContractorDB", back_populates="invoices")


class PaymentRunDB(Base):
    """One execution of the payment sweep."""
    __tablename__ = "payment_runs"

    id = Column(String(36), primary_key=True)  # UUID
    run_date = Column(Date, nullable=False)
    status = Column(String(20), default="in_progress")  # in_progress, completed, failed

    total_invoices = Column(Integer, default=0)
    approved_invoices = Column(Integer, default=0)
    blocked_invoices = Column(Integer, default=0)
    total_amount = Column(BigInteger, default=0)
    approved_amount = Column(BigInteger, default=0)
    blocked_amount = Column(BigInteger, default=0)

    processed_by = Column(String(36), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    items = relationship("PaymentRunItemDB", back_populates="payment_run", cascade="all, delete-orphan")


class PaymentRunItemDB(Base):
    """Per-invoice outcome inside a payment run."""
    __tablename__ = "payment_run_items"
    __table_args__ = (
        UniqueConstraint("payment_run_id", "invoice_id", name="uq_payment_run_invoice"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    payment_run_id = Column(String(36), ForeignKey("payment_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)

    status = Column(SQLEnum(InvoiceStatus), nullable=False)  # approved or blocked
    block_reason = Column(Text, nullable=True)
    checked_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    payment_run = relationship("PaymentRunDB", back_populates="items")


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationDB(Base):
    """
    A sent or attempted reminder.
    The (document_id, horizon_days) unique key is the de-duplication guard.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("document_id", "horizon_days", name="uq_notification_document_horizon"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    contractor_id = Column(String(36), ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(36), ForeignKey("compliance_documents.id", ondelete="CASCADE"), nullable=True)
    horizon_days = Column(Integer, nullable=True)  # NULL for one-off notices

    template_id = Column(String(64), nullable=False)
    channel = Column(SQLEnum(NotificationChannel), nullable=False)
    recipient = Column(String(255), nullable=True)
    subject = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)

    status = Column(SQLEnum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False, index=True)
    external_id = Column(String(255), nullable=True)  # Transport message id
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# VERIFICATION LOG
# =============================================================================

class VerificationLogDB(Base):
    """
    Append-only audit trail of compliance checks.
    """
    __tablename__ = "verification_logs"

    id = Column(String(36), primary_key=True)  # UUID
    contractor_id = Column(String(36), ForeignKey("contractors.id", ondelete="SET NULL"), nullable=True, index=True)
    document_id = Column(String(36), ForeignKey("compliance_documents.id", ondelete="SET NULL"), nullable=True, index=True)

    check_type = Column(String(50), nullable=False)  # ai_document_scan, manual_verification, automated_expiry_check, aggregate_recompute
    status = Column(String(20), nullable=False)      # success, failure, error, pending
    actor = Column(SQLEnum(ActorType), default=ActorType.SYSTEM, nullable=False)
    performed_by = Column(String(36), nullable=True)
    result = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
