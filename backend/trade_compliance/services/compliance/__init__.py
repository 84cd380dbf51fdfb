"""
Compliance Verification & Payment-Gating Engine

upload -> scorer -> classifier -> aggregator -> payment gate
                                             -> notification scheduler

The daily sweep drives reclassification, aggregation, gating and
reminders in that order.
"""

from .errors import (
    ComplianceError,
    DocumentValidationError,
    DuplicateDocumentError,
    ContractorNotFoundError,
    DocumentNotFoundError,
    InvoiceNotFoundError,
    InvoiceValidationError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    DerivationError,
)
from .scorer import score_document
from .classifier import classify_upload, reclassify_by_date, expiry_status, STATUS_CONFIG
from .analyzer import (
    DocumentAnalyzer, StaticAnalyzer, PayloadAnalyzer, UNAVAILABLE, parse_analysis,
)
from .aggregator import aggregate, ComplianceAggregator
from .documents import DocumentService
from .payment_gate import evaluate, PaymentGate
from .notifications import NotificationScheduler, NotificationTransport, LoggingTransport
from .daily_sweep import ComplianceSweep

__all__ = [
    'ComplianceError',
    'DocumentValidationError',
    'DuplicateDocumentError',
    'ContractorNotFoundError',
    'DocumentNotFoundError',
    'InvoiceNotFoundError',
    'InvoiceValidationError',
    'DuplicateInvoiceError',
    'InvalidTransitionError',
    'DerivationError',
    'score_document',
    'classify_upload',
    'reclassify_by_date',
    'expiry_status',
    'STATUS_CONFIG',
    'DocumentAnalyzer',
    'StaticAnalyzer',
    'PayloadAnalyzer',
    'UNAVAILABLE',
    'parse_analysis',
    'aggregate',
    'ComplianceAggregator',
    'DocumentService',
    'evaluate',
    'PaymentGate',
    'NotificationScheduler',
    'NotificationTransport',
    'LoggingTransport',
    'ComplianceSweep',
]
