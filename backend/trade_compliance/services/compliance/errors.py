"""
Compliance engine exceptions.

Routers translate these into HTTP responses; the daily sweep treats
DerivationError as fatal.
"""


class ComplianceError(Exception):
    """Base class for compliance engine failures."""
    pass


class DocumentValidationError(ComplianceError):
    """Raised when an upload is malformed. Never silently defaulted."""
    pass


class DuplicateDocumentError(ComplianceError):
    """Raised when the same file is already a current document for the contractor."""
    pass


class ContractorNotFoundError(ComplianceError):
    pass


class DocumentNotFoundError(ComplianceError):
    pass


class InvoiceNotFoundError(ComplianceError):
    pass


class InvalidTransitionError(ComplianceError):
    """Raised when a requested status change is not permitted."""
    pass


class DerivationError(ComplianceError):
    """
    Raised when aggregation or gating fails unexpectedly.
    Fatal: logged and re-raised, never swallowed.
    """
    pass


class InvoiceValidationError(ComplianceError):
    pass


class DuplicateInvoiceError(ComplianceError):
    """Raised when an invoice number is reused for the same contractor."""
    pass
