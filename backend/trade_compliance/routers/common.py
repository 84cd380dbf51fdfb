"""
Shared router dependencies and error translation.
"""
from functools import lru_cache

from fastapi import Header, HTTPException

from ..config import INTERNAL_API_KEY, CompliancePolicy, load_policy
from ..services.compliance import (
    ComplianceError, ContractorNotFoundError, DocumentNotFoundError,
    DocumentValidationError, DuplicateDocumentError, DuplicateInvoiceError,
    InvalidTransitionError, InvoiceNotFoundError, InvoiceValidationError,
    LoggingTransport, NotificationTransport,
)


@lru_cache()
def get_policy() -> CompliancePolicy:
    return load_policy()


def get_transport() -> NotificationTransport:
    return LoggingTransport()


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


ERROR_STATUS = (
    ((DocumentValidationError, InvoiceValidationError), 400),
    ((ContractorNotFoundError, DocumentNotFoundError, InvoiceNotFoundError), 404),
    ((DuplicateDocumentError, DuplicateInvoiceError, InvalidTransitionError), 409),
)


def to_http_exception(error: ComplianceError) -> HTTPException:
    for error_types, status_code in ERROR_STATUS:
        if isinstance(error, error_types):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
