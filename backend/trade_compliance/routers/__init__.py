"""Trade Compliance Engine - API Routers"""
from .documents import router as documents_router
from .contractors import router as contractors_router
from .invoices import router as invoices_router
from .scheduler import router as scheduler_router
from .public import router as public_router

__all__ = [
    "documents_router",
    "contractors_router",
    "invoices_router",
    "scheduler_router",
    "public_router",
]
