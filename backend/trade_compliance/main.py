"""
Trade Compliance Engine - FastAPI Application

Main entry point for the Trade Compliance Engine backend.

Architecture:
- Upload → Scorer → Classifier → ComplianceDocument
- Current documents → Aggregator → Contractor verification/payment status
- Contractor payment status → Payment Gate → Invoice approved/blocked
- Expiry dates → Notification Scheduler → Reminders
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import documents_router, contractors_router, invoices_router, scheduler_router, public_router
from .database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Trade Compliance Engine",
    description="""
    Trade Compliance Engine - Contractor Verification & Payment Gating

    Verifies sub-contractor insurance and trade certifications, tracks
    their expiry, and blocks invoice payments for non-compliant contractors.

    ## Pipeline
    1. **Scorer**: AI analysis → verification score and rejection reasons
    2. **Classifier**: score + expiry date → document status
    3. **Aggregator**: current documents → contractor verification and payment status
    4. **Payment Gate**: payment status → invoice approved or blocked
    5. **Notification Scheduler**: expiry horizons → reminders

    ## Key Principles
    - Contractor status is derived, never set by hand (except suspend/block)
    - Exactly one current document per contractor and type
    - A payment is never released while the contractor is non-compliant
    - Each reminder is sent at most once per document and horizon
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(contractors_router)
app.include_router(documents_router)
app.include_router(invoices_router)
app.include_router(scheduler_router)
app.include_router(public_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Trade Compliance Engine",
        "version": "1.0.0",
        "description": "Contractor Verification & Payment Gating",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m trade_compliance.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
