"""
Shared fixtures: an in-memory SQLite database, contractor and document
factories, and a clean AI analysis payload.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trade_compliance.config import CompliancePolicy
from trade_compliance.database import Base
from trade_compliance.models import db_models  # noqa: F401
from trade_compliance.models.analysis import DocumentUploadEvent
from trade_compliance.models.db_models import ContractorDB


TODAY = date(2026, 10, 19)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def policy():
    return CompliancePolicy(portal_url="https://portal.example.com")


@pytest.fixture
def transport():
    """Transport double that records every dispatch request."""
    mock = MagicMock()
    mock.send.side_effect = lambda request: f"msg-{uuid4()}"
    return mock


@pytest.fixture
def make_contractor(db):
    def _make(**overrides):
        fields = {
            "id": str(uuid4()),
            "company_name": "Acme Plumbing Ltd",
            "contact_name": "Sam Taylor",
            "company_number": "01234567",
            "email": "sam@acme-plumbing.co.uk",
            "whatsapp_number": "07700 900123",
        }
        fields.update(overrides)
        contractor = ContractorDB(**fields)
        db.add(contractor)
        db.commit()
        return contractor
    return _make


def analysis_payload(expiry_date, quality=95, coverage=10_000_000, policy_number="PL-778812",
                     provider="Hiscox", fraud_indicators=None):
    """Vision model output in the camelCase shape the upload handler forwards."""
    return {
        "qualityScore": quality,
        "extractedData": {
            "policyNumber": policy_number,
            "providerName": provider,
            "insuredName": "Acme Plumbing Ltd",
            "coverageAmount": coverage,
            "startDate": None,
            "expiryDate": expiry_date.isoformat() if expiry_date else None,
            "coverageTypes": ["public_liability"],
        },
        "fraudIndicators": fraud_indicators or [],
        "modelVersion": "vision-test",
    }


def upload_event(contractor_id, expiry_date, document_type="public_liability", analysis="clean", **overrides):
    """Upload event with a clean analysis unless told otherwise."""
    if analysis == "clean":
        analysis = analysis_payload(expiry_date)
    fields = {
        "contractor_id": contractor_id,
        "document_type": document_type,
        "provider_name": "Hiscox",
        "expiry_date": expiry_date,
        "policy_number": "PL-778812",
        "coverage_amount": 1_000_000_000,
        "file_hash": uuid4().hex,
        "ai_analysis": analysis,
    }
    fields.update(overrides)
    return DocumentUploadEvent(**fields)


@pytest.fixture
def upload(db, policy, today):
    """Upload a document through the real service."""
    from trade_compliance.services.compliance import DocumentService

    def _upload(contractor, days_to_expiry=365, on=None, **kwargs):
        on = on or today
        event = upload_event(contractor.id, on + timedelta(days=days_to_expiry), **kwargs)
        return DocumentService(db, policy).upload(event, today=on)
    return _upload


@pytest.fixture
def make_analysis():
    return analysis_payload


@pytest.fixture
def make_event():
    return upload_event
