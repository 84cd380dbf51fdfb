"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Daily compliance sweep, reminders and notification retries.
"""
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import CompliancePolicy
from ..database import get_db
from ..services.compliance import (
    ComplianceAggregator, ComplianceError, ComplianceSweep, DocumentService,
    NotificationScheduler, NotificationTransport,
)
from .common import get_policy, get_transport, to_http_exception, verify_internal_key


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/daily-sweep", response_model=dict)
async def run_daily_sweep(
    run_date: Optional[date] = None,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
    transport: NotificationTransport = Depends(get_transport),
    _: bool = Depends(verify_internal_key),
):
    """
    Run the daily compliance sweep.

    System-automatic - reclassifies documents by date, recomputes every
    contractor, gates pending invoices and sends due reminders.
    Safe to re-run for the same date.
    """
    sweep = ComplianceSweep(db, policy, transport)
    try:
        return sweep.run(run_date)
    except ComplianceError as e:
        raise to_http_exception(e)


@router.post("/reclassify", response_model=dict)
async def run_reclassification(
    run_date: Optional[date] = None,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
    _: bool = Depends(verify_internal_key),
):
    """
    Move current documents between valid, expiring_soon and expired.

    Aggregates are recomputed for every contractor whose documents changed.
    """
    changes = DocumentService(db, policy).reclassify_by_date(run_date)

    aggregator = ComplianceAggregator(db, policy)
    for contractor_id in sorted({c["contractor_id"] for c in changes}):
        aggregator.recompute(contractor_id)
        db.commit()

    return {
        "task": "reclassification",
        "run_date": (run_date or date.today()).isoformat(),
        "documents_changed": len(changes),
        "changes": changes,
    }


@router.post("/send-reminders", response_model=dict)
async def send_reminders(
    run_date: Optional[date] = None,
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
    transport: NotificationTransport = Depends(get_transport),
    _: bool = Depends(verify_internal_key),
):
    """
    Send expiry reminders due today.

    Each (document, horizon) pair is sent at most once.
    """
    scheduler = NotificationScheduler(db, policy, transport)
    result = scheduler.run(run_date)

    return {"task": "send_reminders", **result}


@router.post("/retry-notifications", response_model=dict)
async def retry_notifications(
    db: Session = Depends(get_db),
    policy: CompliancePolicy = Depends(get_policy),
    transport: NotificationTransport = Depends(get_transport),
    _: bool = Depends(verify_internal_key),
):
    """
    Retry failed notifications that have retries left.
    """
    scheduler = NotificationScheduler(db, policy, transport)
    result = scheduler.retry_failed()

    return {
        "task": "retry_notifications",
        "run_date": datetime.now(timezone.utc).isoformat(),
        **result,
    }
