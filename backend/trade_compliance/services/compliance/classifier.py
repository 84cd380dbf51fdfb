"""
Document Lifecycle Classifier

Assigns a compliance document's status from its score, rejection reasons
and expiry date.

At upload the full precedence applies (first match wins):
    1. critical fraud            -> FRAUD_SUSPECTED
    2. any rejection reason      -> REJECTED
    3. expiry on or before today -> EXPIRED
    4. score below threshold     -> PENDING_REVIEW
    5. expiry within window      -> EXPIRING_SOON, otherwise VALID

The daily sweep re-evaluates accepted documents with the date rules only.
"""
from datetime import date
from typing import Any, Dict, Optional

from ...config import CompliancePolicy
from ...models.analysis import ClassificationResult, ScoreResult
from ...models.db_models import ComplianceStatus
from .scorer import FRAUD_REVIEW_REASON


# Score recorded when no analysis was available
DEFAULT_VERIFICATION_SCORE = 50


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# "date_driven" states are re-evaluated by the daily sweep.
# "satisfies_requirement" states count towards a mandatory document type.
# Every state may be left through a manual override; "allowed_transitions"
# lists only the automatic ones.
#
# =============================================================================

STATUS_CONFIG = {
    ComplianceStatus.PENDING_REVIEW: {
        "description": "No analysis yet, or analysis was inconclusive",
        "allowed_transitions": [],  # Waits for manual review
        "satisfies_requirement": False,
        "date_driven": False,
    },
    ComplianceStatus.VALID: {
        "description": "Accepted and more than the warning window from expiry",
        "allowed_transitions": [ComplianceStatus.EXPIRING_SOON, ComplianceStatus.EXPIRED],
        "satisfies_requirement": True,
        "date_driven": True,
    },
    ComplianceStatus.EXPIRING_SOON: {
        "description": "Accepted and within the warning window",
        "allowed_transitions": [ComplianceStatus.VALID, ComplianceStatus.EXPIRED],
        "satisfies_requirement": True,
        "date_driven": True,
    },
    ComplianceStatus.EXPIRED: {
        "description": "Expiry date reached",
        "allowed_transitions": [],  # Replaced by a new upload, never revived
        "satisfies_requirement": False,
        "date_driven": False,
    },
    ComplianceStatus.REJECTED: {
        "description": "Failed a specific, actionable check",
        "allowed_transitions": [],
        "satisfies_requirement": False,
        "date_driven": False,
    },
    ComplianceStatus.FRAUD_SUSPECTED: {
        "description": "High or critical fraud indicator, manual override only",
        "allowed_transitions": [],
        "satisfies_requirement": False,
        "date_driven": False,
    },
}


def satisfies_requirement(status: ComplianceStatus) -> bool:
    return STATUS_CONFIG[status]["satisfies_requirement"]


def is_date_driven(status: ComplianceStatus) -> bool:
    return STATUS_CONFIG[status]["date_driven"]


# =============================================================================
# DATE RULES
# =============================================================================

def status_for_date(
    expiry_date: date,
    today: date,
    expiring_soon_days: int,
) -> ComplianceStatus:
    """Expiry day itself counts as expired."""
    days_remaining = (expiry_date - today).days
    if days_remaining <= 0:
        return ComplianceStatus.EXPIRED
    if days_remaining <= expiring_soon_days:
        return ComplianceStatus.EXPIRING_SOON
    return ComplianceStatus.VALID


def expiry_status(expiry_date: Optional[date], today: date, expiring_soon_days: int = 30) -> Dict[str, Any]:
    """
    Days remaining plus a display label, for dashboards and reminders.
    """
    if expiry_date is None:
        return {"days_remaining": None, "status": "unknown", "label": "No expiry date"}

    days = (expiry_date - today).days
    if days < 0:
        return {"days_remaining": days, "status": "expired", "label": f"Expired {abs(days)} days ago"}
    if days == 0:
        return {"days_remaining": 0, "status": "expired", "label": "Expires today"}
    if days <= 7:
        return {"days_remaining": days, "status": "critical", "label": f"Expires in {days} days"}
    if days <= expiring_soon_days:
        return {"days_remaining": days, "status": "warning", "label": f"Expires in {days} days"}
    return {"days_remaining": days, "status": "valid", "label": f"Valid for {days} days"}


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify_upload(
    score_result: Optional[ScoreResult],
    expiry_date: date,
    today: date,
    policy: Optional[CompliancePolicy] = None,
) -> ClassificationResult:
    """
    Classify a freshly uploaded document.

    A missing score_result means the analyzer was unavailable; the document
    is kept for manual review.
    """
    policy = policy or CompliancePolicy()

    if score_result is None:
        return ClassificationResult(
            status=ComplianceStatus.PENDING_REVIEW,
            verification_score=DEFAULT_VERIFICATION_SCORE,
        )

    score = score_result.score

    if score_result.has_critical_fraud:
        return ClassificationResult(
            status=ComplianceStatus.FRAUD_SUSPECTED,
            verification_score=score,
            rejection_reason=FRAUD_REVIEW_REASON,
        )

    if score_result.rejection_reasons:
        return ClassificationResult(
            status=ComplianceStatus.REJECTED,
            verification_score=score,
            rejection_reason="; ".join(score_result.rejection_reasons),
        )

    if expiry_date <= today:
        return ClassificationResult(status=ComplianceStatus.EXPIRED, verification_score=score)

    if score < policy.acceptance_threshold:
        return ClassificationResult(status=ComplianceStatus.PENDING_REVIEW, verification_score=score)

    return ClassificationResult(
        status=status_for_date(expiry_date, today, policy.expiring_soon_days),
        verification_score=score,
    )


def reclassify_by_date(
    status: ComplianceStatus,
    expiry_date: date,
    today: date,
    policy: Optional[CompliancePolicy] = None,
) -> ComplianceStatus:
    """
    Daily sweep rule. Only accepted (date-driven) states move; every other
    state is returned unchanged.
    """
    if status not in STATUS_CONFIG:
        raise ValueError(f"Unknown compliance status: {status}")

    if not is_date_driven(status):
        return status

    policy = policy or CompliancePolicy()
    return status_for_date(expiry_date, today, policy.expiring_soon_days)
