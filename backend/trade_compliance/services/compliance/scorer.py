"""
Fraud/Quality Scorer

Turns an AI document analysis into a 0-100 verification score plus the
rejection reasons shown to the contractor.

Pure function of its inputs. The only date dependency is the expiry
comparison, and `today` is always passed in.

Scoring:
    100
  - quality penalty       (100 - qualityScore) * 0.2
  - missing fields        10 each for policyNumber, expiryDate, providerName
  - fraud indicators      confidence * severity weight
  = pre-rejection score   (clamped 0-100)
  - rejection reasons     10 each (an unreadable scan is always one)
  = final score           (clamped 0-100, rounded)
"""
from datetime import date
from typing import List, Optional

from ...config import CompliancePolicy
from ...models.analysis import AIAnalysis, FraudSeverity, ScoreResult


# =============================================================================
# WEIGHTS
# =============================================================================

QUALITY_PENALTY_FACTOR = 0.2
MISSING_FIELD_PENALTY = 10
REJECTION_REASON_PENALTY = 10

SEVERITY_WEIGHTS = {
    FraudSeverity.CRITICAL: 25,
    FraudSeverity.HIGH: 15,
    FraudSeverity.MEDIUM: 8,
    FraudSeverity.LOW: 3,
}

CRITICAL_FIELDS = ("policy_number", "expiry_date", "provider_name")

# Fraud reasons stay generic so the message cannot be used to refine a forgery
FRAUD_REVIEW_REASON = "Document flagged for potential fraud - manual review required"
MISSING_EXPIRY_REASON = "Could not determine expiry date from document"
UNREADABLE_REASON = "Poor document quality - please upload a clearer image"


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def format_pence(amount_pence: int) -> str:
    """£2,000,000 style formatting for whole-pound amounts."""
    pounds = amount_pence / 100
    if pounds == int(pounds):
        return f"£{int(pounds):,}"
    return f"£{pounds:,.2f}"


def _rejection_reasons(
    analysis: AIAnalysis,
    document_type: str,
    today: date,
    policy: CompliancePolicy,
    declared_coverage: Optional[int],
) -> List[str]:
    reasons = []
    extracted = analysis.extracted_data

    if not analysis.is_readable:
        reasons.append(UNREADABLE_REASON)

    # Expiry
    if extracted.expiry_date is None:
        reasons.append(MISSING_EXPIRY_REASON)
    elif extracted.expiry_date < today:
        reasons.append(f"Document has expired ({extracted.expiry_date.isoformat()})")

    # Minimum coverage
    if policy.requires_minimum_coverage(document_type):
        minimum = policy.minimum_coverage_for(document_type)
        if extracted.coverage_amount is not None:
            coverage_pence = int(round(extracted.coverage_amount * 100))
        else:
            coverage_pence = declared_coverage
        if minimum and coverage_pence is not None and coverage_pence < minimum:
            reasons.append(
                f"Coverage amount ({format_pence(coverage_pence)}) is below "
                f"minimum requirement ({format_pence(minimum)})"
            )

    # Fraud
    if analysis.has_critical_fraud:
        reasons.append(FRAUD_REVIEW_REASON)

    return reasons


def score_document(
    analysis: AIAnalysis,
    document_type: str,
    today: date,
    policy: Optional[CompliancePolicy] = None,
    declared_coverage: Optional[int] = None,
) -> ScoreResult:
    """
    Score an analysed document.

    Args:
        analysis: Parsed model output
        document_type: Declared document type value
        today: Reference date for the expiry check
        policy: Coverage minimums and enforced types
        declared_coverage: Uploader-declared cover in pence, used when the
            model could not read one

    Returns:
        ScoreResult with the final integer score, ordered reasons and the
        critical-fraud flag used by the classifier
    """
    policy = policy or CompliancePolicy()
    score = 100.0

    # Quality (max -20)
    score -= max(0.0, (100 - analysis.quality_score) * QUALITY_PENALTY_FACTOR)

    # Missing critical fields (max -30)
    extracted = analysis.extracted_data
    for field_name in CRITICAL_FIELDS:
        if not getattr(extracted, field_name):
            score -= MISSING_FIELD_PENALTY

    # Fraud indicators
    for indicator in analysis.fraud_indicators:
        score -= indicator.confidence * SEVERITY_WEIGHTS[indicator.severity]

    pre_rejection = _clamp(score)

    reasons = _rejection_reasons(analysis, document_type, today, policy, declared_coverage)

    final = _clamp(pre_rejection - REJECTION_REASON_PENALTY * len(reasons))

    return ScoreResult(
        score=int(final + 0.5),
        pre_rejection_score=pre_rejection,
        rejection_reasons=reasons,
        has_critical_fraud=analysis.has_critical_fraud,
    )
