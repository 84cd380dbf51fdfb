"""
Document Analyzer Seam

The vision model call is external. The engine only depends on
`analyze(event) -> AIAnalysis | UNAVAILABLE`, so scoring and
classification can run without network access and the extraction
backend can be swapped.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from dateutil import parser as date_parser

from ...models.analysis import (
    AIAnalysis, DocumentUploadEvent, ExtractedDocumentData,
    FraudIndicator, FraudSeverity,
)


logger = logging.getLogger(__name__)


class _Unavailable:
    """Sentinel for an analysis that could not be produced."""

    def __repr__(self) -> str:
        return "UNAVAILABLE"

    def __bool__(self) -> bool:
        return False


UNAVAILABLE = _Unavailable()

AnalysisOutcome = Union[AIAnalysis, _Unavailable]


class MalformedAnalysisError(ValueError):
    """Model output that cannot be trusted for scoring."""
    pass


# =============================================================================
# PARSING
# =============================================================================

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def clean_json_response(content: str) -> str:
    """Strip markdown code fences models wrap around JSON."""
    return _FENCE_RE.sub("", content.strip()).strip()


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.isoparse(str(value)).date()
    except ValueError:
        pass
    try:
        # Certificates print UK dates
        return date_parser.parse(str(value), dayfirst=True).date()
    except (ValueError, OverflowError) as e:
        raise MalformedAnalysisError(f"Unreadable date {value!r}: {e}")


def _parse_amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[£,\s]", "", str(value))
    try:
        return float(cleaned)
    except ValueError:
        raise MalformedAnalysisError(f"Unreadable amount {value!r}")


def _parse_indicator(raw: Dict[str, Any]) -> FraudIndicator:
    try:
        severity = FraudSeverity(str(raw.get("severity", "")).lower())
    except ValueError:
        raise MalformedAnalysisError(f"Unknown fraud severity {raw.get('severity')!r}")

    try:
        confidence = float(raw.get("confidence", 0))
    except (TypeError, ValueError):
        raise MalformedAnalysisError(f"Unreadable confidence {raw.get('confidence')!r}")
    if not 0 <= confidence <= 1:
        raise MalformedAnalysisError(f"Confidence {confidence} outside 0..1")

    return FraudIndicator(
        type=str(raw.get("type", "unknown")),
        severity=severity,
        confidence=confidence,
        description=raw.get("description") or "",
    )


def parse_analysis(payload: Union[str, Dict[str, Any]]) -> AIAnalysis:
    """
    Turn model output (camelCase JSON, nullable fields) into an AIAnalysis.

    Raises:
        MalformedAnalysisError: if the payload cannot be trusted
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(clean_json_response(payload))
        except json.JSONDecodeError as e:
            raise MalformedAnalysisError(f"Analysis is not JSON: {e}")

    if not isinstance(payload, dict):
        raise MalformedAnalysisError("Analysis must be a JSON object")

    try:
        quality = float(payload.get("qualityScore", 0))
    except (TypeError, ValueError):
        raise MalformedAnalysisError(f"Unreadable qualityScore {payload.get('qualityScore')!r}")
    if not 0 <= quality <= 100:
        raise MalformedAnalysisError(f"qualityScore {quality} outside 0..100")

    is_readable = payload.get("isReadable", True)
    if is_readable is None:
        is_readable = True
    if not isinstance(is_readable, bool):
        raise MalformedAnalysisError(f"isReadable must be a boolean, got {is_readable!r}")

    raw = payload.get("extractedData") or {}
    extracted = ExtractedDocumentData(
        policy_number=raw.get("policyNumber") or None,
        provider_name=raw.get("providerName") or None,
        insured_name=raw.get("insuredName") or None,
        coverage_amount=_parse_amount(raw.get("coverageAmount")),
        excess_amount=_parse_amount(raw.get("excessAmount")),
        start_date=_parse_date(raw.get("startDate")),
        expiry_date=_parse_date(raw.get("expiryDate")),
        coverage_types=list(raw.get("coverageTypes") or []),
        document_type=raw.get("documentType"),
    )

    indicators = [_parse_indicator(ind) for ind in payload.get("fraudIndicators") or []]

    return AIAnalysis(
        quality_score=quality,
        extracted_data=extracted,
        fraud_indicators=indicators,
        model_version=payload.get("modelVersion"),
        processing_time_ms=int(payload.get("processingTimeMs") or 0),
        is_readable=is_readable,
    )


# =============================================================================
# ANALYZERS
# =============================================================================

class DocumentAnalyzer(ABC):
    """Injected capability that reads a stored document."""

    @abstractmethod
    def analyze(self, event: DocumentUploadEvent) -> AnalysisOutcome:
        """Return an AIAnalysis, or UNAVAILABLE when the backend cannot answer."""


class StaticAnalyzer(DocumentAnalyzer):
    """Returns the same outcome for every document."""

    def __init__(self, outcome: AnalysisOutcome = UNAVAILABLE):
        self.outcome = outcome

    def analyze(self, event: DocumentUploadEvent) -> AnalysisOutcome:
        return self.outcome


class PayloadAnalyzer(DocumentAnalyzer):
    """
    Uses the analysis the upload handler already attached to the event.
    Falls back to `fallback` when the event carries none.
    """

    def __init__(self, fallback: Optional[DocumentAnalyzer] = None):
        self.fallback = fallback

    def analyze(self, event: DocumentUploadEvent) -> AnalysisOutcome:
        if event.ai_analysis:
            return parse_analysis(event.ai_analysis)
        if self.fallback is not None:
            return self.fallback.analyze(event)
        return UNAVAILABLE


def run_analyzer(analyzer: DocumentAnalyzer, event: DocumentUploadEvent) -> AnalysisOutcome:
    """
    Call the analyzer, degrading any failure to UNAVAILABLE.
    A failed analysis never fails the upload.
    """
    try:
        outcome = analyzer.analyze(event)
    except MalformedAnalysisError as e:
        logger.warning(f"Discarding malformed analysis for contractor {event.contractor_id}: {e}")
        return UNAVAILABLE
    except Exception as e:
        logger.warning(f"Document analyzer failed for contractor {event.contractor_id}: {e}")
        return UNAVAILABLE

    if outcome is None:
        return UNAVAILABLE
    return outcome
