"""
Document Service

Upload, supersession, manual override and administrative deletion of
compliance documents.

Documents live in an append-only table. The current version of each
(contractor, document type) pair is tracked in the current_documents
index, which moves in the same transaction that inserts the new
version. replaced_by_id is kept on the superseded row as an audit
pointer only; no query relies on it to find current documents.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...config import CompliancePolicy
from ...models.analysis import DocumentUploadEvent, ScoreResult, UploadResult
from ...models.db_models import (
    ActorType, ComplianceDocumentDB, ComplianceStatus,
    CurrentDocumentDB, DocumentType, NotificationDB, VerificationLogDB,
)
from .aggregator import ComplianceAggregator
from .analyzer import DocumentAnalyzer, PayloadAnalyzer, run_analyzer
from .classifier import classify_upload, expiry_status, reclassify_by_date, status_for_date
from .errors import (
    ContractorNotFoundError, DocumentNotFoundError, DocumentValidationError,
    DuplicateDocumentError, InvalidTransitionError,
)
from .scorer import score_document


logger = logging.getLogger(__name__)


def validate_upload(event: DocumentUploadEvent) -> DocumentType:
    """
    Reject malformed uploads before any scoring happens.

    Returns:
        The parsed DocumentType
    """
    if not event.contractor_id:
        raise DocumentValidationError("contractor_id is required")

    try:
        document_type = DocumentType(event.document_type)
    except ValueError:
        raise DocumentValidationError(f"Unsupported document type: {event.document_type}")

    if not event.provider_name or not event.provider_name.strip():
        raise DocumentValidationError("provider_name is required")

    if event.expiry_date is None:
        raise DocumentValidationError("expiry_date is required")

    if event.start_date is not None and event.start_date > event.expiry_date:
        raise DocumentValidationError("start_date must be on or before expiry_date")

    if event.coverage_amount is not None and event.coverage_amount < 0:
        raise DocumentValidationError("coverage_amount cannot be negative")

    return document_type


def serialize_document(doc: ComplianceDocumentDB, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    return {
        "id": doc.id,
        "document_type": doc.document_type.value,
        "provider_name": doc.provider_name,
        "policy_number": doc.policy_number,
        "registration_number": doc.registration_number,
        "coverage_amount": doc.coverage_amount,
        "start_date": doc.start_date.isoformat() if doc.start_date else None,
        "expiry_date": doc.expiry_date.isoformat(),
        "status": doc.status.value,
        "verification_score": doc.verification_score,
        "rejection_reason": doc.rejection_reason,
        "manually_verified": bool(doc.manually_verified),
        "version": doc.version,
        "replaced_by_id": doc.replaced_by_id,
        "expiry": expiry_status(doc.expiry_date, today),
    }


class DocumentService:
    """
    Compliance document lifecycle.

    Every mutating operation locks the owning contractor row first, then
    recomputes the contractor aggregate before committing.
    """

    def __init__(
        self,
        db_session: Session,
        policy: Optional[CompliancePolicy] = None,
        analyzer: Optional[DocumentAnalyzer] = None,
    ):
        self.db = db_session
        self.policy = policy or CompliancePolicy()
        self.analyzer = analyzer or PayloadAnalyzer()
        self.aggregator = ComplianceAggregator(db_session, self.policy)

    # =========================================================================
    # UPLOAD
    # =========================================================================

    def upload(
        self,
        event: DocumentUploadEvent,
        analyzer: Optional[DocumentAnalyzer] = None,
        today: Optional[date] = None,
    ) -> UploadResult:
        """
        Store a new document version and classify it.

        Steps:
        1. Validate the event
        2. Lock the contractor and reject a duplicate current file
        3. Analyze (failures degrade to pending_review), score, classify
        4. Insert the version and move the current pointer
        5. Recompute the contractor aggregate and commit

        Raises:
            DocumentValidationError: malformed event
            ContractorNotFoundError: unknown or deleted contractor
            DuplicateDocumentError: same file already current for the contractor
        """
        today = today or date.today()
        document_type = validate_upload(event)

        try:
            contractor = self.aggregator.lock_contractor(event.contractor_id)
            if contractor.deleted_at is not None:
                raise ContractorNotFoundError(f"Contractor {event.contractor_id} not found")

            if event.file_hash:
                self._check_duplicate(contractor.id, event.file_hash)

            outcome = run_analyzer(analyzer or self.analyzer, event)
            score_result: Optional[ScoreResult] = None
            if outcome:
                score_result = score_document(
                    outcome,
                    document_type.value,
                    today,
                    self.policy,
                    declared_coverage=event.coverage_amount,
                )
            else:
                logger.warning(
                    f"No analysis for {document_type.value} upload by contractor "
                    f"{contractor.id}; leaving for manual review"
                )

            classification = classify_upload(score_result, event.expiry_date, today, self.policy)

            analysis_record = None
            if outcome:
                analysis_record = outcome.to_dict()
                analysis_record["rejectionReasons"] = list(score_result.rejection_reasons)

            document = ComplianceDocumentDB(
                id=str(uuid4()),
                contractor_id=contractor.id,
                document_type=document_type,
                provider_name=event.provider_name.strip(),
                policy_number=event.policy_number,
                registration_number=event.registration_number,
                coverage_amount=event.coverage_amount,
                start_date=event.start_date,
                expiry_date=event.expiry_date,
                file_hash=event.file_hash,
                status=classification.status,
                verification_score=classification.verification_score,
                ai_analysis=analysis_record,
                rejection_reason=classification.rejection_reason,
                version=self._next_version(contractor.id, document_type),
            )
            self.db.add(document)
            self.db.flush()

            superseded_id = self._move_current_pointer(contractor.id, document_type, document)

            self.db.add(VerificationLogDB(
                id=str(uuid4()),
                contractor_id=contractor.id,
                document_id=document.id,
                check_type="ai_document_scan" if outcome else "document_upload",
                status="success" if outcome else "pending",
                actor=ActorType.USER if event.uploaded_by else ActorType.SYSTEM,
                performed_by=event.uploaded_by,
                result={
                    **classification.to_dict(),
                    "superseded_document_id": superseded_id,
                    "analysis_available": bool(outcome),
                },
            ))

            aggregate = self.aggregator.recompute(contractor.id, confirm_verified=True)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Document {document.id} ({document_type.value} v{document.version}) for contractor "
            f"{contractor.id} classified {classification.status.value} "
            f"score {classification.verification_score}"
        )

        return UploadResult(
            document_id=document.id,
            version=document.version,
            classification=classification,
            aggregate=aggregate,
            superseded_document_id=superseded_id,
        )

    def _check_duplicate(self, contractor_id: str, file_hash: str) -> None:
        existing = (
            self.db.query(ComplianceDocumentDB)
            .join(CurrentDocumentDB, CurrentDocumentDB.document_id == ComplianceDocumentDB.id)
            .filter(
                CurrentDocumentDB.contractor_id == contractor_id,
                ComplianceDocumentDB.file_hash == file_hash,
            )
            .first()
        )
        if existing:
            raise DuplicateDocumentError(
                f"This document has already been uploaded ({existing.document_type.value}, id {existing.id})"
            )

    def _next_version(self, contractor_id: str, document_type: DocumentType) -> int:
        latest = (
            self.db.query(func.max(ComplianceDocumentDB.version))
            .filter(
                ComplianceDocumentDB.contractor_id == contractor_id,
                ComplianceDocumentDB.document_type == document_type,
            )
            .scalar()
        )
        return (latest or 0) + 1

    def _current_pointer(self, contractor_id: str, document_type: DocumentType) -> Optional[CurrentDocumentDB]:
        return (
            self.db.query(CurrentDocumentDB)
            .filter(
                CurrentDocumentDB.contractor_id == contractor_id,
                CurrentDocumentDB.document_type == document_type,
            )
            .first()
        )

    def _move_current_pointer(
        self,
        contractor_id: str,
        document_type: DocumentType,
        document: ComplianceDocumentDB,
    ) -> Optional[str]:
        """Point the index at `document`. Returns the superseded document id."""
        pointer = self._current_pointer(contractor_id, document_type)

        if pointer is None:
            self.db.add(CurrentDocumentDB(
                contractor_id=contractor_id,
                document_type=document_type,
                document_id=document.id,
            ))
            self.db.flush()
            return None

        previous = self.db.get(ComplianceDocumentDB, pointer.document_id)
        previous.replaced_by_id = document.id
        pointer.document_id = document.id
        self.db.flush()
        return previous.id

    # =========================================================================
    # MANUAL OVERRIDE
    # =========================================================================

    def manual_verify(
        self,
        document_id: str,
        status: ComplianceStatus,
        verified_by: Optional[str] = None,
        reason: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Administrative override of a current document's status.

        The only way out of fraud_suspected. Accepting a document still
        respects its expiry date: "valid" becomes "expiring_soon" inside the
        warning window, and an expired document cannot be accepted.
        """
        today = today or date.today()
        status = ComplianceStatus(status)

        try:
            document = self._get_document(document_id)
            self.aggregator.lock_contractor(document.contractor_id)

            if not self._is_current(document):
                raise InvalidTransitionError(
                    f"Document {document_id} has been superseded and cannot be changed"
                )

            if status in (ComplianceStatus.VALID, ComplianceStatus.EXPIRING_SOON):
                status = status_for_date(document.expiry_date, today, self.policy.expiring_soon_days)
                if status == ComplianceStatus.EXPIRED:
                    raise InvalidTransitionError(
                        f"Document expired on {document.expiry_date.isoformat()} and cannot be accepted"
                    )

            previous_status = document.status
            document.status = status
            document.manually_verified = True
            document.verified_by = verified_by
            document.verified_at = datetime.utcnow()
            if status in (ComplianceStatus.REJECTED, ComplianceStatus.FRAUD_SUSPECTED):
                document.rejection_reason = reason or document.rejection_reason
            else:
                document.rejection_reason = None

            self.db.add(VerificationLogDB(
                id=str(uuid4()),
                contractor_id=document.contractor_id,
                document_id=document.id,
                check_type="manual_verification",
                status="success",
                actor=ActorType.USER,
                performed_by=verified_by,
                result={
                    "previous_status": previous_status.value,
                    "status": status.value,
                    "reason": reason,
                },
            ))

            aggregate = self.aggregator.recompute(document.contractor_id, confirm_verified=True)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Document {document_id} manually set {previous_status.value} -> {status.value}")

        return {
            "document_id": document.id,
            "previous_status": previous_status.value,
            "status": status.value,
            "contractor": aggregate.to_dict(),
        }

    # =========================================================================
    # ADMINISTRATIVE DELETE
    # =========================================================================

    def delete_document(
        self,
        document_id: str,
        performed_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Hard delete one document version.

        If it was current, the pointer falls back to the latest remaining
        version of the same type, or is removed when none remains. The
        restored version missed the daily sweeps while superseded, so it
        is re-dated before the aggregate is recomputed.
        """
        today = today or date.today()
        try:
            document = self._get_document(document_id)
            contractor_id = document.contractor_id
            document_type = document.document_type
            self.aggregator.lock_contractor(contractor_id)

            # Splice the deleted version out of the audit chain
            for older in self.db.query(ComplianceDocumentDB).filter(
                ComplianceDocumentDB.replaced_by_id == document.id
            ).all():
                older.replaced_by_id = document.replaced_by_id

            restored_id = None
            restored_status = None
            pointer = self._current_pointer(contractor_id, document_type)
            if pointer is not None and pointer.document_id == document.id:
                fallback = (
                    self.db.query(ComplianceDocumentDB)
                    .filter(
                        ComplianceDocumentDB.contractor_id == contractor_id,
                        ComplianceDocumentDB.document_type == document_type,
                        ComplianceDocumentDB.id != document.id,
                    )
                    .order_by(ComplianceDocumentDB.version.desc())
                    .first()
                )
                if fallback is not None:
                    fallback.replaced_by_id = None
                    fallback.status = reclassify_by_date(
                        fallback.status, fallback.expiry_date, today, self.policy,
                    )
                    pointer.document_id = fallback.id
                    restored_id = fallback.id
                    restored_status = fallback.status.value
                else:
                    self.db.delete(pointer)
            self.db.flush()

            self.db.query(NotificationDB).filter(
                NotificationDB.document_id == document.id
            ).delete(synchronize_session=False)
            self.db.query(VerificationLogDB).filter(
                VerificationLogDB.document_id == document.id
            ).update({VerificationLogDB.document_id: None}, synchronize_session=False)

            self.db.delete(document)
            self.db.add(VerificationLogDB(
                id=str(uuid4()),
                contractor_id=contractor_id,
                check_type="document_deleted",
                status="success",
                actor=ActorType.USER,
                performed_by=performed_by,
                result={
                    "document_id": document_id,
                    "document_type": document_type.value,
                    "restored_document_id": restored_id,
                    "restored_status": restored_status,
                },
            ))
            self.db.flush()

            aggregate = self.aggregator.recompute(contractor_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Deleted document {document_id}; current {document_type.value} is now {restored_id}")

        return {
            "deleted_document_id": document_id,
            "current_document_id": restored_id,
            "contractor": aggregate.to_dict(),
        }

    # =========================================================================
    # DAILY DATE RECLASSIFICATION
    # =========================================================================

    def reclassify_by_date(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Re-evaluate current valid/expiring_soon documents against today.
        Returns the documents whose status changed. Does not recompute aggregates.
        """
        today = today or date.today()
        changes = []

        documents = (
            self.db.query(ComplianceDocumentDB)
            .join(CurrentDocumentDB, CurrentDocumentDB.document_id == ComplianceDocumentDB.id)
            .filter(ComplianceDocumentDB.status.in_([
                ComplianceStatus.VALID,
                ComplianceStatus.EXPIRING_SOON,
            ]))
            .all()
        )

        for document in documents:
            new_status = reclassify_by_date(document.status, document.expiry_date, today, self.policy)
            if new_status == document.status:
                continue

            changes.append({
                "document_id": document.id,
                "contractor_id": document.contractor_id,
                "document_type": document.document_type.value,
                "previous_status": document.status.value,
                "status": new_status.value,
            })

            self.db.add(VerificationLogDB(
                id=str(uuid4()),
                contractor_id=document.contractor_id,
                document_id=document.id,
                check_type="automated_expiry_check",
                status="success",
                actor=ActorType.SYSTEM,
                result={
                    "previous_status": document.status.value,
                    "status": new_status.value,
                    "expiry_date": document.expiry_date.isoformat(),
                },
            ))
            document.status = new_status

        self.db.commit()
        return changes

    # =========================================================================
    # QUERIES
    # =========================================================================

    def current_documents(self, contractor_id: str) -> List[ComplianceDocumentDB]:
        return self.aggregator.current_documents(contractor_id)

    def history(self, contractor_id: str, document_type: DocumentType) -> List[ComplianceDocumentDB]:
        """All versions of one document type, newest first."""
        return (
            self.db.query(ComplianceDocumentDB)
            .filter(
                ComplianceDocumentDB.contractor_id == contractor_id,
                ComplianceDocumentDB.document_type == DocumentType(document_type),
            )
            .order_by(ComplianceDocumentDB.version.desc())
            .all()
        )

    def _get_document(self, document_id: str) -> ComplianceDocumentDB:
        document = self.db.get(ComplianceDocumentDB, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def _is_current(self, document: ComplianceDocumentDB) -> bool:
        pointer = self._current_pointer(document.contractor_id, document.document_type)
        return pointer is not None and pointer.document_id == document.id
