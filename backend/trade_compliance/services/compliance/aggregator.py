"""
Contractor Compliance Aggregator

Folds a contractor's current documents into the derived
verification_status, payment_status and risk_score columns.

`aggregate` is a pure function. `ComplianceAggregator` loads the
current-document index under a contractor row lock, applies it and
writes the result. Same document set in, same status out.
"""
import logging
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import CompliancePolicy
from ...models.analysis import ContractorAggregate, DocumentSnapshot
from ...models.db_models import (
    ActorType, AdminOverride, ComplianceDocumentDB, ComplianceStatus,
    ContractorDB, CurrentDocumentDB, DocumentType, PaymentStatus,
    VerificationLogDB, VerificationStatus,
)
from .classifier import satisfies_requirement
from .errors import ContractorNotFoundError, DerivationError


logger = logging.getLogger(__name__)


# =============================================================================
# RISK WEIGHTS
# =============================================================================

BASE_RISK = 50
VERIFIED_BONUS = 30
VALID_OPTIONAL_BONUS = 10
MAX_OPTIONAL_BONUS = 10
EXPIRED_MANDATORY_PENALTY = 15
NO_COMPANY_NUMBER_PENALTY = 10

OVERRIDE_STATUS = {
    AdminOverride.SUSPENDED: VerificationStatus.SUSPENDED,
    AdminOverride.BLOCKED: VerificationStatus.BLOCKED,
}

PAYMENT_STATUS = {
    VerificationStatus.VERIFIED: PaymentStatus.ALLOWED,
    VerificationStatus.PARTIALLY_VERIFIED: PaymentStatus.BLOCKED,
    VerificationStatus.UNVERIFIED: PaymentStatus.BLOCKED,
    VerificationStatus.SUSPENDED: PaymentStatus.BLOCKED,
    VerificationStatus.BLOCKED: PaymentStatus.BLOCKED,
}


def _index_by_type(documents: Iterable[DocumentSnapshot]) -> Dict[str, DocumentSnapshot]:
    indexed = {}
    for doc in documents:
        key = DocumentType(doc.document_type).value
        if key in indexed:
            raise DerivationError(f"Two current documents of type {key}")
        indexed[key] = doc
    return indexed


def compute_verification_status(
    by_type: Dict[str, DocumentSnapshot],
    mandatory_types: FrozenSet[str],
) -> VerificationStatus:
    satisfied = [
        t for t in mandatory_types
        if t in by_type and satisfies_requirement(by_type[t].status)
    ]

    if len(satisfied) == len(mandatory_types):
        return VerificationStatus.VERIFIED

    any_valid = any(doc.status == ComplianceStatus.VALID for doc in by_type.values())
    if satisfied and any_valid:
        return VerificationStatus.PARTIALLY_VERIFIED

    return VerificationStatus.UNVERIFIED


def compute_risk_score(
    by_type: Dict[str, DocumentSnapshot],
    mandatory_types: FrozenSet[str],
    verification_status: VerificationStatus,
    has_company_number: bool,
) -> int:
    risk = BASE_RISK

    if verification_status == VerificationStatus.VERIFIED:
        risk -= VERIFIED_BONUS

    optional_valid = sum(
        1 for t, doc in by_type.items()
        if t not in mandatory_types and doc.status == ComplianceStatus.VALID
    )
    risk -= min(MAX_OPTIONAL_BONUS, optional_valid * VALID_OPTIONAL_BONUS)

    for t in mandatory_types:
        if t in by_type and by_type[t].status == ComplianceStatus.EXPIRED:
            risk += EXPIRED_MANDATORY_PENALTY

    if not has_company_number:
        risk += NO_COMPANY_NUMBER_PENALTY

    return max(0, min(100, risk))


def aggregate(
    contractor_id: str,
    documents: Iterable[DocumentSnapshot],
    mandatory_types: FrozenSet[str],
    has_company_number: bool,
    override: Optional[AdminOverride] = None,
) -> ContractorAggregate:
    """
    Derive a contractor's status from its current documents.

    Args:
        contractor_id: Contractor being aggregated
        documents: Current (non-superseded) documents only
        mandatory_types: Document type values that must be valid or expiring soon
        has_company_number: Whether a Companies House number is registered
        override: Administrative suspend/block, wins over the computed status

    Returns:
        ContractorAggregate
    """
    by_type = _index_by_type(documents)

    if override is not None:
        verification_status = OVERRIDE_STATUS[AdminOverride(override)]
    else:
        verification_status = compute_verification_status(by_type, mandatory_types)

    return ContractorAggregate(
        contractor_id=contractor_id,
        verification_status=verification_status,
        payment_status=PAYMENT_STATUS[verification_status],
        risk_score=compute_risk_score(by_type, mandatory_types, verification_status, has_company_number),
    )


# =============================================================================
# PERSISTENT AGGREGATOR
# =============================================================================

class ComplianceAggregator:
    """
    Recomputes and stores contractor aggregates.

    Callers own the transaction; recompute only flushes. The contractor row
    lock is held until the caller commits, which serializes concurrent
    uploads and gate decisions for the same contractor.
    """

    def __init__(self, db_session: Session, policy: Optional[CompliancePolicy] = None):
        self.db = db_session
        self.policy = policy or CompliancePolicy()

    def lock_contractor(self, contractor_id: str) -> ContractorDB:
        """SELECT ... FOR UPDATE on the contractor row."""
        contractor = (
            self.db.query(ContractorDB)
            .filter(ContractorDB.id == contractor_id)
            .with_for_update()
            .first()
        )
        if contractor is None:
            raise ContractorNotFoundError(f"Contractor {contractor_id} not found")
        return contractor

    def mandatory_types_for(self, contractor: ContractorDB) -> FrozenSet[str]:
        if contractor.has_employees:
            return frozenset(self.policy.mandatory_types | self.policy.employer_mandatory_types)
        return frozenset(self.policy.mandatory_types)

    def current_documents(self, contractor_id: str) -> List[ComplianceDocumentDB]:
        return (
            self.db.query(ComplianceDocumentDB)
            .join(CurrentDocumentDB, CurrentDocumentDB.document_id == ComplianceDocumentDB.id)
            .filter(CurrentDocumentDB.contractor_id == contractor_id)
            .all()
        )

    def snapshots(self, contractor_id: str) -> List[DocumentSnapshot]:
        return [
            DocumentSnapshot(
                document_type=doc.document_type,
                status=doc.status,
                expiry_date=doc.expiry_date,
            )
            for doc in self.current_documents(contractor_id)
        ]

    def recompute(
        self,
        contractor_id: str,
        now: Optional[datetime] = None,
        confirm_verified: bool = False,
    ) -> ContractorAggregate:
        """
        Recompute and store one contractor's aggregate.

        last_verified_at is stamped when the contractor becomes verified,
        and on every document event (confirm_verified) that finds it still
        verified. Otherwise nothing is written when the derived values are
        unchanged, so date sweeps stay idempotent.

        Raises:
            ContractorNotFoundError: unknown contractor
            DerivationError: aggregation failed; never swallowed
        """
        now = now or datetime.utcnow()
        contractor = self.lock_contractor(contractor_id)

        try:
            result = aggregate(
                contractor_id=contractor.id,
                documents=self.snapshots(contractor.id),
                mandatory_types=self.mandatory_types_for(contractor),
                has_company_number=bool(contractor.company_number),
                override=contractor.admin_override,
            )
        except DerivationError:
            logger.exception(f"Aggregation failed for contractor {contractor_id}")
            raise
        except Exception as e:
            logger.exception(f"Aggregation failed for contractor {contractor_id}")
            raise DerivationError(f"Aggregation failed for contractor {contractor_id}: {e}") from e

        previous = {
            "verification_status": contractor.verification_status,
            "payment_status": contractor.payment_status,
            "risk_score": contractor.risk_score,
        }
        changed = (
            previous["verification_status"] != result.verification_status
            or previous["payment_status"] != result.payment_status
            or previous["risk_score"] != result.risk_score
        )
        if result.verification_status == VerificationStatus.VERIFIED and (
                confirm_verified or previous["verification_status"] != VerificationStatus.VERIFIED):
            contractor.last_verified_at = now

        if not changed:
            self.db.flush()
            return result

        contractor.verification_status = result.verification_status
        contractor.payment_status = result.payment_status
        contractor.risk_score = result.risk_score

        self.db.add(VerificationLogDB(
            id=str(uuid4()),
            contractor_id=contractor.id,
            check_type="aggregate_recompute",
            status="success",
            actor=ActorType.SYSTEM,
            result={
                "previous": {
                    "verification_status": previous["verification_status"].value if previous["verification_status"] else None,
                    "payment_status": previous["payment_status"].value if previous["payment_status"] else None,
                    "risk_score": previous["risk_score"],
                },
                "current": result.to_dict(),
            },
        ))
        self.db.flush()

        logger.info(
            f"Contractor {contractor_id}: {previous['verification_status']} -> "
            f"{result.verification_status.value}, payment {result.payment_status.value}, "
            f"risk {result.risk_score}"
        )
        return result

    def set_override(
        self,
        contractor_id: str,
        override: Optional[AdminOverride],
        performed_by: Optional[str] = None,
    ) -> ContractorAggregate:
        """Apply or clear an administrative suspend/block, then recompute."""
        contractor = self.lock_contractor(contractor_id)
        contractor.admin_override = AdminOverride(override) if override else None

        self.db.add(VerificationLogDB(
            id=str(uuid4()),
            contractor_id=contractor.id,
            check_type="admin_override",
            status="success",
            actor=ActorType.USER,
            performed_by=performed_by,
            result={"override": contractor.admin_override.value if contractor.admin_override else None},
        ))

        result = self.recompute(contractor_id)
        self.db.commit()
        return result
