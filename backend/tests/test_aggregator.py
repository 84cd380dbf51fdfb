"""
Tests for the Contractor Compliance Aggregator.

Pure aggregation rules first, then the persistent recompute.
"""
import pytest
from datetime import datetime

from trade_compliance.models.analysis import DocumentSnapshot
from trade_compliance.models.db_models import (
    AdminOverride, ComplianceStatus, DocumentType, PaymentStatus,
    VerificationLogDB, VerificationStatus,
)
from trade_compliance.services.compliance import (
    ComplianceAggregator, ContractorNotFoundError, DerivationError, aggregate,
)


PL = frozenset({"public_liability"})
PL_EL = frozenset({"public_liability", "employers_liability"})


def doc(document_type, status):
    return DocumentSnapshot(document_type=DocumentType(document_type), status=status)


# =============================================================================
# TEST: VERIFICATION STATUS
# =============================================================================

class TestVerificationStatus:

    @pytest.mark.parametrize("status", [ComplianceStatus.VALID, ComplianceStatus.EXPIRING_SOON])
    def test_verified_when_mandatory_satisfied(self, status):
        result = aggregate("c-1", [doc("public_liability", status)], PL, has_company_number=True)

        assert result.verification_status == VerificationStatus.VERIFIED
        assert result.payment_status == PaymentStatus.ALLOWED

    def test_no_documents_is_unverified(self):
        result = aggregate("c-1", [], PL, has_company_number=True)
        assert result.verification_status == VerificationStatus.UNVERIFIED

    def test_partially_verified(self):
        documents = [
            doc("public_liability", ComplianceStatus.VALID),
            doc("employers_liability", ComplianceStatus.EXPIRED),
        ]
        result = aggregate("c-1", documents, PL_EL, has_company_number=True)

        assert result.verification_status == VerificationStatus.PARTIALLY_VERIFIED
        assert result.payment_status == PaymentStatus.BLOCKED

    def test_satisfied_but_nothing_valid_is_unverified(self):
        documents = [
            doc("public_liability", ComplianceStatus.EXPIRING_SOON),
            doc("employers_liability", ComplianceStatus.PENDING_REVIEW),
        ]
        result = aggregate("c-1", documents, PL_EL, has_company_number=True)
        assert result.verification_status == VerificationStatus.UNVERIFIED

    def test_optional_valid_document_alone_is_unverified(self):
        result = aggregate("c-1", [doc("gas_safe", ComplianceStatus.VALID)], PL, has_company_number=True)
        assert result.verification_status == VerificationStatus.UNVERIFIED

    @pytest.mark.parametrize("override,expected", [
        (AdminOverride.SUSPENDED, VerificationStatus.SUSPENDED),
        (AdminOverride.BLOCKED, VerificationStatus.BLOCKED),
    ])
    def test_override_wins(self, override, expected):
        result = aggregate(
            "c-1", [doc("public_liability", ComplianceStatus.VALID)], PL,
            has_company_number=True, override=override,
        )

        assert result.verification_status == expected
        assert result.payment_status == PaymentStatus.BLOCKED

    def test_duplicate_current_documents_are_a_derivation_error(self):
        documents = [
            doc("public_liability", ComplianceStatus.VALID),
            doc("public_liability", ComplianceStatus.EXPIRED),
        ]
        with pytest.raises(DerivationError):
            aggregate("c-1", documents, PL, has_company_number=True)

    @pytest.mark.parametrize("statuses", [
        [ComplianceStatus.VALID],
        [ComplianceStatus.EXPIRING_SOON, ComplianceStatus.VALID],
        [ComplianceStatus.EXPIRED, ComplianceStatus.VALID],
        [ComplianceStatus.REJECTED, ComplianceStatus.PENDING_REVIEW],
        [ComplianceStatus.FRAUD_SUSPECTED, ComplianceStatus.VALID],
        [],
    ])
    def test_payment_allowed_only_when_verified(self, statuses):
        types = ["public_liability", "employers_liability"]
        documents = [doc(t, s) for t, s in zip(types, statuses)]
        result = aggregate("c-1", documents, PL_EL, has_company_number=False)

        assert (result.payment_status == PaymentStatus.ALLOWED) == (
            result.verification_status == VerificationStatus.VERIFIED
        )


# =============================================================================
# TEST: RISK SCORE
# =============================================================================

class TestRiskScore:

    def test_verified_with_company_number(self):
        result = aggregate("c-1", [doc("public_liability", ComplianceStatus.VALID)], PL, True)
        assert result.risk_score == 20

    def test_optional_bonus_is_capped(self):
        documents = [
            doc("public_liability", ComplianceStatus.VALID),
            doc("gas_safe", ComplianceStatus.VALID),
            doc("cscs", ComplianceStatus.VALID),
        ]
        result = aggregate("c-1", documents, PL, True)
        assert result.risk_score == 10

    def test_expired_mandatory_and_no_company_number(self):
        documents = [
            doc("public_liability", ComplianceStatus.EXPIRED),
            doc("employers_liability", ComplianceStatus.EXPIRED),
        ]
        result = aggregate("c-1", documents, PL_EL, has_company_number=False)

        # 50 + 15 + 15 + 10
        assert result.risk_score == 90

    def test_clamped_to_100(self):
        mandatory = frozenset({"public_liability", "employers_liability", "gas_safe", "niceic"})
        documents = [doc(t, ComplianceStatus.EXPIRED) for t in mandatory]
        result = aggregate("c-1", documents, mandatory, has_company_number=False)
        assert result.risk_score == 100

    def test_order_independent(self):
        documents = [
            doc("public_liability", ComplianceStatus.VALID),
            doc("gas_safe", ComplianceStatus.VALID),
            doc("employers_liability", ComplianceStatus.EXPIRING_SOON),
        ]
        forward = aggregate("c-1", documents, PL_EL, True)
        backward = aggregate("c-1", list(reversed(documents)), PL_EL, True)
        assert forward == backward


# =============================================================================
# TEST: PERSISTENT RECOMPUTE
# =============================================================================

class TestRecompute:

    def test_unknown_contractor(self, db, policy):
        with pytest.raises(ContractorNotFoundError):
            ComplianceAggregator(db, policy).recompute("missing")

    def test_employees_widen_mandatory_set(self, make_contractor, upload, db, policy):
        contractor = make_contractor(has_employees=True)
        upload(contractor)

        db.refresh(contractor)
        assert contractor.verification_status == VerificationStatus.PARTIALLY_VERIFIED

        upload(contractor, document_type="employers_liability")
        db.refresh(contractor)
        assert contractor.verification_status == VerificationStatus.VERIFIED
        assert ComplianceAggregator(db, policy).mandatory_types_for(contractor) == PL_EL

    def test_becoming_verified_stamps_last_verified_at(self, make_contractor, upload, db):
        contractor = make_contractor()
        assert contractor.last_verified_at is None

        upload(contractor)
        db.refresh(contractor)

        assert contractor.verification_status == VerificationStatus.VERIFIED
        assert contractor.payment_status == PaymentStatus.ALLOWED
        assert contractor.last_verified_at is not None

    def test_document_event_refreshes_last_verified_at(self, make_contractor, upload, db, policy):
        contractor = make_contractor()
        upload(contractor)
        stale = datetime(2020, 1, 1)
        contractor.last_verified_at = stale
        db.commit()

        ComplianceAggregator(db, policy).recompute(contractor.id)
        db.commit()
        db.refresh(contractor)
        assert contractor.last_verified_at == stale

        upload(contractor, document_type="gas_safe")
        db.refresh(contractor)
        assert contractor.last_verified_at > stale

    def test_confirm_verified_uses_given_time(self, make_contractor, upload, db, policy):
        contractor = make_contractor()
        upload(contractor)
        now = datetime(2026, 10, 20, 9, 30)

        ComplianceAggregator(db, policy).recompute(contractor.id, now=now, confirm_verified=True)
        db.commit()

        db.refresh(contractor)
        assert contractor.last_verified_at == now

    def test_recompute_is_idempotent(self, make_contractor, upload, db, policy):
        contractor = make_contractor()
        upload(contractor)
        aggregator = ComplianceAggregator(db, policy)

        def recompute_logs():
            return db.query(VerificationLogDB).filter(
                VerificationLogDB.check_type == "aggregate_recompute"
            ).count()

        logged = recompute_logs()
        first = aggregator.recompute(contractor.id)
        db.commit()
        second = aggregator.recompute(contractor.id)
        db.commit()

        assert first == second
        assert recompute_logs() == logged

    def test_override_and_clear(self, make_contractor, upload, db, policy):
        contractor = make_contractor()
        upload(contractor)
        aggregator = ComplianceAggregator(db, policy)

        suspended = aggregator.set_override(contractor.id, AdminOverride.SUSPENDED, performed_by="admin-1")
        assert suspended.verification_status == VerificationStatus.SUSPENDED
        assert suspended.payment_status == PaymentStatus.BLOCKED

        cleared = aggregator.set_override(contractor.id, None, performed_by="admin-1")
        assert cleared.verification_status == VerificationStatus.VERIFIED
        assert cleared.payment_status == PaymentStatus.ALLOWED
