"""
Daily Compliance Sweep

Runs, in order:
1. Date reclassification of current valid/expiring_soon documents
2. Aggregate recompute for every active contractor and every contractor
   owning a re-dated document
3. Payment sweep over pending and blocked invoices
4. Expiry reminders, then retries of failed reminders

Later stages read what earlier stages wrote, so a failing stage aborts
the run. Every unit of work is idempotent; a crashed run is re-run
from the top.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ...config import CompliancePolicy
from ...models.db_models import ContractorDB
from .aggregator import ComplianceAggregator
from .documents import DocumentService
from .notifications import NotificationScheduler, NotificationTransport
from .payment_gate import PaymentGate


logger = logging.getLogger(__name__)


class ComplianceSweep:
    """
    Orchestrates the daily compliance jobs.

    Usage:
        sweep = ComplianceSweep(db)
        result = sweep.run()
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[CompliancePolicy] = None,
        transport: Optional[NotificationTransport] = None,
    ):
        self.db = db
        self.policy = policy or CompliancePolicy()
        self.documents = DocumentService(db, self.policy)
        self.aggregator = ComplianceAggregator(db, self.policy)
        self.notifications = NotificationScheduler(db, self.policy, transport)
        self.payment_gate = PaymentGate(db, self.policy, notifier=self.notifications)

    def run(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Run every stage for `today`.

        Returns:
            Summary of each stage
        """
        today = today or date.today()
        started_at = datetime.now(timezone.utc)
        results = {
            "run_date": today.isoformat(),
            "started_at": started_at.isoformat(),
            "stages": {},
        }

        # 1. Reclassify by date
        try:
            changes = self.documents.reclassify_by_date(today)
            results["stages"]["reclassification"] = {
                "status": "success",
                "documents_changed": len(changes),
                "changes": changes,
            }
            logger.info(f"Reclassified {len(changes)} documents")
        except Exception as e:
            self._abort(results, "reclassification", e)
            raise

        # 2. Recompute aggregates
        try:
            results["stages"]["aggregation"] = self._recompute_all(
                {c["contractor_id"] for c in changes}
            )
        except Exception as e:
            self._abort(results, "aggregation", e)
            raise

        # 3. Payment sweep
        try:
            if self.payment_gate.changed_invoice_count():
                payment = self.payment_gate.run_payment_sweep(run_date=today)
            else:
                payment = {"total_invoices": 0, "approved_invoices": 0, "blocked_invoices": 0}
            results["stages"]["payments"] = {"status": "success", **payment}
            logger.info(
                f"Payment sweep: {payment['approved_invoices']} approved, "
                f"{payment['blocked_invoices']} blocked"
            )
        except Exception as e:
            self._abort(results, "payments", e)
            raise

        # 4. Reminders and retries
        try:
            reminders = self.notifications.run(today)
            retries = self.notifications.retry_failed()
            results["stages"]["reminders"] = {
                "status": "success",
                "sent": reminders["sent"],
                "failed": reminders["failed"],
                "skipped": reminders["skipped"],
                "retries": retries,
            }
        except Exception as e:
            self._abort(results, "reminders", e)
            raise

        completed_at = datetime.now(timezone.utc)
        results["completed_at"] = completed_at.isoformat()
        results["duration_seconds"] = (completed_at - started_at).total_seconds()

        logger.info(f"Daily sweep for {today.isoformat()} complete in {results['duration_seconds']:.2f}s")
        return results

    def _recompute_all(self, redated_contractor_ids: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Recompute every active contractor, plus any contractor (active or
        not) that owns a document re-dated in this run.
        """
        active_ids = {
            row.id for row in self.db.query(ContractorDB.id)
            .filter(ContractorDB.is_active.is_(True), ContractorDB.deleted_at.is_(None))
            .all()
        }
        contractor_ids = sorted(active_ids | set(redated_contractor_ids))

        changed = 0
        for contractor_id in contractor_ids:
            before = self.db.query(
                ContractorDB.verification_status,
                ContractorDB.payment_status,
                ContractorDB.risk_score,
            ).filter(ContractorDB.id == contractor_id).one()

            after = self.aggregator.recompute(contractor_id)
            self.db.commit()

            if tuple(before) != (after.verification_status, after.payment_status, after.risk_score):
                changed += 1

        logger.info(f"Recomputed {len(contractor_ids)} contractors, {changed} changed")
        return {
            "status": "success",
            "contractors_recomputed": len(contractor_ids),
            "contractors_changed": changed,
        }

    def _abort(self, results: Dict[str, Any], stage: str, error: Exception) -> None:
        self.db.rollback()
        results["stages"][stage] = {"status": "error", "error": str(error)}
        logger.exception(f"Daily sweep aborted at {stage}: {error}")
