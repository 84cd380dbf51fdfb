"""
Notification Scheduler

Expiry reminders at fixed horizons before (and on) the expiry date.

At most one notification record exists per (document, horizon). The
record is written before the transport is called and kept whatever the
transport does, so a transport failure never causes a second send on a
later run. Failed records under the retry ceiling are replayed only by
retry_failed(), with the stored message.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import CompliancePolicy
from ...models.analysis import DispatchRequest
from ...models.db_models import (
    ComplianceDocumentDB, ComplianceStatus, ContractorDB, CurrentDocumentDB,
    InvoiceDB, NotificationChannel, NotificationDB, NotificationStatus,
)
from .templates import (
    PAYMENT_BLOCKED, document_type_label, expiry_phrase, format_date_for_message,
    format_whatsapp_number, get_template, has_template,
    render, template_for_horizon,
)


logger = logging.getLogger(__name__)


# Document statuses that still get reminders
REMINDABLE_STATUSES = (
    ComplianceStatus.VALID,
    ComplianceStatus.EXPIRING_SOON,
    ComplianceStatus.EXPIRED,
)

RETRY_BATCH_SIZE = 50


# =============================================================================
# TRANSPORT
# =============================================================================

class NotificationTransport(ABC):
    """Channel delivery collaborator. WhatsApp/SMTP specifics live behind it."""

    @abstractmethod
    def send(self, request: DispatchRequest) -> Optional[str]:
        """
        Deliver one message.

        Returns:
            Provider message id, if any

        Raises:
            Exception: on delivery failure
        """


class LoggingTransport(NotificationTransport):
    """Logs instead of sending. Default when no provider is configured."""

    def send(self, request: DispatchRequest) -> Optional[str]:
        logger.info(
            f"[{request.channel.value}] to {request.recipient} "
            f"({request.template_id}): {request.rendered_message}"
        )
        return f"log-{uuid4()}"


def choose_recipient(
    contractor: ContractorDB,
    template_id: str,
) -> Tuple[NotificationChannel, Optional[str]]:
    """WhatsApp when the contractor has a mobile number, email otherwise."""
    mobile = contractor.whatsapp_number or contractor.phone
    if mobile and has_template(template_id, NotificationChannel.WHATSAPP):
        return NotificationChannel.WHATSAPP, format_whatsapp_number(mobile)
    if contractor.email and has_template(template_id, NotificationChannel.EMAIL):
        return NotificationChannel.EMAIL, contractor.email
    if has_template(template_id, NotificationChannel.WHATSAPP):
        return NotificationChannel.WHATSAPP, None
    return NotificationChannel.EMAIL, None


# =============================================================================
# SCHEDULER
# =============================================================================

class NotificationScheduler:
    """
    Sends expiry reminders and payment-blocked notices.

    Each notification is its own unit of work: the record commits before
    the transport call and again with the outcome.
    """

    def __init__(
        self,
        db_session: Session,
        policy: Optional[CompliancePolicy] = None,
        transport: Optional[NotificationTransport] = None,
    ):
        self.db = db_session
        self.policy = policy or CompliancePolicy()
        self.transport = transport or LoggingTransport()

    def run(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Walk every horizon and send the reminders that are due today.
        """
        today = today or date.today()
        sent, failed, skipped = 0, 0, 0
        details: List[Dict[str, Any]] = []

        for horizon in self.policy.reminder_horizons:
            for document, contractor in self._due_documents(today + timedelta(days=horizon)):
                outcome = self._remind(document, contractor, horizon, today)
                if outcome == NotificationStatus.SENT:
                    sent += 1
                elif outcome == NotificationStatus.FAILED:
                    failed += 1
                else:
                    skipped += 1
                details.append({
                    "document_id": document.id,
                    "contractor_id": contractor.id,
                    "horizon_days": horizon,
                    "outcome": outcome.value if outcome else "skipped",
                })

        logger.info(f"Reminders for {today.isoformat()}: {sent} sent, {failed} failed, {skipped} skipped")

        return {
            "run_date": today.isoformat(),
            "sent": sent,
            "failed": failed,
            "skipped": skipped,
            "details": details,
        }

    def _due_documents(self, expiry_date: date) -> List[Tuple[ComplianceDocumentDB, ContractorDB]]:
        return (
            self.db.query(ComplianceDocumentDB, ContractorDB)
            .join(CurrentDocumentDB, CurrentDocumentDB.document_id == ComplianceDocumentDB.id)
            .join(ContractorDB, ContractorDB.id == ComplianceDocumentDB.contractor_id)
            .filter(
                ComplianceDocumentDB.expiry_date == expiry_date,
                ComplianceDocumentDB.status.in_(REMINDABLE_STATUSES),
                ContractorDB.is_active.is_(True),
                ContractorDB.deleted_at.is_(None),
            )
            .order_by(ComplianceDocumentDB.id)
            .all()
        )

    def _remind(
        self,
        document: ComplianceDocumentDB,
        contractor: ContractorDB,
        horizon: int,
        today: date,
    ) -> Optional[NotificationStatus]:
        """Returns the recorded status, or None when already handled."""
        existing = self.db.query(NotificationDB).filter(
            NotificationDB.document_id == document.id,
            NotificationDB.horizon_days == horizon,
        ).first()
        if existing is not None:
            return None

        template_id = template_for_horizon(horizon)
        channel, recipient = choose_recipient(contractor, template_id)
        template = get_template(template_id, channel)

        days_remaining = (document.expiry_date - today).days
        variables = {
            "contact_name": contractor.contact_name,
            "company_name": contractor.company_name,
            "document_type": document_type_label(document.document_type),
            "expiry_date": format_date_for_message(document.expiry_date),
            "days_remaining": days_remaining,
            "expiry_phrase": expiry_phrase(days_remaining),
            "portal_url": f"{self.policy.portal_url}/portal",
        }

        record = NotificationDB(
            id=str(uuid4()),
            contractor_id=contractor.id,
            document_id=document.id,
            horizon_days=horizon,
            template_id=template_id,
            channel=channel,
            recipient=recipient,
            subject=render(template.subject, variables) if template.subject else None,
            message=render(template.body, variables),
            status=NotificationStatus.PENDING,
            max_retries=self.policy.notification_max_retries,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent sweep recorded this (document, horizon) first
            self.db.rollback()
            logger.info(f"Reminder for document {document.id} at {horizon} days already recorded")
            return None

        return self._dispatch(record)

    def _dispatch(self, record: NotificationDB) -> NotificationStatus:
        """Call the transport and store the outcome on the record."""
        if not record.recipient:
            record.status = NotificationStatus.FAILED
            record.failure_reason = f"No {record.channel.value} recipient available"
            record.retry_count = (record.retry_count or 0) + 1
            self.db.commit()
            logger.warning(f"Notification {record.id} has no recipient")
            return record.status

        request = DispatchRequest(
            channel=record.channel,
            recipient=record.recipient,
            rendered_message=record.message,
            template_id=record.template_id,
            subject=record.subject,
        )

        try:
            external_id = self.transport.send(request)
        except Exception as e:
            record.status = NotificationStatus.FAILED
            record.failure_reason = str(e) or e.__class__.__name__
            record.retry_count = (record.retry_count or 0) + 1
            self.db.commit()
            logger.warning(f"Notification {record.id} via {record.channel.value} failed: {e}")
            return record.status

        record.status = NotificationStatus.SENT
        record.external_id = external_id
        record.failure_reason = None
        record.sent_at = datetime.utcnow()
        self.db.commit()
        return record.status

    # =========================================================================
    # RETRIES
    # =========================================================================

    def retry_failed(self) -> Dict[str, Any]:
        """Replay failed notifications that are still under their retry ceiling."""
        records = (
            self.db.query(NotificationDB)
            .filter(
                NotificationDB.status == NotificationStatus.FAILED,
                NotificationDB.retry_count < NotificationDB.max_retries,
            )
            .order_by(NotificationDB.created_at, NotificationDB.id)
            .limit(RETRY_BATCH_SIZE)
            .all()
        )

        successful, failed = 0, 0
        for record in records:
            if self._dispatch(record) == NotificationStatus.SENT:
                successful += 1
            else:
                failed += 1

        if records:
            logger.info(f"Retried {len(records)} notifications: {successful} sent, {failed} failed")

        return {"processed": len(records), "successful": successful, "failed": failed}

    # =========================================================================
    # ONE-OFF NOTICES
    # =========================================================================

    def notify_payment_blocked(
        self,
        contractor: ContractorDB,
        reason: str,
        invoice: Optional[InvoiceDB] = None,
    ) -> NotificationStatus:
        template = get_template(PAYMENT_BLOCKED, NotificationChannel.EMAIL)
        variables = {
            "contact_name": contractor.contact_name,
            "company_name": contractor.company_name,
            "block_reason": reason,
            "portal_url": f"{self.policy.portal_url}/portal",
        }

        record = NotificationDB(
            id=str(uuid4()),
            contractor_id=contractor.id,
            template_id=PAYMENT_BLOCKED,
            channel=NotificationChannel.EMAIL,
            recipient=contractor.email,
            subject=render(template.subject, variables),
            message=render(template.body, variables),
            status=NotificationStatus.PENDING,
            max_retries=self.policy.notification_max_retries,
        )
        self.db.add(record)
        self.db.commit()

        if invoice is not None:
            logger.info(f"Payment blocked notice for invoice {invoice.id}: {reason}")

        return self._dispatch(record)
