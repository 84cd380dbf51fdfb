"""
Reminder Templates

Message bodies for expiry reminders and payment-blocked notices, with
{{variable}} placeholders. Template ids name the trigger; each trigger
has one body per channel.
"""
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple

from ...models.db_models import DocumentType, NotificationChannel


# =============================================================================
# TEMPLATE IDS
# =============================================================================

EXPIRING_30_DAYS = "document_expiring_30_days"
EXPIRING_7_DAYS = "document_expiring_7_days"
EXPIRED = "document_expired"
PAYMENT_BLOCKED = "payment_blocked"


@dataclass(frozen=True)
class NotificationTemplate:
    template_id: str
    channel: NotificationChannel
    body: str
    subject: Optional[str] = None


TEMPLATES: Dict[Tuple[str, NotificationChannel], NotificationTemplate] = {
    # Long notice
    (EXPIRING_30_DAYS, NotificationChannel.WHATSAPP): NotificationTemplate(
        template_id=EXPIRING_30_DAYS,
        channel=NotificationChannel.WHATSAPP,
        body=(
            "Hi {{contact_name}}, your {{document_type}} for {{company_name}} expires on "
            "{{expiry_date}}. Please upload your renewal to our portal to ensure "
            "uninterrupted payments. Portal: {{portal_url}}"
        ),
    ),
    (EXPIRING_30_DAYS, NotificationChannel.EMAIL): NotificationTemplate(
        template_id=EXPIRING_30_DAYS,
        channel=NotificationChannel.EMAIL,
        subject="Action Required: {{document_type}} Expiring Soon",
        body=(
            "Dear {{contact_name}},\n\n"
            "This is a reminder that your {{document_type}} for {{company_name}} will expire "
            "on {{expiry_date}}.\n\n"
            "To ensure continued partnership and uninterrupted payments, please upload your "
            "renewed certificate to our compliance portal.\n\n"
            "Upload here: {{portal_url}}\n\n"
            "Best regards,\nThe Compliance Team"
        ),
    ),

    # Mid notice
    (EXPIRING_7_DAYS, NotificationChannel.WHATSAPP): NotificationTemplate(
        template_id=EXPIRING_7_DAYS,
        channel=NotificationChannel.WHATSAPP,
        body=(
            "URGENT: {{contact_name}}, your {{document_type}} expires in {{days_remaining}} days "
            "({{expiry_date}}). Without a valid certificate, we cannot allow work on our sites. "
            "Please upload renewal immediately: {{portal_url}}"
        ),
    ),
    (EXPIRING_7_DAYS, NotificationChannel.EMAIL): NotificationTemplate(
        template_id=EXPIRING_7_DAYS,
        channel=NotificationChannel.EMAIL,
        subject="Urgent: {{document_type}} expires in {{days_remaining}} days",
        body=(
            "Dear {{contact_name}},\n\n"
            "Your {{document_type}} for {{company_name}} expires on {{expiry_date}}, "
            "{{days_remaining}} days from today.\n\n"
            "Without a valid certificate we cannot allow work on our sites or release "
            "payments. Please upload your renewal now.\n\n"
            "Upload here: {{portal_url}}\n\n"
            "Best regards,\nThe Compliance Team"
        ),
    ),

    # Urgent / expired
    (EXPIRED, NotificationChannel.WHATSAPP): NotificationTemplate(
        template_id=EXPIRED,
        channel=NotificationChannel.WHATSAPP,
        body=(
            "ACTION NEEDED: {{contact_name}}, your {{document_type}} {{expiry_phrase}} "
            "({{expiry_date}}). No further payments will be released until a valid "
            "certificate is uploaded. Upload now: {{portal_url}}"
        ),
    ),
    (EXPIRED, NotificationChannel.EMAIL): NotificationTemplate(
        template_id=EXPIRED,
        channel=NotificationChannel.EMAIL,
        subject="{{document_type}} {{expiry_phrase}}",
        body=(
            "Dear {{contact_name}},\n\n"
            "Your {{document_type}} for {{company_name}} {{expiry_phrase}} ({{expiry_date}}).\n\n"
            "No further payments will be released until a valid certificate is uploaded.\n\n"
            "Upload now: {{portal_url}}\n\n"
            "Best regards,\nThe Compliance Team"
        ),
    ),

    # One-off
    (PAYMENT_BLOCKED, NotificationChannel.EMAIL): NotificationTemplate(
        template_id=PAYMENT_BLOCKED,
        channel=NotificationChannel.EMAIL,
        subject="Payment Blocked - Compliance Issue",
        body=(
            "Dear {{contact_name}},\n\n"
            "We regret to inform you that payments to {{company_name}} have been temporarily "
            "blocked due to: {{block_reason}}\n\n"
            "To resolve this issue, please log into our compliance portal and address the "
            "outstanding items.\n\n"
            "Portal: {{portal_url}}\n\n"
            "Best regards,\nThe Finance Team"
        ),
    ),
}


DOCUMENT_TYPE_LABELS = {
    DocumentType.PUBLIC_LIABILITY: "Public Liability Insurance",
    DocumentType.EMPLOYERS_LIABILITY: "Employer's Liability Insurance",
    DocumentType.PROFESSIONAL_INDEMNITY: "Professional Indemnity Insurance",
    DocumentType.GAS_SAFE: "Gas Safe Registration",
    DocumentType.NICEIC: "NICEIC Certification",
    DocumentType.NAPIT: "NAPIT Certification",
    DocumentType.OFTEC: "OFTEC Registration",
    DocumentType.CSCS: "CSCS Card",
    DocumentType.BUILDING_REGULATIONS: "Building Regulations Approval",
    DocumentType.OTHER_CERTIFICATION: "Certification",
}


# =============================================================================
# SELECTION & RENDERING
# =============================================================================

def template_for_horizon(horizon_days: int) -> str:
    if horizon_days >= 30:
        return EXPIRING_30_DAYS
    if horizon_days >= 7:
        return EXPIRING_7_DAYS
    return EXPIRED


def get_template(template_id: str, channel: NotificationChannel) -> NotificationTemplate:
    try:
        return TEMPLATES[(template_id, NotificationChannel(channel))]
    except KeyError:
        raise KeyError(f"No {channel} template for {template_id}")


def has_template(template_id: str, channel: NotificationChannel) -> bool:
    return (template_id, NotificationChannel(channel)) in TEMPLATES


def render(text: str, variables: Dict[str, Any]) -> str:
    """Replace {{ key }} placeholders. Unknown placeholders are left as-is."""
    rendered = text
    for key, value in variables.items():
        replacement = "" if value is None else str(value)
        rendered = re.sub(r"\{\{\s*" + re.escape(key) + r"\s*\}\}", lambda _: replacement, rendered)
    return rendered


def document_type_label(document_type) -> str:
    try:
        return DOCUMENT_TYPE_LABELS[DocumentType(document_type)]
    except ValueError:
        return str(document_type).replace("_", " ").title()


def format_date_for_message(value: date) -> str:
    """19 October 2026"""
    return f"{value.day} {value.strftime('%B %Y')}"


def expiry_phrase(days_remaining: int) -> str:
    if days_remaining < 0:
        return "has expired"
    if days_remaining == 0:
        return "expires today"
    if days_remaining == 1:
        return "expires tomorrow"
    return f"expires in {days_remaining} days"


# =============================================================================
# RECIPIENTS
# =============================================================================

def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone)


def format_phone_number(phone: str) -> str:
    """UK numbers to E.164: 07700 900123 -> +447700900123"""
    cleaned = _digits(phone)
    if cleaned.startswith("0"):
        return f"+44{cleaned[1:]}"
    return f"+{cleaned}"


def format_whatsapp_number(phone: str) -> str:
    if phone.startswith("whatsapp:"):
        return phone
    return f"whatsapp:{format_phone_number(phone)}"
