"""
Notification Service — outbound notification queue.

Queue rows are created by the reminder processor and drained by
``send_pending``. Email goes out over SMTP when ``MAIL_SERVER`` is set;
without it (dev/test) every message is logged and counted as sent.
SMS has no gateway yet and is always log-only.

Configuration (env vars):
    MAIL_SERVER           SMTP host (default: None → log-only mode)
    MAIL_PORT             SMTP port (default: 587)
    MAIL_USE_TLS          Use TLS (default: true)
    MAIL_USERNAME         SMTP username
    MAIL_PASSWORD         SMTP password
    MAIL_DEFAULT_SENDER   From address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app
from sqlalchemy import func

from app.models import db
from app.models.notification import NotificationQueueItem, QuestionReminder
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Message templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "date_reminder_email": {
        "subject": "[SiteTrack] Reminder: {job_title}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #1e293b;">{job_title}</h2>
            <p>Hi {user_name},</p>
            <p>This is a reminder for <strong>{question_text}</strong>
               (answered date: {answered_date}).</p>
            <p style="color: #64748b;">{job_address}</p>
            <p>{reminder_instructions}</p>
        </div>
        """,
    },
    "date_reminder_sms": {
        "subject": "",
        "text": "SiteTrack reminder: {job_title}, {question_text} on {answered_date}",
    },
}


class _SafeDict(dict):
    """Dict that returns '' for missing keys instead of raising."""

    def __missing__(self, key):
        return ""


def render(template_name: str, data: dict) -> dict[str, str]:
    """Interpolate a template with queue-row data."""
    template = _TEMPLATES.get(template_name)
    if template is None:
        raise KeyError(f"Unknown message template: {template_name}")
    context = _SafeDict({k: "" if v is None else v for k, v in (data or {}).items()})
    return {key: body.format_map(context) for key, body in template.items()}


class NotificationService:
    """Stateless service class for the notification queue."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def enqueue(reminder: QuestionReminder, *, notification_type, template, data,
                email=None, phone=None, scheduled_for=None) -> NotificationQueueItem:
        """Add a queue row for ``reminder``. Caller commits."""
        item = NotificationQueueItem(
            company_id=reminder.company_id,
            reminder_id=reminder.id,
            notification_type=notification_type,
            recipient_email=email,
            recipient_phone=phone,
            message_template=template,
            message_data=data,
            status="pending",
            scheduled_for=scheduled_for or utcnow(),
        )
        db.session.add(item)
        return item

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def pending(now=None, limit=50, company_id=None) -> list[NotificationQueueItem]:
        """Due pending rows, oldest first."""
        now = now or utcnow()
        q = NotificationQueueItem.query.filter(
            NotificationQueueItem.status == "pending",
            NotificationQueueItem.scheduled_for <= now,
        )
        if company_id is not None:
            q = q.filter(NotificationQueueItem.company_id == company_id)
        return q.order_by(NotificationQueueItem.scheduled_for.asc(), NotificationQueueItem.id.asc()).limit(limit).all()

    @staticmethod
    def status_counts(company_id=None) -> dict[str, int]:
        q = db.session.query(NotificationQueueItem.status, func.count(NotificationQueueItem.id))
        if company_id is not None:
            q = q.filter(NotificationQueueItem.company_id == company_id)
        counts = dict(q.group_by(NotificationQueueItem.status).all())
        return {
            "total": sum(counts.values()),
            "sent": counts.get("sent", 0),
            "pending": counts.get("pending", 0),
            "failed": counts.get("failed", 0),
        }

    # ── Delivery ──────────────────────────────────────────────────────────

    @staticmethod
    def is_mail_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def deliver(cls, item: NotificationQueueItem) -> None:
        """Send one queue row. Raises on transport failure."""
        message = render(item.message_template, item.message_data)
        if item.notification_type == "email" and cls.is_mail_configured():
            cls._send_smtp(to_email=item.recipient_email, subject=message["subject"],
                           html_body=message["html"])
            logger.info("Email sent: to=%s template=%s", item.recipient_email, item.message_template)
            return
        logger.info(
            "Notification (log-only): type=%s to=%s template=%s",
            item.notification_type, item.recipient, item.message_template,
        )

    @classmethod
    def send_pending(cls, now=None, limit=None, company_id=None) -> dict[str, int]:
        """Deliver due rows and commit. Returns sent/failed counts."""
        now = now or utcnow()
        limit = limit or current_app.config.get("NOTIFICATION_BATCH_SIZE", 50)
        results = {"sent": 0, "failed": 0}
        for item in cls.pending(now, limit=limit, company_id=company_id):
            try:
                cls.deliver(item)
            except (smtplib.SMTPException, OSError, KeyError) as exc:
                item.mark_failed(exc)
                results["failed"] += 1
                logger.error("Notification %s failed (attempt %d): %s", item.id, item.retry_count, exc)
                continue
            item.mark_sent(now)
            results["sent"] += 1
        db.session.commit()
        return results

    @staticmethod
    def _send_smtp(*, to_email: str, subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, cfg.get("MAIL_PORT", 587), timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            username, password = cfg.get("MAIL_USERNAME"), cfg.get("MAIL_PASSWORD")
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
