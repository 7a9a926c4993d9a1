"""
Reminder service — date-answer reminders and their processing.

A reminder is scheduled when a ``date`` question is answered and either the
answer or the question has reminders enabled. It fires ``offset_hours``
before the answered date (24 by default) and is only created when that
moment is still in the future.

``process_reminders`` is the scheduled entry point: it queues one email and
one SMS per due reminder (when the person who answered has an address or
phone) and then drains the notification queue.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

from app.core.exceptions import ValidationError
from app.models import db
from app.models.auth import User
from app.models.job import Job
from app.models.notification import NotificationQueueItem, QuestionReminder
from app.models.stage import StageQuestion, UserResponse
from app.services.helpers.scoped_queries import get_scoped
from app.services.notification_service import NotificationService
from app.utils.helpers import as_utc, iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_OFFSET_HOURS = 24
MAX_OFFSET_HOURS = 24 * 365


def validate_offset(value, field="reminder_offset_hours"):
    """Whole hours between 0 and one year, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        hours = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if hours < 0 or hours > MAX_OFFSET_HOURS:
        raise ValidationError(f"{field} must be between 0 and {MAX_OFFSET_HOURS}")
    return hours


def answered_moment(value: str) -> datetime:
    """A date answer as an aware UTC datetime; plain dates mean midnight UTC."""
    text = value.strip()
    try:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text)).astimezone(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Scheduling (runs inside the stage-response transaction, no commit)
# ═════════════════════════════════════════════════════════════════════════════


def schedule_for_response(job: Job, question: StageQuestion, response: UserResponse,
                          now=None) -> QuestionReminder | None:
    """Create, move or drop the reminder tied to ``response``.

    A sent reminder is re-armed when the question is answered again with a
    date that is still ahead.
    """
    now = now or utcnow()
    reminder = QuestionReminder.query.filter_by(
        job_id=job.id, question_id=question.id, user_response_id=response.id,
    ).first()

    enabled = question.response_type == "date" and (response.reminder_enabled or question.reminder_enabled)
    fire_at = None
    offset = None
    if enabled:
        offset = response.reminder_offset_hours
        if offset is None:
            offset = question.default_reminder_offset_hours
        if offset is None:
            offset = DEFAULT_OFFSET_HOURS
        fire_at = answered_moment(response.response_value) - timedelta(hours=offset)
        if fire_at <= now:
            fire_at = None

    if fire_at is None:
        if reminder is not None and not reminder.notification_sent:
            db.session.delete(reminder)
        response.reminder_scheduled_at = None
        return None

    if reminder is None:
        reminder = QuestionReminder(
            company_id=job.company_id,
            job_id=job.id,
            question_id=question.id,
            user_response_id=response.id,
            reminder_type="date_response",
        )
        db.session.add(reminder)
    reminder.reminder_date = fire_at
    reminder.offset_hours = offset
    reminder.notification_sent = False
    reminder.sent_at = None
    response.reminder_scheduled_at = fire_at
    db.session.flush()
    logger.info("Reminder %s for job %s question %s set for %s", reminder.id, job.id, question.id, fire_at)
    return reminder


# ═════════════════════════════════════════════════════════════════════════════
# Processing
# ═════════════════════════════════════════════════════════════════════════════


def _message_data(reminder: QuestionReminder, user: User) -> dict:
    job = reminder.job
    question = reminder.question
    return {
        "user_name": (user.full_name or user.email) if user else "",
        "job_title": job.title,
        "job_address": job.address,
        "question_text": question.question_text,
        "answered_date": reminder.response.response_value,
        "reminder_date": iso(as_utc(reminder.reminder_date)),
        "reminder_instructions": question.reminder_instructions,
    }


def queue_due_reminders(now=None, company_id=None) -> dict:
    """Queue notifications for every unsent reminder that has come due."""
    now = now or utcnow()
    q = QuestionReminder.query.filter(
        QuestionReminder.notification_sent.is_(False),
        QuestionReminder.reminder_date <= now,
    )
    if company_id is not None:
        q = q.filter(QuestionReminder.company_id == company_id)
    reminders = q.order_by(QuestionReminder.reminder_date.asc(), QuestionReminder.id.asc()).all()

    queued = 0
    for reminder in reminders:
        user = db.session.get(User, reminder.response.responded_by) if reminder.response.responded_by else None
        data = _message_data(reminder, user)
        if user is not None and user.email:
            NotificationService.enqueue(
                reminder, notification_type="email", template="date_reminder_email",
                data=data, email=user.email, scheduled_for=now,
            )
            queued += 1
        if user is not None and user.phone:
            NotificationService.enqueue(
                reminder, notification_type="sms", template="date_reminder_sms",
                data=data, phone=user.phone, scheduled_for=now,
            )
            queued += 1
        reminder.notification_sent = True
        reminder.sent_at = now
    db.session.commit()
    if reminders:
        logger.info("Queued %d notification(s) for %d due reminder(s)", queued, len(reminders))
    return {"reminders": len(reminders), "notifications": queued}


def process_reminders(now=None, company_id=None, limit=None) -> dict:
    """Queue due reminders, then deliver pending notifications."""
    now = now or utcnow()
    queued = queue_due_reminders(now, company_id=company_id)
    delivered = NotificationService.send_pending(now, limit=limit, company_id=company_id)
    return {
        "processed_reminders": queued["reminders"],
        "queued_notifications": queued["notifications"],
        "sent_notifications": delivered["sent"],
        "failed_notifications": delivered["failed"],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


def list_job_reminders(company_id, job_id) -> list[dict]:
    job = get_scoped(Job, job_id, company_id=company_id)
    reminders = (
        QuestionReminder.query.filter_by(job_id=job.id)
        .order_by(QuestionReminder.reminder_date.asc(), QuestionReminder.id.asc())
        .all()
    )
    out = []
    for reminder in reminders:
        d = reminder.to_dict()
        d["notifications"] = [
            n.to_dict() for n in reminder.notifications.order_by(NotificationQueueItem.id.asc())
        ]
        out.append(d)
    return out


def reminder_stats(company_id=None) -> dict:
    q = QuestionReminder.query
    if company_id is not None:
        q = q.filter(QuestionReminder.company_id == company_id)
    total = q.count()
    sent = q.filter(QuestionReminder.notification_sent.is_(True)).count()
    return {
        "reminders": {"total": total, "sent": sent, "pending": total - sent},
        "notifications": NotificationService.status_counts(company_id),
    }
