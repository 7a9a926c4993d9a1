"""
Notification models — date reminders and the outbound notification queue.

Models:
    - QuestionReminder: one scheduled reminder per date answer
    - NotificationQueueItem: one outbound email/SMS per reminder recipient
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import CompanyModel


# ── Constants ────────────────────────────────────────────────────────────────

REMINDER_TYPES = ("date_response", "task_due", "stage_timeout")
NOTIFICATION_METHODS = ("email", "sms", "in_app", "push")
NOTIFICATION_TYPES = ("email", "sms", "push_notification", "in_app")
QUEUE_STATUSES = ("pending", "sent", "failed", "cancelled")
DEFAULT_MAX_RETRIES = 3


def _iso(value):
    return value.isoformat() if value else None


class QuestionReminder(CompanyModel):
    """
    Reminder scheduled from a date answer.

    ``reminder_date`` is the answered date minus ``offset_hours``. The
    reminder is queued once; re-answering the question reschedules it
    only while it is still unsent.
    """

    __tablename__ = "question_reminders"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("stage_questions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_response_id = db.Column(
        db.Integer, db.ForeignKey("user_responses.id", ondelete="CASCADE"), nullable=False,
    )
    reminder_date = db.Column(db.DateTime, nullable=False, index=True)
    offset_hours = db.Column(db.Integer, nullable=False, default=24)
    reminder_type = db.Column(db.String(20), nullable=False, default="date_response")
    notification_method = db.Column(db.String(20), nullable=False, default="email")
    notification_sent = db.Column(db.Boolean, nullable=False, default=False)
    sent_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("job_id", "question_id", "user_response_id", name="uq_reminder_response"),
        db.CheckConstraint(
            "reminder_type IN ('date_response','task_due','stage_timeout')",
            name="ck_reminder_type",
        ),
        db.CheckConstraint(
            "notification_method IN ('email','sms','in_app','push')",
            name="ck_reminder_method",
        ),
    )

    job = db.relationship("Job")
    question = db.relationship("StageQuestion")
    response = db.relationship("UserResponse")
    notifications = db.relationship(
        "NotificationQueueItem", back_populates="reminder", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "job_id": self.job_id,
            "question_id": self.question_id,
            "user_response_id": self.user_response_id,
            "reminder_date": _iso(self.reminder_date),
            "offset_hours": self.offset_hours,
            "reminder_type": self.reminder_type,
            "notification_method": self.notification_method,
            "notification_sent": self.notification_sent,
            "sent_at": _iso(self.sent_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<QuestionReminder {self.id}: job {self.job_id} at {self.reminder_date}>"


class NotificationQueueItem(CompanyModel):
    """
    Outbound notification waiting for delivery.

    A failed send stays ``pending`` until ``retry_count`` reaches
    ``max_retries``; then it is marked ``failed``.
    """

    __tablename__ = "notification_queue"

    id = db.Column(db.Integer, primary_key=True)
    reminder_id = db.Column(
        db.Integer, db.ForeignKey("question_reminders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    notification_type = db.Column(db.String(30), nullable=False)
    recipient_email = db.Column(db.String(200))
    recipient_phone = db.Column(db.String(50))
    message_template = db.Column(db.String(100), nullable=False)
    message_data = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), nullable=False, default="pending")
    scheduled_for = db.Column(db.DateTime, nullable=False)
    sent_at = db.Column(db.DateTime)
    error_message = db.Column(db.Text)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    max_retries = db.Column(db.Integer, nullable=False, default=DEFAULT_MAX_RETRIES)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "notification_type IN ('email','sms','push_notification','in_app')",
            name="ck_notification_type",
        ),
        db.CheckConstraint(
            "status IN ('pending','sent','failed','cancelled')",
            name="ck_notification_status",
        ),
        db.Index("ix_notification_queue_status_scheduled", "status", "scheduled_for"),
    )

    reminder = db.relationship("QuestionReminder", back_populates="notifications")

    @property
    def recipient(self):
        return self.recipient_email or self.recipient_phone

    def mark_sent(self, now):
        self.status = "sent"
        self.sent_at = now
        self.error_message = None

    def mark_failed(self, error):
        self.retry_count = (self.retry_count or 0) + 1
        self.error_message = str(error)[:1000]
        if self.retry_count >= self.max_retries:
            self.status = "failed"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "reminder_id": self.reminder_id,
            "notification_type": self.notification_type,
            "recipient_email": self.recipient_email,
            "recipient_phone": self.recipient_phone,
            "message_template": self.message_template,
            "message_data": self.message_data or {},
            "status": self.status,
            "scheduled_for": _iso(self.scheduled_for),
            "sent_at": _iso(self.sent_at),
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<NotificationQueueItem {self.id}: {self.notification_type} {self.status}>"
