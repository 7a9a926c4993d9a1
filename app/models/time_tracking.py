"""
Time tracking models.

    Worker ──< WorkerCheckIn ──1 TimeEntry ──< BreakEntry
                                   └───────< TimeApproval

A check-in opens an ``active`` TimeEntry; check-out closes it into
``pending`` for approval.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import CompanyModel


ENTRY_TYPES = ("regular", "overtime")
ENTRY_STATUSES = ("active", "pending", "approved", "rejected")
BREAK_TYPES = ("lunch", "general", "rest", "personal")
APPROVAL_STATUSES = ("approved", "rejected", "changes_requested")


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else None


class WorkerCheckIn(CompanyModel):
    __tablename__ = "worker_check_ins"

    id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(
        db.Integer, db.ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    check_in_time = db.Column(db.DateTime, nullable=False)
    check_out_time = db.Column(db.DateTime)
    location_name = db.Column(db.String(200))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    checkout_latitude = db.Column(db.Float)
    checkout_longitude = db.Column(db.Float)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    worker = db.relationship("Worker")
    job = db.relationship("Job")

    @property
    def is_open(self):
        return self.check_out_time is None

    def to_dict(self):
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "job_id": self.job_id,
            "check_in_time": _iso(self.check_in_time),
            "check_out_time": _iso(self.check_out_time),
            "location_name": self.location_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "checkout_latitude": self.checkout_latitude,
            "checkout_longitude": self.checkout_longitude,
            "notes": self.notes,
        }


class TimeEntry(CompanyModel):
    __tablename__ = "time_entries"

    id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(
        db.Integer, db.ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    check_in_id = db.Column(
        db.Integer, db.ForeignKey("worker_check_ins.id", ondelete="SET NULL"),
    )
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime)
    duration_minutes = db.Column(db.Integer)
    break_duration_minutes = db.Column(db.Integer, nullable=False, default=0)
    entry_type = db.Column(db.String(20), nullable=False, default="regular")
    hourly_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    overtime_rate = db.Column(db.Numeric(10, 2))
    total_cost = db.Column(db.Numeric(12, 2))
    status = db.Column(db.String(20), nullable=False, default="active")
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = db.Column(db.DateTime)
    approval_notes = db.Column(db.Text)
    start_latitude = db.Column(db.Float)
    start_longitude = db.Column(db.Float)
    end_latitude = db.Column(db.Float)
    end_longitude = db.Column(db.Float)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("entry_type IN ('regular','overtime')", name="ck_time_entry_type"),
        db.CheckConstraint(
            "status IN ('active','pending','approved','rejected')", name="ck_time_entry_status",
        ),
        db.CheckConstraint(
            "end_time IS NULL OR end_time >= start_time", name="ck_time_entry_range",
        ),
        db.Index("ix_time_entries_company_status", "company_id", "status"),
    )

    worker = db.relationship("Worker")
    job = db.relationship("Job")
    breaks = db.relationship(
        "BreakEntry", back_populates="time_entry", lazy="dynamic", cascade="all, delete-orphan",
    )
    approvals = db.relationship(
        "TimeApproval", back_populates="time_entry", lazy="dynamic", cascade="all, delete-orphan",
    )

    @property
    def worked_minutes(self):
        return max((self.duration_minutes or 0) - (self.break_duration_minutes or 0), 0)

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "worker_id": self.worker_id,
            "worker_name": self.worker.full_name if self.worker else None,
            "job_id": self.job_id,
            "check_in_id": self.check_in_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_minutes": self.duration_minutes,
            "break_duration_minutes": self.break_duration_minutes,
            "entry_type": self.entry_type,
            "hourly_rate": _num(self.hourly_rate),
            "overtime_rate": _num(self.overtime_rate),
            "total_cost": _num(self.total_cost),
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "approval_notes": self.approval_notes,
            "start_latitude": self.start_latitude,
            "start_longitude": self.start_longitude,
            "end_latitude": self.end_latitude,
            "end_longitude": self.end_longitude,
            "description": self.description,
            "created_at": _iso(self.created_at),
        }


class BreakEntry(db.Model):
    __tablename__ = "break_entries"

    id = db.Column(db.Integer, primary_key=True)
    time_entry_id = db.Column(
        db.Integer, db.ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    worker_id = db.Column(
        db.Integer, db.ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    break_type = db.Column(db.String(20), nullable=False, default="general")
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime)
    duration_minutes = db.Column(db.Integer)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text)

    __table_args__ = (
        db.CheckConstraint(
            "break_type IN ('lunch','general','rest','personal')", name="ck_break_type",
        ),
    )

    time_entry = db.relationship("TimeEntry", back_populates="breaks")

    def to_dict(self):
        return {
            "id": self.id,
            "time_entry_id": self.time_entry_id,
            "worker_id": self.worker_id,
            "break_type": self.break_type,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_minutes": self.duration_minutes,
            "is_paid": self.is_paid,
            "notes": self.notes,
        }


class TimeApproval(db.Model):
    __tablename__ = "time_approvals"

    id = db.Column(db.Integer, primary_key=True)
    time_entry_id = db.Column(
        db.Integer, db.ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    approval_status = db.Column(db.String(20), nullable=False)
    notes = db.Column(db.Text)
    approved_start_time = db.Column(db.DateTime)
    approved_end_time = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "approval_status IN ('approved','rejected','changes_requested')",
            name="ck_time_approval_status",
        ),
    )

    time_entry = db.relationship("TimeEntry", back_populates="approvals")

    def to_dict(self):
        return {
            "id": self.id,
            "time_entry_id": self.time_entry_id,
            "approver_id": self.approver_id,
            "approval_status": self.approval_status,
            "notes": self.notes,
            "approved_start_time": _iso(self.approved_start_time),
            "approved_end_time": _iso(self.approved_end_time),
            "created_at": _iso(self.created_at),
        }
