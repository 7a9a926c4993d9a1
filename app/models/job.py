"""
Job models — the unit of site work, plus manual status history.

Jobs move through two layered machines:
  - ``status`` (planning/active/on_hold/completed/cancelled), changed either
    manually under JOB_STATUS_TRANSITIONS or by the stage engine via the
    current stage's ``maps_to_status``
  - ``current_stage_id``, owned by app.services.stage_progression_service
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import CompanyModel


JOB_STATUSES = ("planning", "active", "on_hold", "completed", "cancelled")

JOB_STATUS_TRANSITIONS = {
    "planning":  ["active", "on_hold", "cancelled"],
    "active":    ["on_hold", "completed", "cancelled"],
    "on_hold":   ["active", "cancelled"],
    "completed": ["active"],     # reopen
    "cancelled": ["planning"],
}


def validate_job_status_transition(old_status, new_status):
    """Return True if a manual Job status transition is valid."""
    return new_status in JOB_STATUS_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# Job
# ═════════════════════════════════════════════════════════════════════════════


class Job(CompanyModel):
    __tablename__ = "jobs"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="planning")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    job_type = db.Column(db.String(50))
    address = db.Column(db.Text)
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    client_name = db.Column(db.String(200))
    client_email = db.Column(db.String(200))
    client_phone = db.Column(db.String(50))
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    budget = db.Column(db.Numeric(14, 2))
    actual_cost = db.Column(db.Numeric(14, 2), default=0)

    # ── Stage engine ──
    current_stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    stage_entered_at = db.Column(db.DateTime)

    foreman_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('planning','active','on_hold','completed','cancelled')",
            name="ck_job_status",
        ),
        db.CheckConstraint(
            "priority IN ('low','medium','high','urgent')",
            name="ck_job_priority",
        ),
        db.CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date",
            name="ck_job_dates",
        ),
        db.Index("ix_jobs_company_status", "company_id", "status"),
    )

    project = db.relationship("Project", back_populates="jobs")
    current_stage = db.relationship("JobStage", foreign_keys=[current_stage_id])
    foreman = db.relationship("User", foreign_keys=[foreman_id])
    status_history = db.relationship(
        "JobStatusHistory", back_populates="job", lazy="dynamic",
        cascade="all, delete-orphan", order_by="JobStatusHistory.changed_at",
    )

    def to_dict(self, include_stage=True):
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "job_type": self.job_type,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "budget": float(self.budget) if self.budget is not None else None,
            "actual_cost": float(self.actual_cost) if self.actual_cost is not None else None,
            "current_stage_id": self.current_stage_id,
            "stage_entered_at": self.stage_entered_at.isoformat() if self.stage_entered_at else None,
            "foreman_id": self.foreman_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_stage:
            stage = self.current_stage
            d["current_stage"] = (
                {"id": stage.id, "name": stage.name, "color": stage.color,
                 "sequence_order": stage.sequence_order}
                if stage else None
            )
        return d

    def __repr__(self):
        return f"<Job {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# JobStatusHistory: manual status changes
# ═════════════════════════════════════════════════════════════════════════════


class JobStatusHistory(db.Model):
    __tablename__ = "job_status_history"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    from_status = db.Column(db.String(20))
    status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    notes = db.Column(db.Text)
    changed_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    job = db.relationship("Job", back_populates="status_history")

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "from_status": self.from_status,
            "status": self.status,
            "changed_by": self.changed_by,
            "notes": self.notes,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }
