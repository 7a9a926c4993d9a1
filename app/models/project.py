"""Project domain model — a client engagement that groups jobs."""

from datetime import datetime, timezone

from app.models import db
from app.models.base import CompanyModel


PROJECT_STATUSES = ("planning", "active", "on_hold", "completed", "cancelled")
PRIORITIES = ("low", "medium", "high", "urgent")


class Project(CompanyModel):
    """Client project owned by a company; jobs hang off it."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    client_name = db.Column(db.String(200))
    client_email = db.Column(db.String(200))
    client_phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    estimated_budget = db.Column(db.Numeric(14, 2))
    status = db.Column(db.String(20), nullable=False, default="planning")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date",
            name="ck_project_dates",
        ),
        db.CheckConstraint(
            "estimated_budget IS NULL OR estimated_budget >= 0",
            name="ck_project_budget",
        ),
        db.CheckConstraint(
            "status IN ('planning','active','on_hold','completed','cancelled')",
            name="ck_project_status",
        ),
        db.CheckConstraint(
            "priority IN ('low','medium','high','urgent')",
            name="ck_project_priority",
        ),
    )

    jobs = db.relationship("Job", back_populates="project", lazy="dynamic")

    def to_dict(self, include_jobs=False):
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "address": self.address,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "estimated_budget": float(self.estimated_budget) if self.estimated_budget is not None else None,
            "status": self.status,
            "priority": self.priority,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_jobs:
            jobs = self.jobs.all()
            d["jobs"] = [j.to_dict() for j in jobs]
            d["job_count"] = len(jobs)
            by_status = {}
            for j in jobs:
                by_status[j.status] = by_status.get(j.status, 0) + 1
            d["jobs_by_status"] = by_status
        return d

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
