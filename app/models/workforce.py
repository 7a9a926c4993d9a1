"""Workforce models — company workers, job assignments and applications."""

from datetime import datetime, timezone

from app.models import db
from app.models.base import CompanyModel


EMPLOYMENT_TYPES = ("full_time", "part_time", "contractor", "casual")
EMPLOYMENT_STATUSES = ("active", "inactive", "terminated")
ASSIGNMENT_ROLES = ("worker", "foreman", "supervisor", "specialist")


class Worker(CompanyModel):
    __tablename__ = "workers"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True,
    )
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    employment_type = db.Column(db.String(20), nullable=False, default="full_time")
    employment_status = db.Column(db.String(20), nullable=False, default="active")
    hourly_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_foreman = db.Column(db.Boolean, nullable=False, default=False)
    skills = db.Column(db.JSON, default=list)
    hire_date = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "employment_type IN ('full_time','part_time','contractor','casual')",
            name="ck_worker_employment_type",
        ),
        db.CheckConstraint(
            "employment_status IN ('active','inactive','terminated')",
            name="ck_worker_employment_status",
        ),
        db.CheckConstraint("hourly_rate >= 0", name="ck_worker_rate"),
    )

    user = db.relationship("User")
    assignments = db.relationship(
        "JobAssignment", back_populates="worker", lazy="dynamic", cascade="all, delete-orphan",
    )

    @property
    def is_active(self):
        return self.employment_status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "employment_type": self.employment_type,
            "employment_status": self.employment_status,
            "hourly_rate": float(self.hourly_rate) if self.hourly_rate is not None else 0.0,
            "is_foreman": self.is_foreman,
            "skills": self.skills or [],
            "hire_date": self.hire_date.isoformat() if self.hire_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Worker {self.id}: {self.full_name}>"


class JobAssignment(CompanyModel):
    __tablename__ = "job_assignments"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    worker_id = db.Column(
        db.Integer, db.ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default="worker")
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    notes = db.Column(db.Text)

    # Public share link
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    share_token = db.Column(db.String(64), unique=True)
    share_expires_at = db.Column(db.DateTime)
    shared_at = db.Column(db.DateTime)
    shared_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("job_id", "worker_id", name="uq_assignment_job_worker"),
        db.CheckConstraint(
            "role IN ('worker','foreman','supervisor','specialist')",
            name="ck_assignment_role",
        ),
    )

    job = db.relationship("Job")
    worker = db.relationship("Worker", back_populates="assignments")

    def to_dict(self, include_share=False):
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "job_id": self.job_id,
            "worker_id": self.worker_id,
            "worker_name": self.worker.full_name if self.worker else None,
            "role": self.role,
            "assigned_by": self.assigned_by,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "notes": self.notes,
            "is_public": self.is_public,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_share:
            d["share_token"] = self.share_token
            d["share_expires_at"] = self.share_expires_at.isoformat() if self.share_expires_at else None
            d["shared_at"] = self.shared_at.isoformat() if self.shared_at else None
            d["shared_by"] = self.shared_by
        return d


APPLICATION_STATUSES = ("pending", "approved", "rejected", "withdrawn")

# Approved is final: the applicant is on the roster by then
APPLICATION_TRANSITIONS = {
    "pending":   ["approved", "rejected", "withdrawn"],
    "rejected":  ["pending"],
    "withdrawn": ["pending"],
    "approved":  [],
}


class WorkerApplication(CompanyModel):
    """Job application submitted through a company's public careers link."""

    __tablename__ = "worker_applications"

    id = db.Column(db.Integer, primary_key=True)

    # Applicant
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, index=True)
    phone = db.Column(db.String(50), nullable=False)
    address = db.Column(db.Text)
    date_of_birth = db.Column(db.Date)

    # Work
    desired_hourly_rate = db.Column(db.Numeric(10, 2))
    availability = db.Column(db.JSON)
    work_experience = db.Column(db.Text)
    previous_employer = db.Column(db.String(200))
    years_experience = db.Column(db.Integer)
    skills = db.Column(db.JSON, default=list)
    certifications = db.Column(db.JSON, default=list)
    licenses = db.Column(db.JSON, default=list)
    cover_letter = db.Column(db.Text)
    references = db.Column(db.JSON, default=list)
    emergency_contact_name = db.Column(db.String(200))
    emergency_contact_phone = db.Column(db.String(50))
    emergency_contact_relationship = db.Column(db.String(100))
    source = db.Column(db.String(100))

    # Review
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    applied_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    reviewed_at = db.Column(db.DateTime)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reviewer_notes = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.id", ondelete="SET NULL"))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','approved','rejected','withdrawn')",
            name="ck_application_status",
        ),
        db.CheckConstraint(
            "desired_hourly_rate IS NULL OR desired_hourly_rate >= 0", name="ck_application_rate",
        ),
    )

    reviewer = db.relationship("User", foreign_keys=[reviewed_by])
    worker = db.relationship("Worker")

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "desired_hourly_rate": (
                float(self.desired_hourly_rate) if self.desired_hourly_rate is not None else None
            ),
            "availability": self.availability,
            "work_experience": self.work_experience,
            "previous_employer": self.previous_employer,
            "years_experience": self.years_experience,
            "skills": self.skills or [],
            "certifications": self.certifications or [],
            "licenses": self.licenses or [],
            "cover_letter": self.cover_letter,
            "references": self.references or [],
            "emergency_contact": {
                "name": self.emergency_contact_name,
                "phone": self.emergency_contact_phone,
                "relationship": self.emergency_contact_relationship,
            },
            "source": self.source,
            "status": self.status,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_by_name": self.reviewer.full_name if self.reviewer else None,
            "reviewer_notes": self.reviewer_notes,
            "rejection_reason": self.rejection_reason,
            "worker_id": self.worker_id,
        }

    def __repr__(self):
        return f"<WorkerApplication {self.id}: {self.full_name} ({self.status})>"
