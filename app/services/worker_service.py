"""
Worker service — worker records, job assignments and public assignment links.
"""

import logging
import secrets
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy import or_

from app.core.exceptions import ConflictError, GoneError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.job import Job
from app.models.workforce import (
    ASSIGNMENT_ROLES,
    EMPLOYMENT_STATUSES,
    EMPLOYMENT_TYPES,
    JobAssignment,
    Worker,
)
from app.services.helpers.scoped_queries import get_scoped
from app.utils.helpers import as_utc, parse_date, utcnow

logger = logging.getLogger(__name__)

MAX_SHARE_DAYS = 365


# ═════════════════════════════════════════════════════════════════════════════
# Workers
# ═════════════════════════════════════════════════════════════════════════════


def _apply_worker(worker: Worker, data: dict) -> None:
    if "full_name" in data:
        name = str(data.get("full_name") or "").strip()
        if not name:
            raise ValidationError("full_name cannot be empty")
        worker.full_name = name
    if "email" in data:
        email = data["email"]
        if email:
            try:
                email = validate_email(email, check_deliverability=False).normalized
            except EmailNotValidError as e:
                raise ValidationError(f"Invalid email: {e}")
        worker.email = email or None
    if "phone" in data:
        worker.phone = data["phone"]
    if "employment_type" in data:
        if data["employment_type"] not in EMPLOYMENT_TYPES:
            raise ValidationError(f"Invalid employment_type: {data['employment_type']}")
        worker.employment_type = data["employment_type"]
    if "employment_status" in data:
        if data["employment_status"] not in EMPLOYMENT_STATUSES:
            raise ValidationError(f"Invalid employment_status: {data['employment_status']}")
        worker.employment_status = data["employment_status"]
    if "hourly_rate" in data:
        try:
            rate = Decimal(str(data["hourly_rate"] if data["hourly_rate"] is not None else 0))
        except (InvalidOperation, ValueError):
            raise ValidationError("hourly_rate must be a number")
        if rate < 0:
            raise ValidationError("hourly_rate cannot be negative")
        worker.hourly_rate = rate
    if "is_foreman" in data:
        worker.is_foreman = bool(data["is_foreman"])
    if "skills" in data:
        skills = data["skills"] or []
        if not isinstance(skills, list):
            raise ValidationError("skills must be a list")
        worker.skills = [str(s).strip() for s in skills if str(s).strip()]
    if "hire_date" in data:
        worker.hire_date = parse_date(data["hire_date"])
    if "user_id" in data:
        user_id = data["user_id"]
        if user_id in (None, ""):
            worker.user_id = None
        else:
            user = get_scoped(User, user_id, company_id=worker.company_id)
            clash = Worker.query.filter(Worker.user_id == user.id, Worker.id != worker.id).first()
            if clash:
                raise ConflictError("Worker", "user_id", user.id)
            worker.user_id = user.id


def list_workers(company_id, status=None, search=None, is_foreman=None):
    q = Worker.query_for_company(company_id)
    if status:
        q = q.filter(Worker.employment_status == status)
    if is_foreman is not None:
        q = q.filter(Worker.is_foreman.is_(is_foreman))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Worker.full_name.ilike(like), Worker.email.ilike(like)))
    return q.order_by(Worker.full_name.asc(), Worker.id.asc())


def get_worker(company_id, worker_id) -> Worker:
    return get_scoped(Worker, worker_id, company_id=company_id)


def get_worker_for_user(company_id, user_id) -> Worker | None:
    return Worker.query.filter_by(company_id=company_id, user_id=user_id).first()


def create_worker(company_id, data) -> Worker:
    if not str(data.get("full_name") or "").strip():
        raise ValidationError("full_name is required")
    worker = Worker(company_id=company_id, skills=[])
    _apply_worker(worker, data)
    db.session.add(worker)
    db.session.commit()
    return worker


def update_worker(company_id, worker_id, data) -> Worker:
    worker = get_worker(company_id, worker_id)
    _apply_worker(worker, data)
    db.session.commit()
    return worker


def delete_worker(company_id, worker_id) -> None:
    worker = get_worker(company_id, worker_id)
    db.session.delete(worker)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════════


def list_assignments(company_id, job_id):
    job = get_scoped(Job, job_id, company_id=company_id)
    return (
        JobAssignment.query.filter_by(job_id=job.id)
        .order_by(JobAssignment.created_at.asc(), JobAssignment.id.asc())
        .all()
    )


def _assignment_exists(job_id, worker_id) -> bool:
    return JobAssignment.query.filter_by(job_id=job_id, worker_id=worker_id).first() is not None


def create_assignment(company_id, job_id, data, user_id=None) -> JobAssignment:
    job = get_scoped(Job, job_id, company_id=company_id)
    if data.get("worker_id") in (None, ""):
        raise ValidationError("worker_id is required")
    worker = get_worker(company_id, data["worker_id"])
    if not worker.is_active:
        raise ValidationError("Worker is not active")
    role = data.get("role") or ("foreman" if worker.is_foreman else "worker")
    if role not in ASSIGNMENT_ROLES:
        raise ValidationError(f"Invalid role: {role}", details={"allowed": list(ASSIGNMENT_ROLES)})
    if _assignment_exists(job.id, worker.id):
        raise ConflictError("JobAssignment", "worker_id", worker.id,
                            message="Worker is already assigned to this job")

    start = parse_date(data.get("start_date"))
    end = parse_date(data.get("end_date"))
    if start and end and end < start:
        raise ValidationError("end_date must be on or after start_date")

    assignment = JobAssignment(
        company_id=company_id,
        job_id=job.id,
        worker_id=worker.id,
        role=role,
        assigned_by=user_id,
        start_date=start,
        end_date=end,
        notes=data.get("notes"),
    )
    db.session.add(assignment)
    db.session.commit()
    return assignment


def get_assignment(company_id, assignment_id) -> JobAssignment:
    return get_scoped(JobAssignment, assignment_id, company_id=company_id)


def delete_assignment(company_id, assignment_id) -> None:
    assignment = get_assignment(company_id, assignment_id)
    db.session.delete(assignment)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Public share links
# ═════════════════════════════════════════════════════════════════════════════


def share_url_for(token: str) -> str:
    base = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    return f"{base}/api/v1/shared-assignments/{token}"


def share_assignment(company_id, assignment_id, user_id, expires_in_days=None) -> JobAssignment:
    """Enable a public link; a fresh token replaces any earlier one."""
    assignment = get_assignment(company_id, assignment_id)
    if expires_in_days in (None, ""):
        expires_in_days = current_app.config.get("ASSIGNMENT_SHARE_DAYS", 30)
    try:
        days = int(expires_in_days)
    except (TypeError, ValueError):
        raise ValidationError("expires_in_days must be an integer")
    if days < 1 or days > MAX_SHARE_DAYS:
        raise ValidationError(f"expires_in_days must be between 1 and {MAX_SHARE_DAYS}")

    now = utcnow()
    assignment.is_public = True
    assignment.share_token = secrets.token_urlsafe(32)
    assignment.share_expires_at = now + timedelta(days=days)
    assignment.shared_at = now
    assignment.shared_by = user_id
    db.session.commit()
    logger.info("Assignment %s shared by user %s for %d day(s)", assignment.id, user_id, days)
    return assignment


def unshare_assignment(company_id, assignment_id) -> JobAssignment:
    assignment = get_assignment(company_id, assignment_id)
    assignment.is_public = False
    assignment.share_token = None
    assignment.share_expires_at = None
    db.session.commit()
    return assignment


def get_shared_assignment(token: str) -> dict:
    """Public view of a shared assignment.

    Raises NotFoundError for unknown or disabled links, GoneError once expired.
    """
    assignment = JobAssignment.query.filter_by(share_token=token).first() if token else None
    if assignment is None or not assignment.is_public:
        raise NotFoundError("Shared assignment")
    expires = as_utc(assignment.share_expires_at)
    if expires is not None and expires < utcnow():
        raise GoneError("This share link has expired")

    job, worker = assignment.job, assignment.worker
    stage = job.current_stage
    return {
        "assignment": {
            "id": assignment.id,
            "role": assignment.role,
            "start_date": assignment.start_date.isoformat() if assignment.start_date else None,
            "end_date": assignment.end_date.isoformat() if assignment.end_date else None,
            "notes": assignment.notes,
            "share_expires_at": expires.isoformat() if expires else None,
        },
        "job": {
            "id": job.id,
            "title": job.title,
            "description": job.description,
            "status": job.status,
            "address": job.address,
            "latitude": job.latitude,
            "longitude": job.longitude,
            "start_date": job.start_date.isoformat() if job.start_date else None,
            "end_date": job.end_date.isoformat() if job.end_date else None,
            "current_stage": stage.name if stage else None,
        },
        "worker": {
            "id": worker.id,
            "full_name": worker.full_name,
            "phone": worker.phone,
            "skills": worker.skills or [],
        },
    }
