"""
Job service — CRUD, manual status changes and status/stage history.

Stage movement is not done here; see ``stage_progression_service``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_

from app.core.exceptions import BadRequestError, ConflictError, ValidationError
from app.models import db
from app.models.auth import Company, User
from app.models.job import JOB_STATUSES, Job, JobStatusHistory, validate_job_status_transition
from app.models.project import PRIORITIES, Project
from app.models.stage import StageAuditLog
from app.services import stage_progression_service
from app.services.helpers.scoped_queries import get_scoped
from app.services.project_service import parse_money
from app.utils.helpers import as_utc, parse_date

logger = logging.getLogger(__name__)

_TEXT_FIELDS = (
    "title", "description", "job_type", "address",
    "client_name", "client_email", "client_phone",
)


def _coerce_float(value, field):
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")


def _apply(job: Job, data: dict) -> None:
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(job, field, data[field])
    if "title" in data and not str(data.get("title") or "").strip():
        raise ValidationError("title cannot be empty")
    if "priority" in data:
        if data["priority"] not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {data['priority']}")
        job.priority = data["priority"]
    for field in ("latitude", "longitude"):
        if field in data:
            setattr(job, field, _coerce_float(data[field], field))
    if "start_date" in data:
        job.start_date = parse_date(data["start_date"])
    if "end_date" in data:
        job.end_date = parse_date(data["end_date"])
    if job.start_date and job.end_date and job.end_date < job.start_date:
        raise ValidationError("end_date must be on or after start_date")
    if "budget" in data:
        job.budget = parse_money(data["budget"], "budget")
    if "actual_cost" in data:
        job.actual_cost = parse_money(data["actual_cost"], "actual_cost")
    if "project_id" in data:
        project_id = data["project_id"]
        if project_id in (None, ""):
            job.project_id = None
        else:
            job.project_id = get_scoped(Project, project_id, company_id=job.company_id).id
    if "foreman_id" in data:
        foreman_id = data["foreman_id"]
        if foreman_id in (None, ""):
            job.foreman_id = None
        else:
            job.foreman_id = get_scoped(User, foreman_id, company_id=job.company_id).id


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


def list_jobs(company_id: int, *, status=None, project_id=None, foreman_id=None,
              stage_id=None, search=None):
    query = Job.query_for_company(company_id)
    if status:
        query = query.filter(Job.status == status)
    if project_id:
        query = query.filter(Job.project_id == project_id)
    if foreman_id:
        query = query.filter(Job.foreman_id == foreman_id)
    if stage_id:
        query = query.filter(Job.current_stage_id == stage_id)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Job.title.ilike(like),
            Job.client_name.ilike(like),
            Job.address.ilike(like),
        ))
    return query.order_by(Job.created_at.desc(), Job.id.desc())


def get_job(company_id: int, job_id: int) -> Job:
    return get_scoped(Job, job_id, company_id=company_id)


def create_job(company_id: int, data: dict, user_id: int | None = None) -> Job:
    title = str(data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")

    company = db.session.get(Company, company_id)
    if company is not None and company.max_jobs is not None:
        if Job.query_for_company(company_id).count() >= company.max_jobs:
            raise ValidationError(
                f"Job limit reached ({company.max_jobs}). Upgrade your plan.",
                details={"max_jobs": company.max_jobs},
            )

    job = Job(company_id=company_id, created_by=user_id, status="planning")
    _apply(job, dict(data, title=title))
    db.session.add(job)
    db.session.flush()

    stage_progression_service.enter_initial_stage(job, user_id)
    db.session.commit()
    logger.info("Job created id=%s company=%s stage=%s", job.id, company_id, job.current_stage_id)
    return job


def update_job(company_id: int, job_id: int, data: dict) -> Job:
    job = get_job(company_id, job_id)
    _apply(job, data)
    db.session.commit()
    return job


def delete_job(company_id: int, job_id: int) -> None:
    job = get_job(company_id, job_id)
    db.session.delete(job)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Manual status change
# ═════════════════════════════════════════════════════════════════════════════


class SameStatusError(BadRequestError):
    """The requested status equals the current one (HTTP 400)."""


def change_status(company_id: int, job_id: int, new_status: str, user_id: int | None,
                  notes: str | None = None) -> Job:
    job = get_job(company_id, job_id)
    if new_status not in JOB_STATUSES:
        raise ValidationError(
            f"Invalid status: {new_status}", details={"allowed": list(JOB_STATUSES)},
        )
    if new_status == job.status:
        raise SameStatusError(f"Job is already {new_status}")
    if not validate_job_status_transition(job.status, new_status):
        raise ConflictError(
            "Job", "status", new_status,
            message=f"Cannot change job status from {job.status} to {new_status}",
        )

    history = JobStatusHistory(
        job_id=job.id, from_status=job.status, status=new_status,
        changed_by=user_id, notes=notes,
    )
    job.status = new_status
    db.session.add(history)
    db.session.commit()
    logger.info("Job %s status %s -> %s by user=%s", job.id, history.from_status, new_status, user_id)
    return job


def get_status_history(company_id: int, job_id: int) -> dict:
    """Manual status history plus the stage timeline rebuilt from the audit log."""
    job = get_job(company_id, job_id)
    history = [h.to_dict() for h in job.status_history.order_by(JobStatusHistory.changed_at.asc())]

    audits = (
        StageAuditLog.query
        .filter(StageAuditLog.job_id == job.id, StageAuditLog.trigger_source != "error",
                StageAuditLog.to_stage_id.isnot(None))
        .order_by(StageAuditLog.created_at.asc(), StageAuditLog.id.asc())
        .all()
    )
    timeline = []
    for idx, row in enumerate(audits):
        entered = as_utc(row.created_at)
        exited = as_utc(audits[idx + 1].created_at) if idx + 1 < len(audits) else None
        end = exited or datetime.now(timezone.utc)
        timeline.append({
            "stage_id": row.to_stage_id,
            "stage_name": row.to_stage.name if row.to_stage else None,
            "entered_at": entered.isoformat() if entered else None,
            "exited_at": exited.isoformat() if exited else None,
            "duration_hours": int((end - entered).total_seconds() // 3600) if entered else None,
            "trigger_source": row.trigger_source,
            "is_current": exited is None,
        })
    return {"job_id": job.id, "status": job.status, "status_history": history, "stage_timeline": timeline}
