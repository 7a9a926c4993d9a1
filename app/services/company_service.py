"""
Company service — company profile, role-aware dashboard, site-admin views.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import SUBSCRIPTION_PLANS, SUBSCRIPTION_STATUSES, Company, User
from app.models.job import Job
from app.models.stage import JobTask
from app.models.time_tracking import TimeEntry, WorkerCheckIn
from app.models.workforce import JobAssignment, Worker
from app.services.user_service import unique_slug

logger = logging.getLogger(__name__)

COMPANY_EDITABLE = ("name", "address", "phone", "email", "settings")
SITE_ADMIN_EDITABLE = COMPANY_EDITABLE + (
    "subscription_plan", "subscription_status", "max_users", "max_jobs",
)


def get_company(company_id: int) -> Company:
    company = db.session.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company", company_id)
    return company


def _apply(company: Company, data: dict, fields) -> None:
    for field in fields:
        if field not in data:
            continue
        value = data[field]
        if field == "name" and not (value or "").strip():
            raise ValidationError("name cannot be blank")
        if field == "subscription_plan" and value not in SUBSCRIPTION_PLANS:
            raise ValidationError(f"Invalid subscription_plan: {value}")
        if field == "subscription_status" and value not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"Invalid subscription_status: {value}")
        if field in ("max_users", "max_jobs"):
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{field} must be an integer")
            if value < 1:
                raise ValidationError(f"{field} must be at least 1")
        setattr(company, field, value)


def update_company(company_id: int, data: dict) -> Company:
    company = get_company(company_id)
    _apply(company, data, COMPANY_EDITABLE)
    db.session.commit()
    return company


# ═══════════════════════════════════════════════════════════════
# Site admin
# ═══════════════════════════════════════════════════════════════

def list_companies_with_counts(status: str = None, search: str = None) -> list[dict]:
    user_counts = dict(
        db.session.query(User.company_id, func.count(User.id)).group_by(User.company_id).all()
    )
    job_counts = dict(
        db.session.query(Job.company_id, func.count(Job.id)).group_by(Job.company_id).all()
    )
    q = Company.query
    if status:
        q = q.filter(Company.subscription_status == status)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Company.name.ilike(like), Company.slug.ilike(like)))
    result = []
    for company in q.order_by(Company.created_at.desc(), Company.id.desc()).all():
        d = company.to_dict()
        d["user_count"] = user_counts.get(company.id, 0)
        d["job_count"] = job_counts.get(company.id, 0)
        result.append(d)
    return result


def create_company(data: dict) -> Company:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    slug = data.get("slug")
    if slug:
        if Company.query.filter_by(slug=slug).first():
            raise ConflictError("Company", "slug", slug)
    else:
        slug = unique_slug(name)
    company = Company(name=name, slug=slug)
    _apply(company, data, SITE_ADMIN_EDITABLE)
    db.session.add(company)
    db.session.commit()
    logger.info("Site admin created company id=%s slug=%s", company.id, company.slug)
    return company


def admin_update_company(company_id: int, data: dict) -> Company:
    company = get_company(company_id)
    before = company.subscription_status
    _apply(company, data, SITE_ADMIN_EDITABLE)
    db.session.commit()
    if before != company.subscription_status:
        logger.warning(
            "Company %s subscription_status %s -> %s", company.id, before, company.subscription_status,
        )
    return company


def list_all_jobs(company_id: int = None, status: str = None, search: str = None):
    """Cross-company job query for site admins."""
    q = Job.query
    if company_id:
        q = q.filter(Job.company_id == company_id)
    if status:
        q = q.filter(Job.status == status)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Job.title.ilike(like), Job.client_name.ilike(like), Job.address.ilike(like)))
    return q.order_by(Job.created_at.desc(), Job.id.desc())


# ═══════════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════════

def _sum(query) -> float:
    value = query.scalar()
    return float(value) if value is not None else 0.0


def _owner_stats(company_id: int, now: datetime) -> dict:
    year_start = datetime(now.year, 1, 1)
    month_start = datetime(now.year, now.month, 1)
    return {
        "active_jobs": Job.query.filter_by(company_id=company_id, status="active").count(),
        "total_jobs": Job.query.filter_by(company_id=company_id).count(),
        "active_workers": Worker.query.filter_by(
            company_id=company_id, employment_status="active",
        ).count(),
        "revenue_ytd": _sum(
            db.session.query(func.sum(Job.budget)).filter(
                Job.company_id == company_id,
                Job.status == "completed",
                Job.updated_at >= year_start,
            )
        ),
        "labour_cost_month": _sum(
            db.session.query(func.sum(TimeEntry.total_cost)).filter(
                TimeEntry.company_id == company_id,
                TimeEntry.status == "approved",
                TimeEntry.start_time >= month_start,
            )
        ),
        "pending_time_approvals": TimeEntry.query.filter_by(
            company_id=company_id, status="pending",
        ).count(),
    }


def _foreman_stats(company_id: int, user: User) -> dict:
    job_ids = [
        j.id for j in Job.query.filter(
            Job.company_id == company_id, Job.foreman_id == user.id,
        ).all()
    ]
    total_tasks = completed = 0
    if job_ids:
        total_tasks = JobTask.query.filter(
            JobTask.job_id.in_(job_ids), JobTask.status != "cancelled",
        ).count()
        completed = JobTask.query.filter(
            JobTask.job_id.in_(job_ids), JobTask.status == "completed",
        ).count()
    return {
        "assigned_jobs": len(job_ids),
        "pending_time_approvals": TimeEntry.query.filter_by(
            company_id=company_id, status="pending",
        ).count(),
        "task_completion_rate": round(completed * 100.0 / total_tasks, 1) if total_tasks else 0.0,
    }


def _worker_stats(company_id: int, user: User, now: datetime) -> dict:
    worker = Worker.query.filter_by(company_id=company_id, user_id=user.id).first()
    current_assignment = None
    hours_this_week = 0.0
    if worker:
        open_check_in = (
            WorkerCheckIn.query.filter_by(worker_id=worker.id, check_out_time=None)
            .order_by(WorkerCheckIn.check_in_time.desc())
            .first()
        )
        if open_check_in:
            current_assignment = {"job_id": open_check_in.job_id,
                                  "job_title": open_check_in.job.title if open_check_in.job else None,
                                  "checked_in_at": open_check_in.check_in_time.isoformat()}
        else:
            latest = (
                JobAssignment.query.filter_by(worker_id=worker.id)
                .order_by(JobAssignment.created_at.desc())
                .first()
            )
            if latest:
                current_assignment = {"job_id": latest.job_id,
                                      "job_title": latest.job.title if latest.job else None,
                                      "checked_in_at": None}
        week_start = (now - timedelta(days=now.weekday())).replace(
            hour=0, minute=0, second=0, microsecond=0, tzinfo=None,
        )
        entries = TimeEntry.query.filter(
            TimeEntry.worker_id == worker.id,
            TimeEntry.start_time >= week_start,
            TimeEntry.end_time.isnot(None),
        ).all()
        hours_this_week = round(sum(e.worked_minutes for e in entries) / 60.0, 2)
    open_tasks = JobTask.query.filter(
        JobTask.assigned_to == user.id,
        JobTask.status.in_(("pending", "in_progress", "overdue")),
    ).count()
    return {
        "worker_id": worker.id if worker else None,
        "current_assignment": current_assignment,
        "hours_this_week": hours_this_week,
        "open_tasks": open_tasks,
    }


def get_dashboard(company_id: int, user: User) -> dict:
    """Role-aware headline numbers for the current company."""
    now = datetime.now(timezone.utc)
    if user.role in ("owner", "admin", "site_admin"):
        stats = _owner_stats(company_id, now)
    elif user.role == "foreman":
        stats = _foreman_stats(company_id, user)
    elif user.role == "worker":
        stats = _worker_stats(company_id, user, now)
    else:
        stats = {
            "jobs": Job.query.filter_by(company_id=company_id).count(),
            "active_jobs": Job.query.filter_by(company_id=company_id, status="active").count(),
        }
    return {"role": user.role, "company_id": company_id, "stats": stats}
