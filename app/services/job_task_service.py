"""
Job task service — spawning tasks from templates, checklist updates, SLA state.

Tasks are created by the stage engine when a job enters a stage; this module
owns the rules for what a task looks like afterwards.
"""

import logging
import secrets
from datetime import timedelta

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.job import Job
from app.models.stage import (
    TASK_STATUS_TRANSITIONS,
    JobTask,
    TaskTemplate,
    validate_task_status_transition,
)
from app.services.helpers.scoped_queries import get_scoped
from app.utils.helpers import as_utc, parse_datetime_input, utcnow

logger = logging.getLogger(__name__)

SLA_WARNING_WINDOW = timedelta(hours=2)
OPEN_STATUSES = ("pending", "in_progress")


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


def resolve_assignee(template: TaskTemplate, job: Job, user_id):
    """Pick the user a new task goes to; the acting user is the fallback."""
    target = template.auto_assign_to
    if target == "foreman":
        return job.foreman_id or user_id
    if target == "admin":
        admin = (
            User.query.filter(
                User.company_id == job.company_id,
                User.role.in_(("owner", "site_admin")),
                User.status == "active",
            )
            .order_by(User.created_at.asc(), User.id.asc())
            .first()
        )
        return admin.id if admin else user_id
    if target == "client":
        # The client answers through client_response_token, not a login
        return None
    return user_id


def create_tasks_for_stage(job: Job, stage, user_id, now=None) -> list[JobTask]:
    """Spawn one task per active template of ``stage``. Caller commits.

    A template that already has a non-cancelled task on this job is skipped.
    """
    now = now or utcnow()
    created = []
    templates = (
        TaskTemplate.query.filter_by(stage_id=stage.id, is_active=True)
        .order_by(TaskTemplate.id.asc())
        .all()
    )
    for template in templates:
        duplicate = JobTask.query.filter(
            JobTask.job_id == job.id,
            JobTask.template_id == template.id,
            JobTask.status != "cancelled",
        ).first()
        if duplicate:
            logger.debug("Task for template %s already open on job %s", template.id, job.id)
            continue

        offset = template.due_date_offset_hours or 0
        task = JobTask(
            job_id=job.id,
            template_id=template.id,
            title=template.title,
            description=template.description,
            subtasks=[dict(s, completed=False) for s in (template.subtasks or [])],
            assigned_to=resolve_assignee(template, job, user_id),
            due_date=now + timedelta(hours=offset) if offset > 0 else None,
            status="pending",
            priority=template.priority,
            upload_urls=[],
            client_response_token=secrets.token_urlsafe(24) if template.client_visible else None,
        )
        db.session.add(task)
        created.append(task)

    if created:
        db.session.flush()
        logger.info("Created %d task(s) for job %s in stage %s", len(created), job.id, stage.id)
    return created


# ═════════════════════════════════════════════════════════════════════════════
# Derived fields
# ═════════════════════════════════════════════════════════════════════════════


def task_progress(task: JobTask) -> int:
    subtasks = task.subtasks or []
    if not subtasks:
        return 100 if task.status == "completed" else 0
    done = sum(1 for s in subtasks if s.get("completed"))
    return int(done * 100 / len(subtasks))


def sla_deadline(task: JobTask):
    template = task.template
    if template is not None and template.sla_hours:
        return as_utc(task.created_at) + timedelta(hours=template.sla_hours)
    return as_utc(task.due_date)


def sla_status(task: JobTask, now=None) -> str:
    if task.status in ("completed", "cancelled"):
        return "ok"
    deadline = sla_deadline(task)
    if deadline is None:
        return "ok"
    now = now or utcnow()
    if now > deadline:
        return "violated"
    if deadline - now <= SLA_WARNING_WINDOW:
        return "warning"
    return "ok"


def task_to_dict(task: JobTask, now=None) -> dict:
    d = task.to_dict()
    template = task.template
    d["upload_required"] = bool(template and template.upload_required)
    d["upload_file_types"] = (template.upload_file_types or []) if template else []
    d["sla_hours"] = template.sla_hours if template else None
    d["client_visible"] = bool(template and template.client_visible)
    d["progress"] = task_progress(task)
    d["sla_status"] = sla_status(task, now)
    return d


def derive_status_from_subtasks(subtasks) -> str | None:
    if not subtasks:
        return None
    done = sum(1 for s in subtasks if s.get("completed"))
    if done == len(subtasks):
        return "completed"
    if done:
        return "in_progress"
    return "pending"


# ═════════════════════════════════════════════════════════════════════════════
# Queries & updates
# ═════════════════════════════════════════════════════════════════════════════


def list_tasks(company_id: int, job_id: int, status: str = None) -> list[JobTask]:
    job = get_scoped(Job, job_id, company_id=company_id)
    q = JobTask.query.filter_by(job_id=job.id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(JobTask.created_at.asc(), JobTask.id.asc()).all()


def get_task(company_id: int, job_id: int, task_id: int) -> JobTask:
    job = get_scoped(Job, job_id, company_id=company_id)
    return get_scoped(JobTask, task_id, job_id=job.id)


def _merge_subtasks(current, updates) -> list:
    if not isinstance(updates, list):
        raise ValidationError("subtasks must be a list")
    by_id = {str(u.get("id")): u for u in updates if isinstance(u, dict) and u.get("id") is not None}
    known = {str(s.get("id")) for s in current}
    unknown = sorted(set(by_id) - known)
    if unknown:
        raise ValidationError("Unknown subtask id(s)", details={"subtask_ids": unknown})
    merged = []
    for sub in current:
        update = by_id.get(str(sub.get("id")))
        sub = dict(sub)
        if update:
            if "completed" in update:
                sub["completed"] = bool(update["completed"])
            if "notes" in update:
                sub["notes"] = update["notes"]
        merged.append(sub)
    return merged


def _set_status(task: JobTask, new_status: str, now) -> None:
    if new_status == task.status:
        return
    if new_status not in TASK_STATUS_TRANSITIONS:
        raise ValidationError(f"Invalid status: {new_status}")
    if not validate_task_status_transition(task.status, new_status):
        raise ConflictError(
            "JobTask", "status", new_status,
            message=f"Cannot change task status from {task.status} to {new_status}",
        )
    task.status = new_status
    task.completed_at = now if new_status == "completed" else None


def update_task(company_id: int, job_id: int, task_id: int, data: dict) -> JobTask:
    """Apply a PATCH to a task.

    Without an explicit ``status`` the status follows the checklist: all
    subtasks done → completed, some → in_progress, none → pending.
    """
    task = get_task(company_id, job_id, task_id)
    now = utcnow()

    if "subtasks" in data:
        task.subtasks = _merge_subtasks(task.subtasks or [], data["subtasks"])
    if "upload_urls" in data:
        urls = data["upload_urls"]
        if not isinstance(urls, list) or not all(isinstance(u, str) and u.strip() for u in urls):
            raise ValidationError("upload_urls must be a list of non-empty strings")
        task.upload_urls = urls
    if "upload_verified" in data:
        task.upload_verified = bool(data["upload_verified"])
    if "assigned_to" in data:
        assignee = data["assigned_to"]
        task.assigned_to = get_scoped(User, assignee, company_id=company_id).id if assignee else None
    if "due_date" in data:
        try:
            task.due_date = parse_datetime_input(data["due_date"])
        except ValueError as exc:
            raise ValidationError(str(exc))

    if data.get("status"):
        _set_status(task, data["status"], now)
    elif "subtasks" in data:
        derived = derive_status_from_subtasks(task.subtasks)
        if derived and derived != task.status and validate_task_status_transition(task.status, derived):
            _set_status(task, derived, now)

    template = task.template
    if task.status == "completed" and template is not None and template.upload_required:
        if not task.upload_urls:
            db.session.rollback()
            raise ValidationError(
                "This task requires at least one upload before it can be completed",
                details={"upload_file_types": template.upload_file_types or []},
            )

    db.session.commit()
    return task


def mark_overdue_tasks(company_id: int | None = None, now=None) -> int:
    """Flip open tasks past their due date to ``overdue``. Returns the count."""
    now = now or utcnow()
    q = JobTask.query.filter(
        JobTask.status.in_(OPEN_STATUSES),
        JobTask.due_date.isnot(None),
        JobTask.due_date < now,
    )
    if company_id is not None:
        q = q.join(Job, Job.id == JobTask.job_id).filter(Job.company_id == company_id)
    tasks = q.all()
    for task in tasks:
        task.status = "overdue"
    db.session.commit()
    if tasks:
        logger.info("Marked %d task(s) overdue (company=%s)", len(tasks), company_id)
    return len(tasks)
