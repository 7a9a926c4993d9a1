"""Stage reporting — per-stage performance and SLA breach lists."""

import logging
import statistics
from datetime import datetime, timedelta

from app.models import db
from app.models.job import Job
from app.models.stage import JobStage, JobTask, StagePerformanceMetric, TaskTemplate
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


def _severity(hours_overdue: float) -> str:
    if hours_overdue > 48:
        return "critical"
    if hours_overdue > 24:
        return "high"
    if hours_overdue > 8:
        return "medium"
    return "low"


def _avg(values):
    return round(sum(values) / len(values), 2) if values else None


def get_stage_performance_report(company_id, date_from=None, date_to=None) -> list[dict]:
    """One row per stage of the company, ordered by sequence_order.

    ``date_from``/``date_to`` are dates; both ends are inclusive and apply to
    the metric's ``created_at``.
    """
    stages = (
        JobStage.query_for_company(company_id)
        .order_by(JobStage.sequence_order.asc())
        .all()
    )
    q = StagePerformanceMetric.query.join(JobStage, JobStage.id == StagePerformanceMetric.stage_id).filter(
        JobStage.company_id == company_id,
    )
    if date_from:
        q = q.filter(StagePerformanceMetric.created_at >= datetime.combine(date_from, datetime.min.time()))
    if date_to:
        q = q.filter(StagePerformanceMetric.created_at < datetime.combine(date_to + timedelta(days=1),
                                                                          datetime.min.time()))
    by_stage: dict[int, list[StagePerformanceMetric]] = {}
    for metric in q.all():
        by_stage.setdefault(metric.stage_id, []).append(metric)

    rows = []
    for stage in stages:
        metrics = by_stage.get(stage.id, [])
        durations = [m.duration_hours for m in metrics if m.duration_hours is not None]
        converted = sum(1 for m in metrics if m.conversion_successful)
        rows.append({
            "stage_id": stage.id,
            "stage_name": stage.name,
            "sequence_order": stage.sequence_order,
            "total_entries": len(metrics),
            "avg_duration_hours": _avg(durations),
            "median_duration_hours": statistics.median(durations) if durations else None,
            "avg_tasks_completed": _avg([m.tasks_completed for m in metrics]),
            "avg_tasks_overdue": _avg([m.tasks_overdue for m in metrics]),
            "conversion_rate": round(converted / len(metrics), 4) if metrics else 0.0,
        })
    return rows


def check_sla_violations(company_id=None, now=None) -> list[dict]:
    """Open tasks whose template SLA has run out, worst first."""
    now = now or utcnow()
    q = (
        db.session.query(JobTask, TaskTemplate, Job)
        .join(TaskTemplate, TaskTemplate.id == JobTask.template_id)
        .join(Job, Job.id == JobTask.job_id)
        .filter(
            JobTask.status.in_(("pending", "in_progress")),
            TaskTemplate.sla_hours.isnot(None),
        )
    )
    if company_id is not None:
        q = q.filter(Job.company_id == company_id)

    rows = []
    for task, template, job in q.all():
        created = as_utc(task.created_at)
        deadline = created + timedelta(hours=template.sla_hours)
        if deadline >= now:
            continue
        elapsed = (now - created).total_seconds() / 3600.0
        hours_overdue = round(elapsed - template.sla_hours, 2)
        rows.append({
            "task_id": task.id,
            "job_id": job.id,
            "job_title": job.title,
            "company_id": job.company_id,
            "task_title": task.title,
            "assigned_to": task.assigned_to,
            "status": task.status,
            "sla_hours": template.sla_hours,
            "hours_overdue": hours_overdue,
            "severity": _severity(hours_overdue),
        })
    rows.sort(key=lambda r: r["hours_overdue"], reverse=True)
    if rows:
        logger.info("SLA check: %d violation(s) (company=%s)", len(rows), company_id)
    return rows
