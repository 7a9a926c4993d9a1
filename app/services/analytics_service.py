"""
Analytics service — company dashboards built from jobs, time and tasks.

    get_dashboard      headline numbers for the caller's role
    get_financial      revenue vs. labor cost, per job and per month
    get_productivity   hours and task completion per worker
    get_breakdown      status/priority distributions

Revenue is the budget of jobs completed inside the window (by ``end_date``);
labor cost is the ``total_cost`` of approved time entries (by
``start_time``). Ratios are 0-1 and None when the denominator is zero.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func

from app.models import db
from app.models.job import Job
from app.models.stage import JobTask
from app.models.time_tracking import TimeEntry
from app.models.workforce import JobAssignment, Worker
from app.utils.helpers import as_utc, iso

logger = logging.getLogger(__name__)

OPEN_JOB_STATUSES = ("planning", "active")
OPEN_TASK_STATUSES = ("pending", "in_progress", "overdue")
CLOSED_ENTRY_STATUSES = ("pending", "approved")
TOP_WORKERS = 10


def _money(value) -> float:
    return round(float(value or 0), 2)


def _ratio(part, whole):
    return round(part / whole, 4) if whole else None


def _window(date_from, date_to, default_days):
    end = date_to or date.today()
    start = date_from or end - timedelta(days=default_days)
    return start, end


def _start_of(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time())


def _in_window(column, start: date, end: date):
    return column >= _start_of(start), column < _start_of(end + timedelta(days=1))


def _hours(entry: TimeEntry) -> float:
    return entry.worked_minutes / 60


# ═════════════════════════════════════════════════════════════════════════════
# Dashboard
# ═════════════════════════════════════════════════════════════════════════════


def _owner_stats(company_id, today):
    year_start = date(today.year, 1, 1)
    month_start = _start_of(today.replace(day=1))
    completed = Job.query_for_company(company_id).filter(
        Job.status == "completed", Job.end_date >= year_start,
    ).all()
    labor = db.session.query(func.coalesce(func.sum(TimeEntry.total_cost), 0)).filter(
        TimeEntry.company_id == company_id,
        TimeEntry.status == "approved",
        TimeEntry.start_time >= month_start,
    ).scalar()
    return {
        "active_jobs": Job.query_for_company(company_id).filter(Job.status.in_(OPEN_JOB_STATUSES)).count(),
        "active_workers": Worker.query_for_company(company_id).filter_by(employment_status="active").count(),
        "revenue_ytd": _money(sum((j.budget or Decimal(0)) for j in completed)),
        "completed_jobs_ytd": len(completed),
        "labor_costs_month": _money(labor),
    }


def _foreman_stats(company_id, user):
    tasks = (
        db.session.query(JobTask.status, func.count(JobTask.id))
        .join(Job, Job.id == JobTask.job_id)
        .filter(Job.company_id == company_id, JobTask.status.in_(("pending", "in_progress", "completed")))
        .group_by(JobTask.status)
        .all()
    )
    counts = dict(tasks)
    return {
        "assigned_jobs": Job.query_for_company(company_id).filter(
            Job.foreman_id == user.id, Job.status.in_(OPEN_JOB_STATUSES),
        ).count(),
        "team_members": Worker.query_for_company(company_id).filter_by(employment_status="active").count(),
        "task_completion_rate": _ratio(counts.get("completed", 0), sum(counts.values())),
        "pending_time_approvals": TimeEntry.query_for_company(company_id).filter_by(status="pending").count(),
    }


def _worker_stats(company_id, user, today):
    worker = Worker.query.filter_by(company_id=company_id, user_id=user.id).first()
    week_start = _start_of(today - timedelta(days=today.weekday()))
    hours = 0.0
    assignments = 0
    if worker is not None:
        entries = TimeEntry.query.filter(
            TimeEntry.worker_id == worker.id, TimeEntry.start_time >= week_start,
        ).all()
        hours = sum(_hours(e) for e in entries)
        assignments = (
            JobAssignment.query.join(Job, Job.id == JobAssignment.job_id)
            .filter(JobAssignment.worker_id == worker.id, Job.status.in_(OPEN_JOB_STATUSES))
            .count()
        )
    open_tasks = (
        JobTask.query.join(Job, Job.id == JobTask.job_id)
        .filter(Job.company_id == company_id, JobTask.assigned_to == user.id,
                JobTask.status.in_(OPEN_TASK_STATUSES))
        .count()
    )
    return {
        "hours_this_week": round(hours, 2),
        "active_assignments": assignments,
        "open_tasks": open_tasks,
    }


def get_dashboard(company_id, user, today=None) -> dict:
    """Headline numbers; which ones depends on ``user.role``."""
    today = today or date.today()
    role = user.role
    if role in ("owner", "admin", "site_admin"):
        stats = _owner_stats(company_id, today)
    elif role == "foreman":
        stats = _foreman_stats(company_id, user)
    elif role == "worker":
        stats = _worker_stats(company_id, user, today)
    else:
        stats = {
            "jobs_in_progress": Job.query_for_company(company_id).filter(
                Job.status.in_(OPEN_JOB_STATUSES),
            ).count(),
        }
    return {"role": role, "stats": stats}


# ═════════════════════════════════════════════════════════════════════════════
# Financial
# ═════════════════════════════════════════════════════════════════════════════


def get_financial(company_id, date_from=None, date_to=None) -> dict:
    """Revenue, labor cost and profit for the window (default: last 182 days)."""
    start, end = _window(date_from, date_to, 182)
    lo, hi = _in_window(TimeEntry.start_time, start, end)
    entries = TimeEntry.query_for_company(company_id).filter(TimeEntry.status == "approved", lo, hi).all()
    completed = Job.query_for_company(company_id).filter(
        Job.status == "completed", Job.budget.isnot(None), Job.end_date >= start, Job.end_date <= end,
    ).all()
    lo, hi = _in_window(Job.created_at, start, end)
    jobs = Job.query_for_company(company_id).filter(lo, hi).all()

    labor_by_job: dict[int, Decimal] = {}
    for entry in entries:
        labor_by_job[entry.job_id] = labor_by_job.get(entry.job_id, Decimal(0)) + (entry.total_cost or 0)

    job_rows = []
    for job in jobs:
        budget = job.budget or Decimal(0)
        labor = labor_by_job.get(job.id, Decimal(0))
        job_rows.append({
            "job_id": job.id,
            "job_title": job.title,
            "status": job.status,
            "budget": _money(budget),
            "labor_costs": _money(labor),
            "profit": _money(budget - labor),
            "profit_margin": _ratio(float(budget - labor), float(budget)),
            "start_date": iso(job.start_date),
            "end_date": iso(job.end_date),
        })
    job_rows.sort(key=lambda r: (-r["profit"], r["job_id"]))

    # Labor split
    regular = [e for e in entries if e.entry_type != "overtime"]
    overtime = [e for e in entries if e.entry_type == "overtime"]
    per_worker: dict[int, dict] = {}
    for entry in entries:
        row = per_worker.setdefault(entry.worker_id, {
            "worker_id": entry.worker_id,
            "worker_name": entry.worker.full_name if entry.worker else None,
            "total_hours": 0.0,
            "total_cost": 0.0,
        })
        row["total_hours"] += _hours(entry)
        row["total_cost"] += float(entry.total_cost or 0)
    top_workers = sorted(per_worker.values(), key=lambda r: (-r["total_hours"], r["worker_id"]))[:TOP_WORKERS]
    for row in top_workers:
        row["average_hourly_rate"] = _money(row["total_cost"] / row["total_hours"]) if row["total_hours"] else None
        row["total_hours"] = round(row["total_hours"], 2)
        row["total_cost"] = _money(row["total_cost"])

    total_labor = sum((e.total_cost or Decimal(0)) for e in entries)
    total_hours = sum(_hours(e) for e in entries)
    revenue = sum((j.budget or Decimal(0)) for j in completed)

    # Months keyed YYYY-MM
    months: dict[str, dict] = {}
    for job in completed:
        key = job.end_date.strftime("%Y-%m")
        months.setdefault(key, {"revenue": Decimal(0), "labor_costs": Decimal(0)})["revenue"] += job.budget
    for entry in entries:
        key = as_utc(entry.start_time).strftime("%Y-%m")
        months.setdefault(key, {"revenue": Decimal(0), "labor_costs": Decimal(0)})["labor_costs"] += (
            entry.total_cost or 0
        )
    monthly = [
        {
            "month": key,
            "revenue": _money(m["revenue"]),
            "labor_costs": _money(m["labor_costs"]),
            "profit": _money(m["revenue"] - m["labor_costs"]),
            "profit_margin": _ratio(float(m["revenue"] - m["labor_costs"]), float(m["revenue"])),
        }
        for key, m in sorted(months.items())
    ]

    profits = [r["profit"] for r in job_rows]
    return {
        "date_from": start.isoformat(),
        "date_to": end.isoformat(),
        "overview": {
            "total_revenue": _money(revenue),
            "total_costs": _money(total_labor),
            "gross_profit": _money(revenue - total_labor),
            "profit_margin": _ratio(float(revenue - total_labor), float(revenue)),
            "average_job_profit": _money(sum(profits) / len(profits)) if profits else None,
        },
        "job_profitability": job_rows,
        "labor": {
            "total_labor_costs": _money(total_labor),
            "average_hourly_rate": _money(float(total_labor) / total_hours) if total_hours else None,
            "regular_hours": round(sum(_hours(e) for e in regular), 2),
            "regular_costs": _money(sum((e.total_cost or Decimal(0)) for e in regular)),
            "overtime_hours": round(sum(_hours(e) for e in overtime), 2),
            "overtime_costs": _money(sum((e.total_cost or Decimal(0)) for e in overtime)),
            "top_workers": top_workers,
        },
        "monthly_cash_flow": monthly,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Productivity
# ═════════════════════════════════════════════════════════════════════════════


def get_productivity(company_id, date_from=None, date_to=None) -> dict:
    """Per-worker hours and task completion (default: last 30 days).

    Hours come from closed time entries (pending or approved). Tasks count
    when assigned to the worker's login and created inside the window.
    """
    start, end = _window(date_from, date_to, 30)
    workers = (
        Worker.query_for_company(company_id)
        .filter_by(employment_status="active")
        .order_by(Worker.full_name.asc(), Worker.id.asc())
        .all()
    )
    lo, hi = _in_window(TimeEntry.start_time, start, end)
    entries = TimeEntry.query_for_company(company_id).filter(
        TimeEntry.status.in_(CLOSED_ENTRY_STATUSES), lo, hi,
    ).all()
    lo, hi = _in_window(JobTask.created_at, start, end)
    tasks = (
        JobTask.query.join(Job, Job.id == JobTask.job_id)
        .filter(Job.company_id == company_id, JobTask.assigned_to.isnot(None), lo, hi)
        .all()
    )

    by_worker: dict[int, list[TimeEntry]] = {}
    for entry in entries:
        by_worker.setdefault(entry.worker_id, []).append(entry)
    by_user: dict[int, list[JobTask]] = {}
    for task in tasks:
        by_user.setdefault(task.assigned_to, []).append(task)

    rows = []
    for worker in workers:
        mine = by_worker.get(worker.id, [])
        my_tasks = by_user.get(worker.user_id, []) if worker.user_id else []
        done = sum(1 for t in my_tasks if t.status == "completed")
        total_hours = sum(_hours(e) for e in mine)
        overtime_hours = sum(_hours(e) for e in mine if e.entry_type == "overtime")
        last = max((as_utc(e.end_time or e.start_time) for e in mine), default=None)
        rows.append({
            "worker_id": worker.id,
            "worker_name": worker.full_name,
            "total_hours": round(total_hours, 2),
            "regular_hours": round(total_hours - overtime_hours, 2),
            "overtime_hours": round(overtime_hours, 2),
            "total_cost": _money(sum((e.total_cost or Decimal(0)) for e in mine)),
            "tasks_assigned": len(my_tasks),
            "tasks_completed": done,
            "completion_rate": _ratio(done, len(my_tasks)),
            "last_active": iso(last),
        })

    total_hours = sum(r["total_hours"] for r in rows)
    assigned = sum(r["tasks_assigned"] for r in rows)
    completed = sum(r["tasks_completed"] for r in rows)
    return {
        "date_from": start.isoformat(),
        "date_to": end.isoformat(),
        "overview": {
            "total_workers": len(rows),
            "total_hours": round(total_hours, 2),
            "average_hours_per_worker": round(total_hours / len(rows), 2) if rows else None,
            "overtime_share": _ratio(sum(r["overtime_hours"] for r in rows), total_hours),
            "task_completion_rate": _ratio(completed, assigned),
        },
        "workers": rows,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Breakdown
# ═════════════════════════════════════════════════════════════════════════════


def get_breakdown(company_id) -> dict:
    def _grouped(column, *filters, join=None):
        q = db.session.query(column, func.count())
        if join is not None:
            q = q.join(*join)
        return dict(q.filter(*filters).group_by(column).all())

    task_join = (Job, Job.id == JobTask.job_id)
    return {
        "jobs_by_status": _grouped(Job.status, Job.company_id == company_id),
        "workers_by_status": _grouped(Worker.employment_status, Worker.company_id == company_id),
        "tasks_by_status": _grouped(JobTask.status, Job.company_id == company_id, join=task_join),
        "tasks_by_priority": _grouped(JobTask.priority, Job.company_id == company_id, join=task_join),
    }
