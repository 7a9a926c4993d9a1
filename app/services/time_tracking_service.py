"""
Time tracking service — check-in/out, breaks, time entries and approvals.

Life of a time entry:

    check_in ─► TimeEntry(active) ─► check_out ─► pending ─► approved
                    │                                  └──► rejected
                    └─ BreakEntry* (start_break / end_break)

Durations are whole minutes (floored). Cost is
``(duration - breaks) / 60 × rate`` where the rate is the worker's hourly
rate, multiplied by ``OVERTIME_MULTIPLIER`` once the worker's day passes
``OVERTIME_DAILY_MINUTES``.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from app.core.exceptions import BadRequestError, NotFoundError, ValidationError
from app.models import db
from app.models.job import Job
from app.models.time_tracking import (
    APPROVAL_STATUSES,
    BREAK_TYPES,
    ENTRY_STATUSES,
    ENTRY_TYPES,
    BreakEntry,
    TimeApproval,
    TimeEntry,
    WorkerCheckIn,
)
from app.models.workforce import Worker
from app.services.helpers.scoped_queries import get_scoped
from app.utils.helpers import as_utc, parse_datetime_input, utcnow

logger = logging.getLogger(__name__)

APPROVAL_TO_ENTRY_STATUS = {
    "approved": "approved",
    "rejected": "rejected",
    "changes_requested": "pending",
}
CENT = Decimal("0.01")


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def day_start(moment: datetime) -> datetime:
    """Midnight UTC of the day ``moment`` falls on."""
    moment = as_utc(moment).astimezone(timezone.utc)
    return datetime.combine(moment.date(), time.min, tzinfo=timezone.utc)


def minutes_between(start, end) -> int:
    return int((as_utc(end) - as_utc(start)).total_seconds() // 60)


def compute_cost(duration_minutes, break_minutes, rate) -> Decimal:
    worked = max((duration_minutes or 0) - (break_minutes or 0), 0)
    rate = Decimal(str(rate or 0))
    return (Decimal(worked) / Decimal(60) * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def _effective_rate(entry: TimeEntry):
    if entry.entry_type == "overtime" and entry.overtime_rate is not None:
        return entry.overtime_rate
    return entry.hourly_rate


def _overtime_rate(hourly_rate) -> Decimal:
    multiplier = Decimal(str(current_app.config.get("OVERTIME_MULTIPLIER", 1.5)))
    return (Decimal(str(hourly_rate or 0)) * multiplier).quantize(CENT, rounding=ROUND_HALF_UP)


def _completed_minutes_on_day(worker_id, moment, exclude_id=None) -> int:
    """Minutes already logged by the worker on the UTC day of ``moment``."""
    start = day_start(moment)
    q = TimeEntry.query.filter(
        TimeEntry.worker_id == worker_id,
        TimeEntry.start_time >= start,
        TimeEntry.start_time < start + timedelta(days=1),
        TimeEntry.duration_minutes.isnot(None),
        TimeEntry.status != "rejected",
    )
    if exclude_id is not None:
        q = q.filter(TimeEntry.id != exclude_id)
    return sum(e.duration_minutes or 0 for e in q.all())


def _is_overtime(worker_id, moment, duration_minutes, exclude_id=None) -> bool:
    limit = current_app.config.get("OVERTIME_DAILY_MINUTES", 480)
    return _completed_minutes_on_day(worker_id, moment, exclude_id) + duration_minutes > limit


def _coord(data: dict, key: str):
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")


def _get_active_worker(company_id, worker_id) -> Worker:
    worker = get_scoped(Worker, worker_id, company_id=company_id)
    if not worker.is_active:
        raise ValidationError("Worker is not active")
    return worker


# ═════════════════════════════════════════════════════════════════════════════
# Check-in / check-out
# ═════════════════════════════════════════════════════════════════════════════


def check_in(company_id, worker_id, job_id, data=None, now=None) -> tuple[WorkerCheckIn, TimeEntry]:
    data = data or {}
    now = now or utcnow()
    worker = _get_active_worker(company_id, worker_id)
    job = get_scoped(Job, job_id, company_id=company_id)

    open_today = WorkerCheckIn.query.filter(
        WorkerCheckIn.worker_id == worker.id,
        WorkerCheckIn.check_out_time.is_(None),
        WorkerCheckIn.check_in_time >= day_start(now),
    ).first()
    if open_today:
        raise BadRequestError(
            "Worker already checked in today",
            details={"check_in_id": open_today.id, "job_id": open_today.job_id},
        )

    latitude, longitude = _coord(data, "latitude"), _coord(data, "longitude")
    check = WorkerCheckIn(
        company_id=company_id,
        worker_id=worker.id,
        job_id=job.id,
        check_in_time=now,
        location_name=data.get("location_name"),
        latitude=latitude,
        longitude=longitude,
        notes=data.get("notes"),
    )
    db.session.add(check)
    db.session.flush()

    entry = TimeEntry(
        company_id=company_id,
        worker_id=worker.id,
        job_id=job.id,
        check_in_id=check.id,
        start_time=now,
        entry_type="regular",
        hourly_rate=worker.hourly_rate or 0,
        status="active",
        break_duration_minutes=0,
        start_latitude=latitude,
        start_longitude=longitude,
        description=data.get("description"),
    )
    db.session.add(entry)
    db.session.commit()
    logger.info("Worker %s checked in to job %s (check_in=%s)", worker.id, job.id, check.id)
    return check, entry


def _close_open_breaks(entry: TimeEntry, now) -> None:
    for brk in entry.breaks.filter(BreakEntry.end_time.is_(None)).all():
        brk.end_time = now
        brk.duration_minutes = minutes_between(brk.start_time, now)


def _break_minutes(entry: TimeEntry) -> int:
    return sum(b.duration_minutes or 0 for b in entry.breaks.filter(BreakEntry.end_time.isnot(None)).all())


def daily_summary(worker_id, moment) -> dict:
    start = day_start(moment)
    entries = TimeEntry.query.filter(
        TimeEntry.worker_id == worker_id,
        TimeEntry.start_time >= start,
        TimeEntry.start_time < start + timedelta(days=1),
        TimeEntry.duration_minutes.isnot(None),
    ).all()
    summary = {
        "date": start.date().isoformat(),
        "regular_hours": 0.0,
        "overtime_hours": 0.0,
        "break_hours": 0.0,
        "regular_cost": 0.0,
        "overtime_cost": 0.0,
        "total_cost": 0.0,
    }
    for entry in entries:
        hours = (entry.duration_minutes or 0) / 60.0
        cost = float(entry.total_cost or 0)
        if entry.entry_type == "overtime":
            summary["overtime_hours"] += hours
            summary["overtime_cost"] += cost
        else:
            summary["regular_hours"] += hours
            summary["regular_cost"] += cost
        summary["break_hours"] += (entry.break_duration_minutes or 0) / 60.0
        summary["total_cost"] += cost
    return {k: round(v, 2) if isinstance(v, float) else v for k, v in summary.items()}


def check_out(company_id, worker_id, check_in_id=None, data=None, now=None) -> dict:
    """Close a check-in and its time entry.

    Without ``check_in_id`` the worker's most recent open check-in is used.
    """
    data = data or {}
    now = now or utcnow()
    worker = get_scoped(Worker, worker_id, company_id=company_id)

    q = WorkerCheckIn.query.filter(
        WorkerCheckIn.company_id == company_id,
        WorkerCheckIn.worker_id == worker.id,
        WorkerCheckIn.check_out_time.is_(None),
    )
    if check_in_id is not None:
        q = q.filter(WorkerCheckIn.id == check_in_id)
    check = q.order_by(WorkerCheckIn.check_in_time.desc()).first()
    if check is None:
        raise BadRequestError("No active check-in found")

    latitude, longitude = _coord(data, "latitude"), _coord(data, "longitude")
    check.check_out_time = now
    check.checkout_latitude = latitude
    check.checkout_longitude = longitude
    if data.get("notes"):
        check.notes = data["notes"]

    entry = TimeEntry.query.filter_by(check_in_id=check.id, end_time=None).first()
    total_minutes = minutes_between(check.check_in_time, now)
    if entry is not None:
        _close_open_breaks(entry, now)
        db.session.flush()
        breaks = _break_minutes(entry)
        overtime = _is_overtime(worker.id, entry.start_time, total_minutes, exclude_id=entry.id)

        entry.end_time = now
        entry.duration_minutes = total_minutes
        entry.break_duration_minutes = breaks
        entry.end_latitude = latitude
        entry.end_longitude = longitude
        entry.hourly_rate = worker.hourly_rate or 0
        entry.entry_type = "overtime" if overtime else "regular"
        entry.overtime_rate = _overtime_rate(entry.hourly_rate) if overtime else None
        entry.total_cost = compute_cost(total_minutes, breaks, _effective_rate(entry))
        entry.status = "pending"

    db.session.commit()
    logger.info(
        "Worker %s checked out (check_in=%s, minutes=%d, overtime=%s)",
        worker.id, check.id, total_minutes, bool(entry and entry.entry_type == "overtime"),
    )
    return {
        "check_in": check.to_dict(),
        "time_entry": entry.to_dict() if entry else None,
        "total_minutes": total_minutes,
        "daily_summary": daily_summary(worker.id, check.check_in_time),
    }


def current_status(company_id, worker_id) -> dict:
    worker = get_scoped(Worker, worker_id, company_id=company_id)
    check = (
        WorkerCheckIn.query.filter_by(worker_id=worker.id, check_out_time=None)
        .order_by(WorkerCheckIn.check_in_time.desc())
        .first()
    )
    entry = TimeEntry.query.filter_by(check_in_id=check.id).first() if check else None
    open_break = (
        BreakEntry.query.filter_by(worker_id=worker.id, end_time=None).first() if entry else None
    )
    return {
        "worker_id": worker.id,
        "checked_in": check is not None,
        "check_in": check.to_dict() if check else None,
        "time_entry": entry.to_dict() if entry else None,
        "on_break": open_break is not None,
        "break": open_break.to_dict() if open_break else None,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Breaks
# ═════════════════════════════════════════════════════════════════════════════


def start_break(company_id, time_entry_id, worker_id, break_type="general", is_paid=False,
                notes=None, now=None) -> BreakEntry:
    now = now or utcnow()
    if break_type not in BREAK_TYPES:
        raise ValidationError(f"Invalid break_type: {break_type}", details={"allowed": list(BREAK_TYPES)})
    entry = get_scoped(TimeEntry, time_entry_id, company_id=company_id)
    if worker_id is not None and int(worker_id) != entry.worker_id:
        raise ValidationError("Time entry does not belong to this worker")
    if entry.status != "active":
        raise BadRequestError("Breaks can only be started on an active time entry")
    if BreakEntry.query.filter_by(worker_id=entry.worker_id, end_time=None).first():
        raise BadRequestError("Worker already has an open break")

    brk = BreakEntry(
        time_entry_id=entry.id,
        worker_id=entry.worker_id,
        break_type=break_type,
        start_time=now,
        is_paid=bool(is_paid),
        notes=notes,
    )
    db.session.add(brk)
    db.session.commit()
    return brk


def get_break(company_id, break_id) -> BreakEntry:
    brk = (
        BreakEntry.query.join(TimeEntry, TimeEntry.id == BreakEntry.time_entry_id)
        .filter(BreakEntry.id == break_id, TimeEntry.company_id == company_id)
        .first()
    ) if str(break_id).isdigit() else None
    if brk is None:
        raise NotFoundError("BreakEntry", break_id, company_id)
    return brk


def end_break(company_id, break_id, now=None) -> BreakEntry:
    now = now or utcnow()
    brk = get_break(company_id, break_id)
    if brk.end_time is not None:
        raise BadRequestError("Break has already ended")
    brk.end_time = now
    brk.duration_minutes = minutes_between(brk.start_time, now)
    db.session.commit()
    return brk


def list_breaks(company_id, time_entry_id) -> list[BreakEntry]:
    entry = get_scoped(TimeEntry, time_entry_id, company_id=company_id)
    return entry.breaks.order_by(BreakEntry.start_time.asc()).all()


# ═════════════════════════════════════════════════════════════════════════════
# Time entries
# ═════════════════════════════════════════════════════════════════════════════


def list_entries(company_id, worker_id=None, job_id=None, status=None, date_from=None, date_to=None):
    q = TimeEntry.query_for_company(company_id)
    if worker_id:
        q = q.filter(TimeEntry.worker_id == worker_id)
    if job_id:
        q = q.filter(TimeEntry.job_id == job_id)
    if status:
        q = q.filter(TimeEntry.status == status)
    if date_from:
        q = q.filter(TimeEntry.start_time >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(TimeEntry.start_time < datetime.combine(date_to + timedelta(days=1), time.min))
    return q.order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())


def get_entry(company_id, entry_id) -> TimeEntry:
    return get_scoped(TimeEntry, entry_id, company_id=company_id)


def _parse_times(data, start_key="start_time", end_key="end_time"):
    try:
        start = parse_datetime_input(data.get(start_key))
        end = parse_datetime_input(data.get(end_key))
    except ValueError as exc:
        raise ValidationError(str(exc))
    return start, end


def create_entry(company_id, data) -> TimeEntry:
    """Manually log time. The entry starts out ``pending``."""
    worker = _get_active_worker(company_id, data.get("worker_id"))
    job = get_scoped(Job, data.get("job_id"), company_id=company_id)
    start, end = _parse_times(data)
    if start is None:
        raise ValidationError("start_time is required")
    if end is not None and end < start:
        raise ValidationError("end_time must be after start_time")

    entry_type = data.get("entry_type") or "regular"
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Invalid entry_type: {entry_type}")
    break_minutes = int(data.get("break_duration_minutes") or 0)
    if break_minutes < 0:
        raise ValidationError("break_duration_minutes cannot be negative")

    duration = minutes_between(start, end) if end else None
    rate = worker.hourly_rate or 0
    overtime = entry_type == "overtime" or (
        duration is not None and _is_overtime(worker.id, start, duration)
    )
    entry = TimeEntry(
        company_id=company_id,
        worker_id=worker.id,
        job_id=job.id,
        start_time=start,
        end_time=end,
        duration_minutes=duration,
        break_duration_minutes=break_minutes,
        entry_type="overtime" if overtime else "regular",
        hourly_rate=rate,
        overtime_rate=_overtime_rate(rate) if overtime else None,
        status="pending",
        description=data.get("description"),
    )
    if duration is not None:
        entry.total_cost = compute_cost(duration, break_minutes, _effective_rate(entry))
    db.session.add(entry)
    db.session.commit()
    return entry


def update_entry(company_id, entry_id, data) -> TimeEntry:
    entry = get_entry(company_id, entry_id)
    if entry.status == "approved":
        raise BadRequestError("Approved time entries cannot be changed")

    start, end = _parse_times(data)
    if start is not None:
        entry.start_time = start
    if end is not None or ("end_time" in data and data["end_time"] in (None, "")):
        entry.end_time = end
    if "description" in data:
        entry.description = data["description"]
    if "break_duration_minutes" in data:
        minutes = int(data["break_duration_minutes"] or 0)
        if minutes < 0:
            raise ValidationError("break_duration_minutes cannot be negative")
        entry.break_duration_minutes = minutes
    if "entry_type" in data:
        if data["entry_type"] not in ENTRY_TYPES:
            raise ValidationError(f"Invalid entry_type: {data['entry_type']}")
        entry.entry_type = data["entry_type"]
        if entry.entry_type == "overtime" and entry.overtime_rate is None:
            entry.overtime_rate = _overtime_rate(entry.hourly_rate)
    if "status" in data:
        if data["status"] not in ENTRY_STATUSES or data["status"] == "approved":
            raise ValidationError("status can only be set through an approval")
        entry.status = data["status"]

    if entry.end_time is not None:
        if as_utc(entry.end_time) < as_utc(entry.start_time):
            raise ValidationError("end_time must be after start_time")
        entry.duration_minutes = minutes_between(entry.start_time, entry.end_time)
        entry.total_cost = compute_cost(
            entry.duration_minutes, entry.break_duration_minutes, _effective_rate(entry),
        )
    db.session.commit()
    return entry


def delete_entry(company_id, entry_id) -> None:
    entry = get_entry(company_id, entry_id)
    if entry.status == "approved":
        raise BadRequestError("Approved time entries cannot be deleted")
    db.session.delete(entry)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Approvals
# ═════════════════════════════════════════════════════════════════════════════


def approve_entry(company_id, time_entry_id, approval_status, approver_id, notes=None,
                  approved_start_time=None, approved_end_time=None, now=None) -> tuple[TimeApproval, TimeEntry]:
    now = now or utcnow()
    if approval_status not in APPROVAL_STATUSES:
        raise ValidationError(
            f"Invalid approval_status: {approval_status}", details={"allowed": list(APPROVAL_STATUSES)},
        )
    entry = get_entry(company_id, time_entry_id)
    if entry.status == "approved":
        raise BadRequestError("Time entry is already approved")
    if entry.status == "active":
        raise BadRequestError("Time entry is still open")

    try:
        start = parse_datetime_input(approved_start_time)
        end = parse_datetime_input(approved_end_time)
    except ValueError as exc:
        raise ValidationError(str(exc))

    approval = TimeApproval(
        time_entry_id=entry.id,
        approver_id=approver_id,
        approval_status=approval_status,
        notes=notes,
        approved_start_time=start,
        approved_end_time=end,
    )
    db.session.add(approval)

    entry.status = APPROVAL_TO_ENTRY_STATUS[approval_status]
    entry.approved_by = approver_id
    entry.approved_at = now
    entry.approval_notes = notes
    if start is not None or end is not None:
        entry.start_time = start or entry.start_time
        entry.end_time = end or entry.end_time
        if entry.end_time is None or as_utc(entry.end_time) < as_utc(entry.start_time):
            raise ValidationError("approved_end_time must be after approved_start_time")
        entry.duration_minutes = minutes_between(entry.start_time, entry.end_time)
        entry.total_cost = compute_cost(
            entry.duration_minutes, entry.break_duration_minutes, _effective_rate(entry),
        )
    db.session.commit()
    logger.info("Time entry %s %s by user %s", entry.id, approval_status, approver_id)
    return approval, entry


def bulk_approve(company_id, time_entry_ids, approval_status, approver_id, notes=None) -> dict:
    """Approve many entries; one failure does not stop the rest."""
    if approval_status not in APPROVAL_STATUSES:
        raise ValidationError(f"Invalid approval_status: {approval_status}")
    processed, errors = [], []
    for entry_id in time_entry_ids:
        try:
            _, entry = approve_entry(company_id, entry_id, approval_status, approver_id, notes)
        except NotFoundError as exc:
            db.session.rollback()
            errors.append({"time_entry_id": entry_id, "error": exc.public_message})
            continue
        except ValidationError as exc:
            db.session.rollback()
            errors.append({"time_entry_id": entry_id, "error": str(exc)})
            continue
        processed.append(entry.id)
    return {"processed": processed, "errors": errors}


def list_approvals(company_id, time_entry_id=None):
    q = TimeApproval.query.join(TimeEntry, TimeEntry.id == TimeApproval.time_entry_id).filter(
        TimeEntry.company_id == company_id,
    )
    if time_entry_id:
        q = q.filter(TimeApproval.time_entry_id == time_entry_id)
    return q.order_by(TimeApproval.created_at.desc(), TimeApproval.id.desc())
