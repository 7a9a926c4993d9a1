"""
Stage progression engine — moves jobs between stages from question answers.

Public operations:
  process_stage_response   answer a stage question, maybe advance the job
  admin_override_stage     owner/site-admin move to any stage of the company
  get_question_flow        what to ask next for a job
  enter_initial_stage      place a new job in the company's first stage

Every stage change writes one StageAuditLog row; leaving a stage also writes
one StagePerformanceMetric. Tasks for the entered stage are spawned through
``job_task_service``. Each public mutation commits exactly once.
"""

import logging
import re
from datetime import date, datetime

from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.job import Job
from app.models.stage import (
    RESPONSE_SOURCES,
    JobStage,
    JobTask,
    StageAuditLog,
    StagePerformanceMetric,
    StageQuestion,
    StageTransition,
    TaskTemplate,
    UserResponse,
)
from app.services import job_task_service, reminder_service
from app.services.helpers.scoped_queries import get_scoped
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

OVERRIDE_ROLES = ("owner", "site_admin")

_NUMBER_RE = re.compile(r"^[0-9]+(\.[0-9]+)?$")
_SIGNED_NUMBER_RE = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")
_NUMERIC_CONDITION_RE = re.compile(r"^([<>=]+)([0-9]+(?:\.[0-9]+)?)$")


# ═════════════════════════════════════════════════════════════════════════════
# Response validation & matching
# ═════════════════════════════════════════════════════════════════════════════


def validate_response(question: StageQuestion, value: str) -> str:
    """Check ``value`` against the question type and return the stored form.

    yes/no answers are stored as ``Yes``/``No`` so skip conditions can match
    them exactly.
    """
    text = str(value).strip()
    rtype = question.response_type

    if rtype == "yes_no":
        if text.lower() not in ("yes", "no"):
            raise ValidationError(
                "Invalid response for yes_no question: expected Yes or No",
                details={"response_type": rtype, "response_value": value},
            )
        return text.capitalize()

    if rtype == "number":
        if not _NUMBER_RE.match(text):
            raise ValidationError(
                "Invalid response for number question",
                details={"response_type": rtype, "response_value": value},
            )
        return text

    if rtype == "date":
        if not _parses_as_date(text):
            raise ValidationError(
                "Invalid response for date question: expected an ISO date",
                details={"response_type": rtype, "response_value": value},
            )
        return text

    if rtype == "multiple_choice":
        options = question.response_options or []
        if not text:
            raise ValidationError("Response cannot be empty", details={"response_type": rtype})
        if options and text not in [str(o).strip() for o in options]:
            raise ValidationError(
                "Invalid response for multiple_choice question",
                details={"response_type": rtype, "options": options},
            )
        return text

    # text, file_upload
    if not text:
        raise ValidationError(
            f"Response for {rtype} question cannot be empty", details={"response_type": rtype},
        )
    return text


def _parses_as_date(text: str) -> bool:
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        pass
    try:
        datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
        return True
    except ValueError:
        return False


def evaluate_condition(condition: str, value: str) -> bool:
    """``>=90``-style numeric comparison, otherwise exact string equality."""
    condition = (condition or "").strip()
    value = (value or "").strip()
    match = _NUMERIC_CONDITION_RE.match(condition)
    if not match:
        return value == condition

    op, threshold = match.group(1), float(match.group(2))
    if not _SIGNED_NUMBER_RE.match(value):
        return False
    number = float(value)
    if op == ">=":
        return number >= threshold
    if op == ">":
        return number > threshold
    if op == "<=":
        return number <= threshold
    if op == "<":
        return number < threshold
    if op in ("=", "=="):
        return number == threshold
    return False


def transition_matches(transition: StageTransition, question_id, value: str) -> bool:
    if transition.requires_admin_override:
        return False
    conditions = transition.conditions or {}
    bound_question = conditions.get("question_id")
    if bound_question is not None and str(bound_question) != str(question_id):
        return False
    if (transition.trigger_response or "").strip().upper() == value.strip().upper():
        return True
    condition = conditions.get("condition")
    return bool(condition) and evaluate_condition(condition, value)


def _candidate_transitions(stage_id):
    return (
        StageTransition.query.filter_by(from_stage_id=stage_id)
        .order_by(StageTransition.is_automatic.desc(), StageTransition.id.asc())
        .all()
    )


def should_skip(job: Job, question: StageQuestion) -> bool:
    """True when the question's skip conditions hold for this job."""
    conditions = question.skip_conditions or {}
    job_types = conditions.get("job_types") or []
    if job.job_type and job.job_type in job_types:
        return True
    for entry in conditions.get("previous_responses") or []:
        try:
            ref_question = int(entry.get("question_id"))
        except (TypeError, ValueError):
            continue
        stored = UserResponse.query.filter_by(job_id=job.id, question_id=ref_question).first()
        if stored is not None and stored.response_value == entry.get("response_value"):
            return True
    return False


# ═════════════════════════════════════════════════════════════════════════════
# Stage movement primitives (no commit)
# ═════════════════════════════════════════════════════════════════════════════


def _hours_in_stage(job: Job, now) -> int:
    entered = as_utc(job.stage_entered_at)
    if entered is None:
        return 0
    return max(int((now - entered).total_seconds() // 3600), 0)


def _stage_task_counts(job_id, stage_id) -> tuple[int, int]:
    base = (
        JobTask.query.join(TaskTemplate, TaskTemplate.id == JobTask.template_id)
        .filter(JobTask.job_id == job_id, TaskTemplate.stage_id == stage_id)
    )
    completed = base.filter(JobTask.status == "completed").count()
    overdue = base.filter(JobTask.status == "overdue").count()
    return completed, overdue


def _move(job: Job, target: JobStage, now, *, conversion_successful: bool) -> dict:
    """Point the job at ``target`` and record the metric for the stage left."""
    from_stage_id = job.current_stage_id
    from_status = job.status
    duration = _hours_in_stage(job, now)
    entered_at = job.stage_entered_at

    if from_stage_id is not None:
        completed, overdue = _stage_task_counts(job.id, from_stage_id)
        db.session.add(StagePerformanceMetric(
            job_id=job.id,
            stage_id=from_stage_id,
            entered_at=entered_at,
            exited_at=now,
            duration_hours=duration,
            tasks_completed=completed,
            tasks_overdue=overdue,
            conversion_successful=conversion_successful,
        ))

    job.current_stage = target
    job.stage_entered_at = now
    job.status = target.maps_to_status or "planning"
    return {
        "from_stage_id": from_stage_id,
        "from_status": from_status,
        "to_status": job.status,
        "duration_hours": duration,
    }


def _audit(job: Job, moved: dict | None, to_stage_id, source, user_id, details,
           response_source=None) -> StageAuditLog:
    row = StageAuditLog(
        job_id=job.id,
        from_stage_id=moved["from_stage_id"] if moved else job.current_stage_id,
        to_stage_id=to_stage_id,
        from_status=moved["from_status"] if moved else job.status,
        to_status=moved["to_status"] if moved else job.status,
        trigger_source=source,
        triggered_by=user_id,
        trigger_details=details,
        duration_in_previous_stage_hours=moved["duration_hours"] if moved else None,
        response_source=response_source,
    )
    db.session.add(row)
    db.session.flush()
    return row


def first_stage(company_id):
    return (
        JobStage.query_for_company(company_id)
        .filter_by(is_active=True)
        .order_by(JobStage.sequence_order.asc())
        .first()
    )


def enter_initial_stage(job: Job, user_id) -> JobStage | None:
    """Place a stage-less job in its company's first stage. Caller commits."""
    if job.current_stage_id is not None:
        return job.current_stage
    stage = first_stage(job.company_id)
    if stage is None:
        return None
    now = utcnow()
    moved = _move(job, stage, now, conversion_successful=True)
    _audit(job, moved, stage.id, "system_auto", user_id, {"reason": "initial_stage"})
    job_task_service.create_tasks_for_stage(job, stage, user_id, now)
    logger.info("Job %s entered initial stage %s", job.id, stage.id)
    return stage


# ═════════════════════════════════════════════════════════════════════════════
# process_stage_response
# ═════════════════════════════════════════════════════════════════════════════


def _upsert_response(job, question, value, user_id, source, metadata, reminder) -> UserResponse:
    now = utcnow()
    response = UserResponse.query.filter_by(job_id=job.id, question_id=question.id).first()
    if response is None:
        response = UserResponse(job_id=job.id, question_id=question.id, created_at=now)
        db.session.add(response)
    response.response_value = value
    response.response_metadata = metadata or {}
    response.responded_by = user_id
    response.response_source = source
    response.updated_at = now
    if reminder is not None:
        response.reminder_enabled = reminder["enabled"]
        response.reminder_offset_hours = reminder["offset_hours"]
    db.session.flush()
    return response


def process_stage_response(job_id, question_id, response_value, user_id, source="web_app",
                           metadata=None, *, company_id, reminder=None) -> dict:
    """Record an answer and advance the job when a transition matches.

    ``reminder`` is an optional ``{"enabled", "offset_hours"}`` override of
    the question's reminder settings for date answers.

    Returns one of three shapes keyed by ``action``: ``skipped``,
    ``no_transition`` or ``stage_transition``.
    """
    if job_id is None or question_id is None or response_value is None or user_id is None:
        raise ValidationError("Required parameters cannot be null")
    if source not in RESPONSE_SOURCES:
        raise ValidationError(f"Invalid response_source: {source}",
                              details={"allowed": list(RESPONSE_SOURCES)})
    if reminder is not None:
        reminder = {
            "enabled": bool(reminder.get("enabled")),
            "offset_hours": reminder_service.validate_offset(reminder.get("offset_hours")),
        }

    job = get_scoped(Job, job_id, company_id=company_id)
    question = (
        StageQuestion.query.join(JobStage, JobStage.id == StageQuestion.stage_id)
        .filter(StageQuestion.id == question_id, JobStage.company_id == job.company_id)
        .first()
    )
    if question is None:
        raise NotFoundError("StageQuestion", question_id, company_id)

    value = validate_response(question, response_value)

    try:
        return _progress(job, question, value, user_id, source, metadata, reminder)
    except (ValidationError, NotFoundError, PermissionDeniedError):
        db.session.rollback()
        raise
    except Exception as exc:
        db.session.rollback()
        logger.exception("Stage progression failed for job %s question %s", job_id, question_id)
        db.session.add(StageAuditLog(
            job_id=job_id,
            trigger_source="error",
            triggered_by=user_id,
            trigger_details={
                "error": str(exc),
                "question_id": question_id,
                "response_value": value,
            },
            response_source=source,
        ))
        db.session.commit()
        raise


def _progress(job, question, value, user_id, source, metadata, reminder) -> dict:
    response = _upsert_response(job, question, value, user_id, source, metadata, reminder)
    scheduled = reminder_service.schedule_for_response(job, question, response)

    if should_skip(job, question):
        db.session.commit()
        logger.info("Job %s question %s skipped by skip conditions", job.id, question.id)
        return {
            "success": True,
            "action": "skipped",
            "response_id": response.id,
            "reminder_id": scheduled.id if scheduled else None,
            "message": "Question skipped based on skip conditions",
        }

    candidates = _candidate_transitions(job.current_stage_id) if job.current_stage_id else []
    transition = next(
        (t for t in candidates if transition_matches(t, question.id, value)), None,
    )

    if transition is None:
        db.session.commit()
        logger.debug(
            "Job %s: no transition from stage %s for question %s value %r",
            job.id, job.current_stage_id, question.id, value,
        )
        return {
            "success": True,
            "action": "no_transition",
            "response_id": response.id,
            "reminder_id": scheduled.id if scheduled else None,
            "current_stage_id": job.current_stage_id,
            "debug": {
                "response_value": value,
                "available_transitions": [
                    {
                        "id": t.id,
                        "to_stage_id": t.to_stage_id,
                        "trigger_response": t.trigger_response,
                        "conditions": t.conditions or {},
                        "is_automatic": t.is_automatic,
                        "requires_admin_override": t.requires_admin_override,
                    }
                    for t in candidates
                ],
            },
        }

    now = utcnow()
    target = transition.to_stage
    moved = _move(job, target, now, conversion_successful=True)
    audit = _audit(
        job, moved, target.id, "question_response", user_id,
        {
            "question_id": question.id,
            "response_value": value,
            "transition_id": transition.id,
            "action": (transition.conditions or {}).get("action"),
        },
        response_source=source,
    )
    tasks = job_task_service.create_tasks_for_stage(job, target, user_id, now)
    db.session.commit()

    logger.info(
        "Job %s advanced %s -> %s via transition %s (%dh in stage, %d task(s))",
        job.id, moved["from_stage_id"], target.id, transition.id, moved["duration_hours"], len(tasks),
    )
    return {
        "success": True,
        "action": "stage_transition",
        "response_id": response.id,
        "reminder_id": scheduled.id if scheduled else None,
        "current_stage_id": moved["from_stage_id"],
        "next_stage_id": target.id,
        "tasks_created": len(tasks),
        "duration_hours": moved["duration_hours"],
        "audit_id": audit.id,
        "stage_progressed": True,
    }


# ═════════════════════════════════════════════════════════════════════════════
# admin_override_stage
# ═════════════════════════════════════════════════════════════════════════════


def admin_override_stage(job_id, target_stage_id, admin_id, reason, *, company_id) -> dict:
    admin = db.session.get(User, admin_id) if admin_id is not None else None
    if admin is None or admin.status != "active" or admin.role not in OVERRIDE_ROLES:
        raise PermissionDeniedError("Insufficient permissions for stage override")
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required for a stage override")

    job = get_scoped(Job, job_id, company_id=company_id)
    if not admin.is_site_admin and admin.company_id != job.company_id:
        raise NotFoundError("Job", job_id, company_id)
    target = get_scoped(JobStage, target_stage_id, company_id=job.company_id)

    now = utcnow()
    moved = _move(job, target, now, conversion_successful=False)
    audit = _audit(
        job, moved, target.id, "admin_override", admin.id,
        {"reason": str(reason).strip(), "admin_email": admin.email},
    )
    tasks = job_task_service.create_tasks_for_stage(job, target, admin.id, now)
    db.session.commit()

    logger.warning(
        "Stage override on job %s: %s -> %s by %s", job.id, moved["from_stage_id"], target.id, admin.email,
    )
    return {
        "success": True,
        "action": "admin_override",
        "from_stage_id": moved["from_stage_id"],
        "to_stage_id": target.id,
        "audit_id": audit.id,
        "tasks_created": len(tasks),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


def get_question_flow(job_id, *, company_id, user_id=None) -> dict:
    job = get_scoped(Job, job_id, company_id=company_id)
    if job.current_stage_id is None:
        if enter_initial_stage(job, user_id or job.created_by) is not None:
            db.session.commit()

    stage = job.current_stage
    if stage is None:
        return {
            "job_id": job.id,
            "current_stage": None,
            "current_question": None,
            "remaining_questions": [],
            "completed_questions": [],
            "can_proceed": False,
            "next_stage_preview": None,
        }

    questions = stage.questions.order_by(StageQuestion.sequence_order.asc()).all()
    responses = {
        r.question_id: r
        for r in UserResponse.query.filter(
            UserResponse.job_id == job.id,
            UserResponse.question_id.in_([q.id for q in questions] or [-1]),
        ).all()
    }

    completed, remaining = [], []
    for q in questions:
        if q.id in responses:
            d = q.to_dict()
            d["response"] = responses[q.id].to_dict()
            completed.append(d)
        elif not should_skip(job, q):
            remaining.append(q.to_dict())

    preview = None
    if not remaining:
        # Override-only targets are never reached by answering questions
        transitions = [t for t in _candidate_transitions(stage.id) if not t.requires_admin_override]
        if transitions:
            nxt = transitions[0].to_stage
            preview = {"id": nxt.id, "name": nxt.name, "color": nxt.color,
                       "sequence_order": nxt.sequence_order}

    return {
        "job_id": job.id,
        "current_stage": stage.to_dict(),
        "current_question": remaining[0] if remaining else None,
        "remaining_questions": remaining,
        "completed_questions": completed,
        "can_proceed": not remaining,
        "next_stage_preview": preview,
    }


def get_audit_history(job_id, *, company_id) -> list[dict]:
    job = get_scoped(Job, job_id, company_id=company_id)
    rows = (
        StageAuditLog.query.filter_by(job_id=job.id)
        .order_by(StageAuditLog.created_at.desc(), StageAuditLog.id.desc())
        .all()
    )
    return [r.to_dict() for r in rows]


def get_performance_metrics(job_id, *, company_id) -> list[dict]:
    job = get_scoped(Job, job_id, company_id=company_id)
    rows = (
        StagePerformanceMetric.query.filter_by(job_id=job.id)
        .order_by(StagePerformanceMetric.created_at.asc(), StagePerformanceMetric.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]


def get_responses(job_id, *, company_id) -> list[dict]:
    job = get_scoped(Job, job_id, company_id=company_id)
    rows = (
        UserResponse.query.filter_by(job_id=job.id)
        .order_by(UserResponse.updated_at.asc(), UserResponse.id.asc())
        .all()
    )
    result = []
    for r in rows:
        d = r.to_dict()
        d["question_text"] = r.question.question_text if r.question else None
        d["stage_id"] = r.question.stage_id if r.question else None
        result.append(d)
    return result
