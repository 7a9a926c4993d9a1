"""
Stage configuration service — company-specific stages, questions,
transition rules and task templates.

Children (questions, transitions, templates) are always reached through a
stage that has been scoped to the company first.
"""

import logging
import re

from sqlalchemy import func

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.job import Job
from app.models.stage import (
    AUTO_ASSIGN_TARGETS,
    RESPONSE_TYPES,
    STAGE_STATUSES,
    STAGE_TYPES,
    TASK_PRIORITIES,
    TASK_TYPES,
    JobStage,
    StageQuestion,
    StageTransition,
    TaskTemplate,
)
from app.services.helpers.scoped_queries import get_scoped
from app.services.reminder_service import DEFAULT_OFFSET_HOURS, validate_offset
from app.services.stage_seed import seed_default_stages

logger = logging.getLogger(__name__)

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _int_or_none(value, field):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def _choice(value, allowed, field):
    if value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}", details={"allowed": list(allowed)})
    return value


# ═════════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════════


def list_stages(company_id, include_inactive=True):
    q = JobStage.query_for_company(company_id)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(JobStage.sequence_order.asc()).all()


def get_stage(company_id, stage_id) -> JobStage:
    return get_scoped(JobStage, stage_id, company_id=company_id)


def _next_order(query, column) -> int:
    current = query.with_entities(func.max(column)).scalar()
    return (current or 0) + 1


def _apply_stage(stage: JobStage, data: dict) -> None:
    if "name" in data:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty")
        stage.name = name
    if "description" in data:
        stage.description = data["description"]
    if "color" in data:
        if not _COLOR_RE.match(str(data["color"] or "")):
            raise ValidationError("color must be a hex colour like #3B82F6")
        stage.color = data["color"]
    if "maps_to_status" in data:
        stage.maps_to_status = _choice(data["maps_to_status"], STAGE_STATUSES, "maps_to_status")
    if "stage_type" in data:
        stage.stage_type = _choice(data["stage_type"], STAGE_TYPES, "stage_type")
    if "min_duration_hours" in data:
        stage.min_duration_hours = _int_or_none(data["min_duration_hours"], "min_duration_hours")
    if "max_duration_hours" in data:
        stage.max_duration_hours = _int_or_none(data["max_duration_hours"], "max_duration_hours")
    if (stage.min_duration_hours is not None and stage.max_duration_hours is not None
            and stage.max_duration_hours <= stage.min_duration_hours):
        raise ValidationError("max_duration_hours must be greater than min_duration_hours")
    for flag in ("requires_approval", "is_active"):
        if flag in data:
            setattr(stage, flag, bool(data[flag]))
    if "sequence_order" in data:
        order = _int_or_none(data["sequence_order"], "sequence_order")
        if order is None or order < 1:
            raise ValidationError("sequence_order must be a positive integer")
        clash = JobStage.query_for_company(stage.company_id).filter(
            JobStage.sequence_order == order, JobStage.id != stage.id,
        ).first()
        if clash:
            raise ConflictError("JobStage", "sequence_order", order)
        stage.sequence_order = order


def create_stage(company_id, data) -> JobStage:
    if not str(data.get("name") or "").strip():
        raise ValidationError("name is required")
    stage = JobStage(company_id=company_id)
    if "sequence_order" not in data:
        stage.sequence_order = _next_order(JobStage.query_for_company(company_id), JobStage.sequence_order)
    _apply_stage(stage, data)
    db.session.add(stage)
    db.session.commit()
    return stage


def update_stage(company_id, stage_id, data) -> JobStage:
    stage = get_stage(company_id, stage_id)
    _apply_stage(stage, data)
    db.session.commit()
    return stage


def delete_stage(company_id, stage_id) -> None:
    stage = get_stage(company_id, stage_id)
    in_use = Job.query.filter_by(current_stage_id=stage.id).count()
    if in_use:
        raise ConflictError(
            "JobStage", "id", stage.id,
            message=f"{in_use} job(s) are currently in this stage",
        )
    db.session.delete(stage)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Questions
# ═════════════════════════════════════════════════════════════════════════════


def _validate_skip_conditions(value) -> dict:
    if value in (None, ""):
        return {}
    if not isinstance(value, dict):
        raise ValidationError("skip_conditions must be an object")
    job_types = value.get("job_types", [])
    previous = value.get("previous_responses", [])
    if not isinstance(job_types, list):
        raise ValidationError("skip_conditions.job_types must be a list")
    if not isinstance(previous, list) or not all(
        isinstance(p, dict) and "question_id" in p and "response_value" in p for p in previous
    ):
        raise ValidationError(
            "skip_conditions.previous_responses must be a list of {question_id, response_value}"
        )
    return {"job_types": job_types, "previous_responses": previous}


def _apply_question(question: StageQuestion, data: dict) -> None:
    if "question_text" in data:
        text = str(data.get("question_text") or "").strip()
        if not text:
            raise ValidationError("question_text cannot be empty")
        question.question_text = text
    if "response_type" in data:
        question.response_type = _choice(data["response_type"], RESPONSE_TYPES, "response_type")
    if "response_options" in data:
        options = data["response_options"]
        if options is not None and not isinstance(options, list):
            raise ValidationError("response_options must be a list")
        question.response_options = options
    if question.response_type == "multiple_choice" and not question.response_options:
        raise ValidationError("multiple_choice questions need response_options")
    if "is_required" in data:
        question.is_required = bool(data["is_required"])
    if "help_text" in data:
        question.help_text = data["help_text"]
    if "skip_conditions" in data:
        question.skip_conditions = _validate_skip_conditions(data["skip_conditions"])
    if "reminder_enabled" in data:
        question.reminder_enabled = bool(data["reminder_enabled"])
    if "default_reminder_offset_hours" in data:
        offset = validate_offset(data["default_reminder_offset_hours"], "default_reminder_offset_hours")
        question.default_reminder_offset_hours = DEFAULT_OFFSET_HOURS if offset is None else offset
    if "reminder_instructions" in data:
        question.reminder_instructions = data["reminder_instructions"]
    if question.reminder_enabled and question.response_type != "date":
        raise ValidationError("Reminders are only available on date questions")
    if "sequence_order" in data:
        order = _int_or_none(data["sequence_order"], "sequence_order")
        if order is None or order < 1:
            raise ValidationError("sequence_order must be a positive integer")
        clash = StageQuestion.query.filter(
            StageQuestion.stage_id == question.stage_id,
            StageQuestion.sequence_order == order,
            StageQuestion.id != question.id,
        ).first()
        if clash:
            raise ConflictError("StageQuestion", "sequence_order", order)
        question.sequence_order = order


def list_questions(company_id, stage_id):
    stage = get_stage(company_id, stage_id)
    return stage.questions.order_by(StageQuestion.sequence_order.asc()).all()


def get_question(company_id, stage_id, question_id) -> StageQuestion:
    stage = get_stage(company_id, stage_id)
    return get_scoped(StageQuestion, question_id, stage_id=stage.id)


def create_question(company_id, stage_id, data) -> StageQuestion:
    stage = get_stage(company_id, stage_id)
    if not str(data.get("question_text") or "").strip():
        raise ValidationError("question_text is required")
    if not data.get("response_type"):
        raise ValidationError("response_type is required")
    question = StageQuestion(stage_id=stage.id, skip_conditions={})
    if "sequence_order" not in data:
        question.sequence_order = _next_order(
            StageQuestion.query.filter_by(stage_id=stage.id), StageQuestion.sequence_order,
        )
    _apply_question(question, data)
    db.session.add(question)
    db.session.commit()
    return question


def update_question(company_id, stage_id, question_id, data) -> StageQuestion:
    question = get_question(company_id, stage_id, question_id)
    _apply_question(question, data)
    db.session.commit()
    return question


def delete_question(company_id, stage_id, question_id) -> None:
    question = get_question(company_id, stage_id, question_id)
    db.session.delete(question)
    db.session.commit()


def reorder_questions(company_id, stage_id, question_ids) -> list[StageQuestion]:
    """Assign sequence_order 1..n following ``question_ids``.

    The list must name every question of the stage exactly once.
    """
    stage = get_stage(company_id, stage_id)
    if not isinstance(question_ids, list):
        raise ValidationError("question_ids must be a list")
    try:
        ids = [int(q) for q in question_ids]
    except (TypeError, ValueError):
        raise ValidationError("question_ids must be integers")

    questions = {q.id: q for q in stage.questions.all()}
    if len(ids) != len(set(ids)) or set(ids) != set(questions):
        raise ValidationError(
            "question_ids must list every question of the stage exactly once",
            details={"expected": sorted(questions), "received": ids},
        )

    # Park on negative slots first so the unique (stage, order) index never clashes
    for idx, qid in enumerate(ids, start=1):
        questions[qid].sequence_order = -idx
    db.session.flush()
    for idx, qid in enumerate(ids, start=1):
        questions[qid].sequence_order = idx
    db.session.commit()
    return [questions[qid] for qid in ids]


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


def _norm_trigger(value) -> str:
    return str(value or "").strip().upper()


def _check_transition(company_id, transition: StageTransition) -> None:
    if transition.from_stage_id == transition.to_stage_id:
        raise ValidationError("A stage cannot transition to itself")
    get_scoped(JobStage, transition.to_stage_id, company_id=company_id)

    conditions = transition.conditions or {}
    question_id = conditions.get("question_id")
    if question_id is not None:
        bound = StageQuestion.query.filter_by(
            id=_int_or_none(question_id, "conditions.question_id"),
            stage_id=transition.from_stage_id,
        ).first()
        if bound is None:
            raise ValidationError("conditions.question_id must be a question of the source stage")

    trigger = _norm_trigger(transition.trigger_response)
    for reverse in StageTransition.query.filter_by(
        from_stage_id=transition.to_stage_id, to_stage_id=transition.from_stage_id,
    ).all():
        if _norm_trigger(reverse.trigger_response) == trigger:
            raise ValidationError(
                "Circular transition: the target stage already moves back here on the same response",
                details={"reverse_transition_id": reverse.id},
            )

    duplicate = StageTransition.query.filter(
        StageTransition.from_stage_id == transition.from_stage_id,
        StageTransition.to_stage_id == transition.to_stage_id,
        StageTransition.id != transition.id,
    ).all()
    if any(_norm_trigger(d.trigger_response) == trigger for d in duplicate):
        raise ConflictError("StageTransition", "trigger_response", transition.trigger_response)


def _apply_transition(transition: StageTransition, data: dict) -> None:
    if "to_stage_id" in data:
        transition.to_stage_id = _int_or_none(data["to_stage_id"], "to_stage_id")
    if "trigger_response" in data:
        trigger = str(data.get("trigger_response") or "").strip()
        if not trigger:
            raise ValidationError("trigger_response cannot be empty")
        transition.trigger_response = trigger
    if "conditions" in data:
        conditions = data["conditions"] or {}
        if not isinstance(conditions, dict):
            raise ValidationError("conditions must be an object")
        transition.conditions = conditions
    for flag in ("is_automatic", "requires_admin_override"):
        if flag in data:
            setattr(transition, flag, bool(data[flag]))


def list_transitions(company_id, stage_id):
    stage = get_stage(company_id, stage_id)
    return (
        stage.outgoing_transitions
        .order_by(StageTransition.is_automatic.desc(), StageTransition.id.asc())
        .all()
    )


def get_transition(company_id, stage_id, transition_id) -> StageTransition:
    stage = get_stage(company_id, stage_id)
    transition = StageTransition.query.filter_by(id=transition_id, from_stage_id=stage.id).first()
    if transition is None:
        raise NotFoundError("StageTransition", transition_id, company_id)
    return transition


def create_transition(company_id, stage_id, data) -> StageTransition:
    stage = get_stage(company_id, stage_id)
    if data.get("to_stage_id") in (None, ""):
        raise ValidationError("to_stage_id is required")
    if not str(data.get("trigger_response") or "").strip():
        raise ValidationError("trigger_response is required")
    transition = StageTransition(from_stage_id=stage.id, conditions={})
    _apply_transition(transition, data)
    _check_transition(company_id, transition)
    db.session.add(transition)
    db.session.commit()
    logger.info("Transition %s -> %s on %r created", stage.id, transition.to_stage_id,
                transition.trigger_response)
    return transition


def update_transition(company_id, stage_id, transition_id, data) -> StageTransition:
    transition = get_transition(company_id, stage_id, transition_id)
    with db.session.no_autoflush:
        _apply_transition(transition, data)
        _check_transition(company_id, transition)
    db.session.commit()
    return transition


def delete_transition(company_id, stage_id, transition_id) -> None:
    transition = get_transition(company_id, stage_id, transition_id)
    db.session.delete(transition)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Task templates
# ═════════════════════════════════════════════════════════════════════════════


def _normalize_subtasks(value) -> list:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise ValidationError("subtasks must be a list")
    result = []
    for idx, item in enumerate(value, start=1):
        if isinstance(item, str):
            item = {"title": item}
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            raise ValidationError("each subtask needs a title")
        result.append({
            "id": str(item.get("id") or idx),
            "title": str(item["title"]).strip(),
            "completed": False,
        })
    return result


def _apply_template(template: TaskTemplate, data: dict) -> None:
    if "title" in data:
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("title cannot be empty")
        template.title = title
    if "description" in data:
        template.description = data["description"]
    if "task_type" in data:
        template.task_type = _choice(data["task_type"], TASK_TYPES, "task_type")
    if "priority" in data:
        template.priority = _choice(data["priority"], TASK_PRIORITIES, "priority")
    if "auto_assign_to" in data:
        template.auto_assign_to = _choice(data["auto_assign_to"], AUTO_ASSIGN_TARGETS, "auto_assign_to")
    if "subtasks" in data:
        template.subtasks = _normalize_subtasks(data["subtasks"])
    if "upload_file_types" in data:
        types = data["upload_file_types"] or []
        if not isinstance(types, list):
            raise ValidationError("upload_file_types must be a list")
        template.upload_file_types = [str(t).lower().lstrip(".") for t in types]
    if "due_date_offset_hours" in data:
        offset = _int_or_none(data["due_date_offset_hours"], "due_date_offset_hours") or 0
        if offset < 0:
            raise ValidationError("due_date_offset_hours cannot be negative")
        template.due_date_offset_hours = offset
    if "sla_hours" in data:
        sla = _int_or_none(data["sla_hours"], "sla_hours")
        if sla is not None and sla <= 0:
            raise ValidationError("sla_hours must be positive")
        template.sla_hours = sla
    for flag in ("upload_required", "client_visible", "is_active"):
        if flag in data:
            setattr(template, flag, bool(data[flag]))


def list_templates(company_id, stage_id):
    stage = get_stage(company_id, stage_id)
    return stage.task_templates.order_by(TaskTemplate.id.asc()).all()


def get_template(company_id, stage_id, template_id) -> TaskTemplate:
    stage = get_stage(company_id, stage_id)
    return get_scoped(TaskTemplate, template_id, stage_id=stage.id)


def create_template(company_id, stage_id, data) -> TaskTemplate:
    stage = get_stage(company_id, stage_id)
    if not str(data.get("title") or "").strip():
        raise ValidationError("title is required")
    if not data.get("task_type"):
        raise ValidationError("task_type is required")
    template = TaskTemplate(stage_id=stage.id, subtasks=[], upload_file_types=[])
    _apply_template(template, data)
    db.session.add(template)
    db.session.commit()
    return template


def update_template(company_id, stage_id, template_id, data) -> TaskTemplate:
    template = get_template(company_id, stage_id, template_id)
    _apply_template(template, data)
    db.session.commit()
    return template


def delete_template(company_id, stage_id, template_id) -> None:
    template = get_template(company_id, stage_id, template_id)
    db.session.delete(template)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Default workflow
# ═════════════════════════════════════════════════════════════════════════════


def setup_default_stages(company_id, reset=False) -> dict:
    """Seed the 12-stage construction workflow into a company.

    Refuses (409) when stages exist, unless ``reset`` is set and no job
    currently sits in any of them.
    """
    existing = list_stages(company_id)
    if existing:
        if not reset:
            raise ConflictError(
                "JobStage", "company_id", company_id,
                message="Company already has stages; pass reset=true to replace them",
            )
        in_use = Job.query.filter(Job.current_stage_id.in_([s.id for s in existing])).count()
        if in_use:
            raise ConflictError(
                "JobStage", "company_id", company_id,
                message=f"{in_use} job(s) are in existing stages; cannot reset",
            )
        for stage in existing:
            db.session.delete(stage)
        db.session.flush()

    counts = seed_default_stages(company_id)
    db.session.commit()
    return counts
