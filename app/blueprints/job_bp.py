"""
Job Blueprint — job CRUD, manual status, stage progression, tasks and crew.

Endpoints:
    Jobs:
        GET    /api/v1/jobs                              — List (?status=&project_id=&foreman_id=&stage_id=&search=)
        POST   /api/v1/jobs                              — Create (enters the first stage)
        GET    /api/v1/jobs/<id>                         — Detail
        PUT    /api/v1/jobs/<id>                         — Update
        DELETE /api/v1/jobs/<id>                         — Delete

    Status:
        POST   /api/v1/jobs/<id>/status                  — Manual status change
        GET    /api/v1/jobs/<id>/status-history          — Status rows + stage timeline

    Stage engine:
        POST   /api/v1/jobs/<id>/stage-response          — Answer a stage question
        GET    /api/v1/jobs/<id>/current-question        — Question flow
        POST   /api/v1/jobs/<id>/assign-stage            — Admin override
        GET    /api/v1/jobs/<id>/audit-history
        GET    /api/v1/jobs/<id>/performance-metrics
        GET    /api/v1/jobs/<id>/responses
        GET    /api/v1/jobs/<id>/reminders               — Date reminders + queued notifications

    Tasks:
        GET    /api/v1/jobs/<id>/tasks                   — List (?status=)
        GET    /api/v1/jobs/<id>/tasks/<task_id>
        PATCH  /api/v1/jobs/<id>/tasks/<task_id>         — Checklist / uploads / status

    Assignments:
        GET    /api/v1/jobs/<id>/assignments
        POST   /api/v1/jobs/<id>/assignments
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_permission
from app.services import (
    job_service,
    job_task_service,
    reminder_service,
    stage_progression_service,
    worker_service,
)
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import paginate_query

logger = logging.getLogger(__name__)

job_bp = Blueprint("job_bp", __name__, url_prefix="/api/v1/jobs")
register_service_error_handlers(job_bp)


def _int_arg(name):
    return request.args.get(name, type=int)


# ═════════════════════════════════════════════════════════════════════════════
# Jobs CRUD
# ═════════════════════════════════════════════════════════════════════════════


@job_bp.route("", methods=["GET"])
@require_permission("jobs.view")
def list_jobs():
    q = job_service.list_jobs(
        g.company_id,
        status=request.args.get("status"),
        project_id=_int_arg("project_id"),
        foreman_id=_int_arg("foreman_id"),
        stage_id=_int_arg("stage_id"),
        search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [j.to_dict() for j in items], "total": total})


@job_bp.route("", methods=["POST"])
@require_permission("jobs.manage")
def create_job():
    data = request.get_json(silent=True) or {}
    if not str(data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    job = job_service.create_job(g.company_id, data, g.current_user.id)
    return jsonify(job.to_dict()), 201


@job_bp.route("/<int:job_id>", methods=["GET"])
@require_permission("jobs.view")
def get_job(job_id):
    return jsonify(job_service.get_job(g.company_id, job_id).to_dict())


@job_bp.route("/<int:job_id>", methods=["PUT"])
@require_permission("jobs.manage")
def update_job(job_id):
    data = request.get_json(silent=True) or {}
    return jsonify(job_service.update_job(g.company_id, job_id, data).to_dict())


@job_bp.route("/<int:job_id>", methods=["DELETE"])
@require_permission("jobs.manage")
def delete_job(job_id):
    job_service.delete_job(g.company_id, job_id)
    return jsonify({"message": "Job deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Manual status
# ═════════════════════════════════════════════════════════════════════════════


@job_bp.route("/<int:job_id>/status", methods=["POST"])
@require_permission("jobs.manage")
def change_status(job_id):
    data = request.get_json(silent=True) or {}
    new_status = data.get("status")
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    job = job_service.change_status(
        g.company_id, job_id, new_status, g.current_user.id, data.get("notes"),
    )
    return jsonify(job.to_dict())


@job_bp.route("/<int:job_id>/status-history", methods=["GET"])
@require_permission("jobs.view")
def status_history(job_id):
    return jsonify(job_service.get_status_history(g.company_id, job_id))


# ═════════════════════════════════════════════════════════════════════════════
# Stage engine
# ═════════════════════════════════════════════════════════════════════════════


@job_bp.route("/<int:job_id>/stage-response", methods=["POST"])
@require_permission("stages.respond")
def stage_response(job_id):
    data = request.get_json(silent=True) or {}
    if data.get("question_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "question_id is required")
    if data.get("response_value") is None:
        return api_error(E.VALIDATION_REQUIRED, "response_value is required")
    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        return api_error(E.VALIDATION_INVALID, "metadata must be an object")
    reminder = None
    if "reminder_enabled" in data or "reminder_offset_hours" in data:
        reminder = {
            "enabled": data.get("reminder_enabled"),
            "offset_hours": data.get("reminder_offset_hours"),
        }

    result = stage_progression_service.process_stage_response(
        job_id,
        data["question_id"],
        str(data["response_value"]),
        g.current_user.id,
        source=data.get("response_source") or "web_app",
        metadata=metadata,
        company_id=g.company_id,
        reminder=reminder,
    )
    return jsonify(result)


@job_bp.route("/<int:job_id>/current-question", methods=["GET"])
@require_permission("jobs.view")
def current_question(job_id):
    return jsonify(stage_progression_service.get_question_flow(
        job_id, company_id=g.company_id, user_id=g.current_user.id,
    ))


@job_bp.route("/<int:job_id>/assign-stage", methods=["POST"])
@require_permission("stages.override")
def assign_stage(job_id):
    data = request.get_json(silent=True) or {}
    if data.get("stage_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "stage_id is required")
    if not str(data.get("reason") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    result = stage_progression_service.admin_override_stage(
        job_id, data["stage_id"], g.current_user.id, data["reason"], company_id=g.company_id,
    )
    return jsonify(result)


@job_bp.route("/<int:job_id>/audit-history", methods=["GET"])
@require_permission("jobs.view")
def audit_history(job_id):
    rows = stage_progression_service.get_audit_history(job_id, company_id=g.company_id)
    return jsonify({"items": rows, "total": len(rows)})


@job_bp.route("/<int:job_id>/performance-metrics", methods=["GET"])
@require_permission("reports.view")
def performance_metrics(job_id):
    rows = stage_progression_service.get_performance_metrics(job_id, company_id=g.company_id)
    return jsonify({"items": rows, "total": len(rows)})


@job_bp.route("/<int:job_id>/responses", methods=["GET"])
@require_permission("jobs.view")
def responses(job_id):
    rows = stage_progression_service.get_responses(job_id, company_id=g.company_id)
    return jsonify({"items": rows, "total": len(rows)})


@job_bp.route("/<int:job_id>/reminders", methods=["GET"])
@require_permission("jobs.view")
def reminders(job_id):
    rows = reminder_service.list_job_reminders(g.company_id, job_id)
    return jsonify({"items": rows, "total": len(rows)})


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════


@job_bp.route("/<int:job_id>/tasks", methods=["GET"])
@require_permission("jobs.view")
def list_tasks(job_id):
    tasks = job_task_service.list_tasks(g.company_id, job_id, request.args.get("status"))
    return jsonify({"items": [job_task_service.task_to_dict(t) for t in tasks], "total": len(tasks)})


@job_bp.route("/<int:job_id>/tasks/<int:task_id>", methods=["GET"])
@require_permission("jobs.view")
def get_task(job_id, task_id):
    task = job_task_service.get_task(g.company_id, job_id, task_id)
    return jsonify(job_task_service.task_to_dict(task))


@job_bp.route("/<int:job_id>/tasks/<int:task_id>", methods=["PATCH"])
@require_permission("tasks.update")
def update_task(job_id, task_id):
    data = request.get_json(silent=True) or {}
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is empty")
    task = job_task_service.update_task(g.company_id, job_id, task_id, data)
    return jsonify(job_task_service.task_to_dict(task))


# ═════════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════════


@job_bp.route("/<int:job_id>/assignments", methods=["GET"])
@require_permission("jobs.view")
def list_assignments(job_id):
    rows = worker_service.list_assignments(g.company_id, job_id)
    return jsonify({"items": [a.to_dict() for a in rows], "total": len(rows)})


@job_bp.route("/<int:job_id>/assignments", methods=["POST"])
@require_permission("jobs.manage")
def create_assignment(job_id):
    data = request.get_json(silent=True) or {}
    if data.get("worker_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "worker_id is required")
    assignment = worker_service.create_assignment(g.company_id, job_id, data, g.current_user.id)
    return jsonify(assignment.to_dict()), 201
