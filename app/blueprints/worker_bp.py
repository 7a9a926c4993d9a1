"""
Worker Blueprint — worker records, assignment links and applications.

    GET    /api/v1/workers                          — List (?status=&search=&is_foreman=)
    POST   /api/v1/workers                          — Create
    GET    /api/v1/workers/<id>                     — Detail
    PUT    /api/v1/workers/<id>                     — Update
    DELETE /api/v1/workers/<id>                     — Delete

    DELETE /api/v1/assignments/<id>                 — Remove a worker from a job
    POST   /api/v1/assignments/<id>/share           — Enable public link (expires_in_days)
    DELETE /api/v1/assignments/<id>/share           — Disable public link

    GET    /api/v1/worker-applications              — List (?status=)
    GET    /api/v1/worker-applications/<id>         — Detail
    PATCH  /api/v1/worker-applications/<id>         — Review (status, notes); approve hires
    DELETE /api/v1/worker-applications/<id>

Job-scoped assignment list/create lives on the job blueprint.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_permission
from app.services import worker_application_service, worker_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import paginate_query

logger = logging.getLogger(__name__)

worker_bp = Blueprint("worker_bp", __name__, url_prefix="/api/v1")
register_service_error_handlers(worker_bp)


def _bool_arg(name):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════════
# Workers
# ═════════════════════════════════════════════════════════════════════════════


@worker_bp.route("/workers", methods=["GET"])
@require_permission("workers.view")
def list_workers():
    q = worker_service.list_workers(
        g.company_id,
        status=request.args.get("status"),
        search=request.args.get("search"),
        is_foreman=_bool_arg("is_foreman"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [w.to_dict() for w in items], "total": total})


@worker_bp.route("/workers", methods=["POST"])
@require_permission("workers.manage")
def create_worker():
    data = request.get_json(silent=True) or {}
    if not str(data.get("full_name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "full_name is required")
    worker = worker_service.create_worker(g.company_id, data)
    logger.info("Worker %s created in company %s", worker.id, g.company_id)
    return jsonify(worker.to_dict()), 201


@worker_bp.route("/workers/<int:worker_id>", methods=["GET"])
@require_permission("workers.view")
def get_worker(worker_id):
    return jsonify(worker_service.get_worker(g.company_id, worker_id).to_dict())


@worker_bp.route("/workers/<int:worker_id>", methods=["PUT"])
@require_permission("workers.manage")
def update_worker(worker_id):
    data = request.get_json(silent=True) or {}
    return jsonify(worker_service.update_worker(g.company_id, worker_id, data).to_dict())


@worker_bp.route("/workers/<int:worker_id>", methods=["DELETE"])
@require_permission("workers.manage")
def delete_worker(worker_id):
    worker_service.delete_worker(g.company_id, worker_id)
    return jsonify({"message": "Worker deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════════


@worker_bp.route("/assignments/<int:assignment_id>", methods=["DELETE"])
@require_permission("jobs.manage")
def delete_assignment(assignment_id):
    worker_service.delete_assignment(g.company_id, assignment_id)
    return jsonify({"message": "Assignment deleted"}), 200


@worker_bp.route("/assignments/<int:assignment_id>/share", methods=["POST"])
@require_permission("jobs.manage")
def share_assignment(assignment_id):
    data = request.get_json(silent=True) or {}
    assignment = worker_service.share_assignment(
        g.company_id, assignment_id, g.current_user.id, data.get("expires_in_days"),
    )
    body = assignment.to_dict(include_share=True)
    body["share_url"] = worker_service.share_url_for(assignment.share_token)
    return jsonify(body)


@worker_bp.route("/assignments/<int:assignment_id>/share", methods=["DELETE"])
@require_permission("jobs.manage")
def unshare_assignment(assignment_id):
    assignment = worker_service.unshare_assignment(g.company_id, assignment_id)
    return jsonify(assignment.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Applications
# ═════════════════════════════════════════════════════════════════════════════


@worker_bp.route("/worker-applications", methods=["GET"])
@require_permission("workers.view")
def list_applications():
    q = worker_application_service.list_applications(g.company_id, status=request.args.get("status"))
    items, total = paginate_query(q, default_limit=50)
    return jsonify({"items": [a.to_dict() for a in items], "total": total})


@worker_bp.route("/worker-applications/<int:application_id>", methods=["GET"])
@require_permission("workers.view")
def get_application(application_id):
    return jsonify(worker_application_service.get_application(g.company_id, application_id).to_dict())


@worker_bp.route("/worker-applications/<int:application_id>", methods=["PATCH"])
@require_permission("workers.manage")
def review_application(application_id):
    data = request.get_json(silent=True) or {}
    application = worker_application_service.review_application(
        g.company_id, application_id, g.current_user.id, data,
    )
    return jsonify(application.to_dict())


@worker_bp.route("/worker-applications/<int:application_id>", methods=["DELETE"])
@require_permission("workers.manage")
def delete_application(application_id):
    worker_application_service.delete_application(g.company_id, application_id)
    return jsonify({"message": "Application deleted"}), 200
