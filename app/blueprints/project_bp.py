"""
Project Blueprint — CRUD for projects (groups of jobs).

    GET    /api/v1/projects             — List (?status=&search=&limit=&offset=)
    POST   /api/v1/projects             — Create
    GET    /api/v1/projects/<id>        — Detail + job summary
    PUT    /api/v1/projects/<id>        — Update
    DELETE /api/v1/projects/<id>        — Delete (409 while jobs remain)
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_permission
from app.services import project_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import paginate_query

logger = logging.getLogger(__name__)

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1/projects")
register_service_error_handlers(project_bp)


@project_bp.route("", methods=["GET"])
@require_permission("projects.view")
def list_projects():
    q = project_service.list_projects(
        g.company_id, status=request.args.get("status"), search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@project_bp.route("", methods=["POST"])
@require_permission("projects.manage")
def create_project():
    data = request.get_json(silent=True) or {}
    if not str(data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    project = project_service.create_project(g.company_id, data, g.current_user.id)
    logger.info("Project %s created in company %s", project.id, g.company_id)
    return jsonify(project.to_dict()), 201


@project_bp.route("/<int:project_id>", methods=["GET"])
@require_permission("projects.view")
def get_project(project_id):
    project = project_service.get_project(g.company_id, project_id)
    return jsonify(project.to_dict(include_jobs=True))


@project_bp.route("/<int:project_id>", methods=["PUT"])
@require_permission("projects.manage")
def update_project(project_id):
    data = request.get_json(silent=True) or {}
    project = project_service.update_project(g.company_id, project_id, data)
    return jsonify(project.to_dict())


@project_bp.route("/<int:project_id>", methods=["DELETE"])
@require_permission("projects.manage")
def delete_project(project_id):
    project_service.delete_project(g.company_id, project_id)
    return jsonify({"message": "Project deleted"}), 200
