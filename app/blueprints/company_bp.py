"""
Company Blueprint — current company profile, user management, dashboard.

Endpoints:
    GET    /api/v1/company                         — Current company
    PUT    /api/v1/company                         — Update (company.manage)
    GET    /api/v1/company/dashboard               — Role-aware stats

    Users (users.manage):
        GET    /api/v1/company/users               — List
        POST   /api/v1/company/users               — Create with password
        POST   /api/v1/company/users/invite        — Invite (returns token)
        PUT    /api/v1/company/users/<id>          — Update name/phone
        PUT    /api/v1/company/users/<id>/role     — Change role
        POST   /api/v1/company/users/<id>/deactivate
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_auth, require_permission
from app.models import db
from app.services import company_service, user_service
from app.services.user_service import UserServiceError
from app.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

company_bp = Blueprint("company_bp", __name__, url_prefix="/api/v1/company")
register_service_error_handlers(company_bp)


@company_bp.errorhandler(UserServiceError)
def _handle_user_service_error(error: UserServiceError):
    db.session.rollback()
    return jsonify({"error": error.message}), error.status_code


# ═════════════════════════════════════════════════════════════════════════════
# Company profile
# ═════════════════════════════════════════════════════════════════════════════


@company_bp.route("", methods=["GET"])
@require_auth
def get_company():
    if g.company is None:
        return api_error(E.VALIDATION_REQUIRED, "company_id is required for site admin requests")
    return jsonify(g.company.to_dict())


@company_bp.route("", methods=["PUT"])
@require_permission("company.manage")
def update_company():
    data = request.get_json(silent=True) or {}
    company = company_service.update_company(g.company_id, data)
    return jsonify(company.to_dict())


@company_bp.route("/dashboard", methods=["GET"])
@require_auth
def dashboard():
    if g.company_id is None:
        return api_error(E.VALIDATION_REQUIRED, "company_id is required for site admin requests")
    return jsonify(company_service.get_dashboard(g.company_id, g.current_user))


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════


@company_bp.route("/users", methods=["GET"])
@require_permission("users.manage")
def list_users():
    users = user_service.list_users(
        g.company_id, status=request.args.get("status"), role=request.args.get("role"),
    )
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)})


@company_bp.route("/users", methods=["POST"])
@require_permission("users.manage")
def create_user():
    data = request.get_json(silent=True) or {}
    if not data.get("email"):
        return api_error(E.VALIDATION_REQUIRED, "email is required")
    if not data.get("password"):
        return api_error(E.VALIDATION_REQUIRED, "password is required")

    user = user_service.create_user(
        g.company_id,
        email=data["email"],
        password=data["password"],
        full_name=data.get("full_name"),
        role=data.get("role") or "worker",
        phone=data.get("phone"),
        actor=g.current_user,
    )
    logger.info("User %s created in company %s by %s", user.id, g.company_id, g.current_user.id)
    return jsonify(user.to_dict()), 201


@company_bp.route("/users/invite", methods=["POST"])
@require_permission("users.manage")
def invite_user():
    data = request.get_json(silent=True) or {}
    if not data.get("email"):
        return api_error(E.VALIDATION_REQUIRED, "email is required")

    user = user_service.invite_user(
        g.company_id,
        data["email"],
        role=data.get("role") or "worker",
        full_name=data.get("full_name"),
        actor=g.current_user,
    )
    body = user.to_dict()
    body["invite_token"] = user.invite_token
    body["invite_expires_at"] = user.invite_expires_at.isoformat() if user.invite_expires_at else None
    return jsonify(body), 201


@company_bp.route("/users/<int:user_id>", methods=["PUT"])
@require_permission("users.manage")
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    fields = {k: data[k] for k in ("full_name", "phone") if k in data}
    user = user_service.update_user(g.company_id, user_id, **fields)
    return jsonify(user.to_dict())


@company_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@require_permission("users.manage")
def change_role(user_id):
    data = request.get_json(silent=True) or {}
    role = data.get("role")
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    user = user_service.change_role(g.company_id, user_id, role, g.current_user)
    logger.info("User %s role -> %s by %s", user.id, role, g.current_user.id)
    return jsonify(user.to_dict())


@company_bp.route("/users/<int:user_id>/deactivate", methods=["POST"])
@require_permission("users.manage")
def deactivate_user(user_id):
    user = user_service.deactivate_user(g.company_id, user_id, g.current_user)
    return jsonify(user.to_dict())
