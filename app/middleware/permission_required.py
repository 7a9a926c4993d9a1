"""
Permission Decorators — JWT-aware RBAC decorators for route protection.

Provides decorators that check the JWT-authenticated user's permissions
before allowing access to an endpoint.

Usage:
    @bp.route("/api/v1/jobs", methods=["POST"])
    @require_permission("jobs.manage")
    def create_job():
        ...

    @bp.route("/api/v1/site-admin/companies", methods=["GET"])
    @require_role("site_admin")
    def list_companies():
        ...

Every decorator answers 401 when there is no authenticated user and 403
when the user lacks the permission or role. Routes that act on company
data also need a resolved company; a site admin without ``company_id``
gets a 400.
"""

import functools
import logging

from flask import g, jsonify

from app.services.permission_service import has_permission

logger = logging.getLogger(__name__)

_AUTH_MESSAGES = {
    "expired": "Token has expired",
    "invalid": "Invalid token",
}


def _unauthenticated():
    reason = getattr(g, "jwt_error", None)
    return jsonify({"error": _AUTH_MESSAGES.get(reason, "Authentication required")}), 401


def _company_missing():
    return jsonify({"error": "company_id is required for site admin requests"}), 400


def current_company_id():
    return getattr(g, "company_id", None)


def require_auth(f):
    """Decorator: any authenticated, active user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "current_user", None) is None:
            return _unauthenticated()
        return f(*args, **kwargs)
    return decorated


def require_permission(codename: str, company_required: bool = True):
    """
    Decorator: require the JWT user to have a specific permission.

    Site admins bypass the check (superuser).

    Args:
        codename: Permission codename, e.g. "jobs.manage"
        company_required: whether the route needs g.company_id
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return _unauthenticated()

            if not has_permission(user.id, codename):
                logger.warning(
                    "User %d denied: missing permission '%s' on %s",
                    user.id, codename, f.__name__,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required": codename,
                }), 403

            if company_required and current_company_id() is None:
                return _company_missing()
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_role(*roles: str):
    """Decorator: require the JWT user's role to be one of ``roles``."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return _unauthenticated()

            if user.role not in roles:
                logger.warning(
                    "User %d denied: role '%s' not in %s on %s",
                    user.id, user.role, roles, f.__name__,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)
        return decorated
    return decorator
