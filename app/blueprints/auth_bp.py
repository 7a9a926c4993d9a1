"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/signup      — New company + owner → JWT pair
  POST /api/v1/auth/login       — Email + password → JWT pair
  POST /api/v1/auth/register    — Accept invite → set password → JWT pair
  POST /api/v1/auth/refresh     — Refresh token → new pair (rotation)
  POST /api/v1/auth/logout      — Revoke refresh token (or all sessions)
  GET  /api/v1/auth/me          — Current user, company and permissions
  PUT  /api/v1/auth/password    — Change password
"""

import logging

import jwt as pyjwt
from flask import Blueprint, g, jsonify, request

from app import limiter
from app.middleware.permission_required import require_auth
from app.middleware.rate_limiter import AUTH_LIMIT
from app.models import db
from app.models.auth import User
from app.services import permission_service
from app.services.jwt_service import (
    create_session,
    decode_refresh_token,
    generate_token_pair,
    get_active_session_by_token,
    hash_token,
    revoke_all_user_sessions,
    revoke_session,
    revoke_session_by_token,
    rotate_session,
)
from app.services.user_service import (
    UserServiceError,
    accept_invite,
    authenticate_user,
    change_password as change_user_password,
    signup as signup_company,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


@auth_bp.errorhandler(UserServiceError)
def _handle_user_service_error(error: UserServiceError):
    db.session.rollback()
    return jsonify({"error": error.message}), error.status_code


def _issue_tokens(user: User, status: int = 200):
    tokens = generate_token_pair(user)
    create_session(
        user.id, tokens["token_hash"],
        request.remote_addr, request.headers.get("User-Agent", ""),
        tokens["expires_at"],
    )
    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
        "user": user.to_dict(),
        "company": user.company.to_dict() if user.company else None,
    }), status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/signup
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/signup", methods=["POST"])
@limiter.limit(AUTH_LIMIT)
def signup():
    """
    Create a company and its owner account.

    Body: { "company_name": "...", "email": "...", "password": "...", "full_name": "..." }
    """
    data = request.get_json(silent=True) or {}
    missing = [f for f in ("company_name", "email", "password") if not data.get(f)]
    if missing:
        return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400

    user = signup_company(data["company_name"], data["email"], data["password"], data.get("full_name"))
    return _issue_tokens(user, 201)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
@limiter.limit(AUTH_LIMIT)
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    user = authenticate_user(email, password)
    logger.info("Login: user=%s company=%s", user.id, user.company_id)
    return _issue_tokens(user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register  (invite-only)
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Accept an invitation and set password.

    Body: { "invite_token": "...", "password": "...", "full_name": "..." }
    """
    data = request.get_json(silent=True) or {}
    invite_token = data.get("invite_token") or ""
    password = data.get("password") or ""

    if not invite_token:
        return jsonify({"error": "Invite token is required"}), 400
    if len(password) < 8:
        return jsonify({"error": "Password must be at least 8 characters"}), 400

    user = accept_invite(invite_token, password, data.get("full_name"))
    return _issue_tokens(user, 201)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token") or ""

    if not refresh_token:
        return jsonify({"error": "Refresh token is required"}), 400

    try:
        payload = decode_refresh_token(refresh_token)
    except pyjwt.InvalidTokenError:
        return jsonify({"error": "Invalid or expired refresh token"}), 401

    user_id = payload["sub"]
    session = get_active_session_by_token(user_id, hash_token(refresh_token))
    if not session:
        return jsonify({"error": "Session not found or revoked"}), 401

    if session.is_expired:
        revoke_session(session)
        return jsonify({"error": "Session expired"}), 401

    user = db.session.get(User, user_id)
    if not user or user.status != "active":
        revoke_session(session)
        return jsonify({"error": "User inactive or not found"}), 401

    tokens = generate_token_pair(user)
    rotate_session(
        session,
        user.id,
        tokens["token_hash"],
        tokens["expires_at"],
        request.remote_addr,
        request.headers.get("User-Agent", ""),
    )

    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """
    Revoke one session by refresh token, or every session of the
    authenticated user when no token is given.

    Body: { "refresh_token": "..." }  (optional)
    """
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token") or ""

    if refresh_token:
        revoke_session_by_token(hash_token(refresh_token))
    elif getattr(g, "current_user", None) is not None:
        revoke_all_user_sessions(g.current_user.id)
    else:
        return jsonify({"error": "Authentication required"}), 401

    return jsonify({"message": "Logged out successfully"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """Current user profile, company and permission codenames."""
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "company": user.company.to_dict() if user.company else None,
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
    }), 200


# ═══════════════════════════════════════════════════════════════
# PUT /api/v1/auth/password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/password", methods=["PUT"])
@require_auth
def change_password():
    """
    Change current user's password.

    Body: { "current_password": "...", "new_password": "..." }
    """
    data = request.get_json(silent=True) or {}
    current_pw = data.get("current_password") or ""
    new_pw = data.get("new_password") or ""

    if not current_pw or not new_pw:
        return jsonify({"error": "Both current and new password are required"}), 400
    if len(new_pw) < 8:
        return jsonify({"error": "New password must be at least 8 characters"}), 400

    change_user_password(g.current_user, current_pw, new_pw)
    return jsonify({"message": "Password changed successfully"}), 200
