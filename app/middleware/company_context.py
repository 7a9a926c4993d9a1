"""
Company Context Middleware — Resolves the acting user and company.

When a JWT-authenticated user makes a request:
  1. g.jwt_user_id is already set by jwt_auth middleware
  2. This middleware loads the user and rejects inactive accounts
  3. Loads the company and rejects suspended or cancelled ones
  4. Sets g.current_user, g.company and g.company_id for the route handler

Site admins have no company of their own; they choose one per request
with ``?company_id=`` (or the ``X-Company-Id`` header) and are never
blocked by a company's subscription status.

Chain order:
  jwt_auth.py  →  company_context.py  →  route handler
"""

import logging

from flask import g, jsonify, request

from app.models import db
from app.models.auth import Company, User

logger = logging.getLogger(__name__)


def _requested_company_id():
    value = request.args.get("company_id") or request.headers.get("X-Company-Id")
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return "invalid"


def init_company_context(app):
    """Register company context middleware as a before_request hook."""

    @app.before_request
    def _company_context():
        g.current_user = None
        g.company = None
        g.company_id = None

        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return None  # Unauthenticated; decorators decide

        user = db.session.get(User, user_id)
        if user is None:
            logger.warning("JWT user %s not found", user_id)
            g.jwt_user_id = None
            g.jwt_error = "invalid"
            return None
        if user.status != "active":
            logger.warning("Inactive user %s rejected", user.id)
            return jsonify({"error": "User account is not active"}), 403
        g.current_user = user
        # Role comes from the database so a changed role applies immediately
        g.jwt_role = user.role

        company_id = user.company_id
        if user.is_site_admin:
            requested = _requested_company_id()
            if requested == "invalid":
                return jsonify({"error": "company_id must be an integer"}), 400
            if requested is not None:
                company_id = requested

        if company_id is None:
            return None

        company = db.session.get(Company, company_id)
        if company is None:
            if user.is_site_admin:
                return jsonify({"error": "Company not found"}), 404
            logger.warning("User %s references missing company %s", user.id, company_id)
            return jsonify({"error": "Company not found"}), 403
        if not company.is_active and not user.is_site_admin:
            logger.warning("Company %s is %s; request rejected", company.id, company.subscription_status)
            return jsonify({"error": "Company account is not active"}), 403

        g.company = company
        g.company_id = company.id
        return None

    logger.info("Company context middleware installed")
