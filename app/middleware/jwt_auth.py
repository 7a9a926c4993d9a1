"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Runs before every /api/v1 request:
  Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_company_id, g.jwt_role

The middleware never blocks on its own. A missing or bad token leaves
g.jwt_user_id as None and records why in g.jwt_error; the require_auth /
require_permission decorators turn that into a 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/signup",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
    "/api/v1/health",
    "/api/v1/shared-assignments/",
    "/api/v1/shared-documents/",
    "/api/v1/careers/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        # Clear JWT context
        g.jwt_user_id = None
        g.jwt_company_id = None
        g.jwt_role = None
        g.jwt_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            g.jwt_error = "missing"
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "expired"
            return
        except pyjwt.InvalidTokenError:
            g.jwt_error = "invalid"
            return

        g.jwt_user_id = payload.get("sub")
        g.jwt_company_id = payload.get("company_id")
        g.jwt_role = payload.get("role")
