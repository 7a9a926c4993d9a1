"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category. The login and
signup routes carry their own 10/minute limit in auth_bp.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

AUTH_LIMIT = "10/minute"
PUBLIC_FORM_LIMIT = "5/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

WRITE_HEAVY_BLUEPRINTS = ("job_bp", "stage_bp", "time_bp", "document_bp", "worker_bp")
READ_BLUEPRINTS = ("share_bp",)


def rate_limit_key():
    """Per-company key for authenticated calls, remote IP otherwise."""
    company_id = getattr(g, "company_id", None)
    user_id = getattr(g, "jwt_user_id", None)
    if company_id and user_id:
        return f"company:{company_id}:user:{user_id}"
    return request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Write-heavy blueprints: 60/minute
        - Public share links:     200/minute
        - Public careers form:    5/minute per IP (on the route)
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_HEAVY_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — auth: %s, write: %s, share: %s",
        AUTH_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
