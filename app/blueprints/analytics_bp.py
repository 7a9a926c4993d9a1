"""
Analytics Blueprint — company dashboards.

    GET /api/v1/analytics/dashboard       — Role-specific headline numbers
    GET /api/v1/analytics/financial       — ?date_from=&date_to= (default 182 days)
    GET /api/v1/analytics/productivity    — ?date_from=&date_to= (default 30 days)
    GET /api/v1/analytics/breakdown       — Status and priority distributions
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_permission
from app.services import analytics_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

analytics_bp = Blueprint("analytics_bp", __name__, url_prefix="/api/v1/analytics")
register_service_error_handlers(analytics_bp)


def _date_window():
    date_from = parse_date(request.args.get("date_from"))
    date_to = parse_date(request.args.get("date_to"))
    if date_from and date_to and date_from > date_to:
        return None, api_error(E.VALIDATION_INVALID, "date_from must not be after date_to")
    return (date_from, date_to), None


@analytics_bp.route("/dashboard", methods=["GET"])
@require_permission("jobs.view")
def dashboard():
    return jsonify(analytics_service.get_dashboard(g.company_id, g.current_user))


@analytics_bp.route("/financial", methods=["GET"])
@require_permission("reports.view")
def financial():
    window, error = _date_window()
    if error:
        return error
    return jsonify(analytics_service.get_financial(g.company_id, *window))


@analytics_bp.route("/productivity", methods=["GET"])
@require_permission("reports.view")
def productivity():
    window, error = _date_window()
    if error:
        return error
    return jsonify(analytics_service.get_productivity(g.company_id, *window))


@analytics_bp.route("/breakdown", methods=["GET"])
@require_permission("reports.view")
def breakdown():
    return jsonify(analytics_service.get_breakdown(g.company_id))
