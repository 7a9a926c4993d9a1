"""
Site Admin Blueprint — cross-company administration.

    GET  /api/v1/site-admin/companies          — All companies + user/job counts
    POST /api/v1/site-admin/companies          — Create a company
    PUT  /api/v1/site-admin/companies/<id>     — Update (incl. suspend)
    GET  /api/v1/site-admin/jobs               — Jobs across companies

    GET  /api/v1/site-admin/scheduled-jobs             — Registered jobs + last run
    POST /api/v1/site-admin/scheduled-jobs/<name>/run   — Run a job now
    GET  /api/v1/site-admin/reminders/stats            — Reminder + queue counts
    POST /api/v1/site-admin/reminders/process          — Queue due reminders, send pending

Filters: companies ?status=&search=, jobs ?company_id=&status=&search=
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_role
from app.services import company_service, reminder_service
from app.services.scheduler_service import SchedulerService
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import paginate_query

logger = logging.getLogger(__name__)

site_admin_bp = Blueprint("site_admin_bp", __name__, url_prefix="/api/v1/site-admin")
register_service_error_handlers(site_admin_bp)


@site_admin_bp.route("/companies", methods=["GET"])
@require_role("site_admin")
def list_companies():
    companies = company_service.list_companies_with_counts(
        status=request.args.get("status"), search=request.args.get("search"),
    )
    return jsonify({"items": companies, "total": len(companies)})


@site_admin_bp.route("/companies", methods=["POST"])
@require_role("site_admin")
def create_company():
    data = request.get_json(silent=True) or {}
    company = company_service.create_company(data)
    return jsonify(company.to_dict()), 201


@site_admin_bp.route("/companies/<int:company_id>", methods=["PUT"])
@require_role("site_admin")
def update_company(company_id):
    data = request.get_json(silent=True) or {}
    company = company_service.admin_update_company(company_id, data)
    logger.info("Site admin %s updated company %s", g.current_user.id, company.id)
    return jsonify(company.to_dict())


@site_admin_bp.route("/jobs", methods=["GET"])
@require_role("site_admin")
def list_jobs():
    q = company_service.list_all_jobs(
        company_id=request.args.get("company_id", type=int),
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [j.to_dict() for j in items], "total": total})


# ═════════════════════════════════════════════════════════════════════════════
# Scheduled jobs & reminders
# ═════════════════════════════════════════════════════════════════════════════


@site_admin_bp.route("/scheduled-jobs", methods=["GET"])
@require_role("site_admin")
def list_scheduled_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"items": jobs, "total": len(jobs)})


@site_admin_bp.route("/scheduled-jobs/<job_name>/run", methods=["POST"])
@require_role("site_admin")
def run_scheduled_job(job_name):
    run = SchedulerService.run_job(job_name)
    if run is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    logger.info("Site admin %s ran job %s: %s", g.current_user.id, job_name, run["status"])
    return jsonify(run), 200 if run["status"] == "success" else 500


@site_admin_bp.route("/reminders/stats", methods=["GET"])
@require_role("site_admin")
def reminder_stats():
    return jsonify(reminder_service.reminder_stats(company_id=request.args.get("company_id", type=int)))


@site_admin_bp.route("/reminders/process", methods=["POST"])
@require_role("site_admin")
def process_reminders():
    result = reminder_service.process_reminders(company_id=request.args.get("company_id", type=int))
    result["message"] = (
        f"Processed {result['processed_reminders']} reminders and sent "
        f"{result['sent_notifications']} notifications"
    )
    return jsonify(result)
