"""
Share Blueprint — public endpoints. No authentication.

    GET  /api/v1/shared-assignments/<token>    — Job + worker summary (no rates)
    GET  /api/v1/shared-documents/<token>      — File download
    POST /api/v1/careers/<slug>/applications   — Apply to work for a company

Unknown or disabled tokens give 404, expired ones 410. Applying to an
unknown or inactive company gives 404.
"""

import logging

from flask import Blueprint, jsonify, request, send_file

from app import limiter
from app.middleware.rate_limiter import PUBLIC_FORM_LIMIT
from app.services import document_service, worker_application_service, worker_service
from app.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

share_bp = Blueprint("share_bp", __name__, url_prefix="/api/v1")
register_service_error_handlers(share_bp)


@share_bp.route("/shared-assignments/<token>", methods=["GET"])
def shared_assignment(token):
    return jsonify(worker_service.get_shared_assignment(token))


@share_bp.route("/shared-documents/<token>", methods=["GET"])
def shared_document(token):
    document, path = document_service.resolve_shared_document(token, request.remote_addr)
    logger.info("Shared document %s downloaded from %s", document.id, request.remote_addr)
    return send_file(
        path,
        mimetype=document.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=document.original_filename,
    )


@share_bp.route("/careers/<company_slug>/applications", methods=["POST"])
@limiter.limit(PUBLIC_FORM_LIMIT)
def submit_application(company_slug):
    data = request.get_json(silent=True) or {}
    missing = [f for f in worker_application_service.REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required field: {missing[0]}")
    application = worker_application_service.submit_application(company_slug, data)
    return jsonify({
        "id": application.id,
        "status": application.status,
        "applied_at": application.applied_at.isoformat() if application.applied_at else None,
        "message": "Application submitted successfully",
    }), 201
