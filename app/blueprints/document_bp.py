"""
Document Blueprint — uploads, downloads, share links and categories.

    POST   /api/v1/documents/upload                — multipart: file + form fields
    GET    /api/v1/documents                       — List (?job_id=&category_id=&task_id=&search=)
    GET    /api/v1/documents/<id>                  — Metadata
    PUT    /api/v1/documents/<id>                  — Update metadata
    GET    /api/v1/documents/<id>/download         — File (logged)
    GET    /api/v1/documents/<id>/preview          — Inline file (logged as a view)
    DELETE /api/v1/documents/<id>                  — Soft delete
    POST   /api/v1/documents/<id>/share            — Signed share link
    GET    /api/v1/documents/<id>/access-log       — documents.manage

    GET    /api/v1/document-categories             — Defaults + company categories
    POST   /api/v1/document-categories             — Company category
"""

import logging

from flask import Blueprint, g, jsonify, request, send_file

from app.middleware.permission_required import require_permission
from app.services import document_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import paginate_query

logger = logging.getLogger(__name__)

document_bp = Blueprint("document_bp", __name__, url_prefix="/api/v1")
register_service_error_handlers(document_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════════


@document_bp.route("/documents/upload", methods=["POST"])
@require_permission("documents.upload")
def upload():
    file_storage = request.files.get("file")
    if file_storage is None or not file_storage.filename:
        return api_error(E.VALIDATION_REQUIRED, "file is required")
    document = document_service.upload_document(
        g.company_id, file_storage, request.form.to_dict(), g.current_user.id,
    )
    return jsonify(document.to_dict()), 201


@document_bp.route("/documents", methods=["GET"])
@require_permission("documents.view")
def list_documents():
    q = document_service.list_documents(
        g.company_id,
        job_id=request.args.get("job_id", type=int),
        category_id=request.args.get("category_id", type=int),
        task_id=request.args.get("task_id", type=int),
        search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [d.to_dict() for d in items], "total": total})


@document_bp.route("/documents/<int:document_id>", methods=["GET"])
@require_permission("documents.view")
def get_document(document_id):
    return jsonify(document_service.get_document(g.company_id, document_id).to_dict())


@document_bp.route("/documents/<int:document_id>", methods=["PUT"])
@require_permission("documents.upload")
def update_document(document_id):
    data = request.get_json(silent=True) or {}
    return jsonify(document_service.update_document(g.company_id, document_id, data).to_dict())


@document_bp.route("/documents/<int:document_id>/download", methods=["GET"])
@require_permission("documents.view")
def download(document_id):
    document, path = document_service.prepare_download(
        g.company_id, document_id, g.current_user.id, request.remote_addr,
    )
    return send_file(
        path,
        mimetype=document.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=document.original_filename,
    )


@document_bp.route("/documents/<int:document_id>/preview", methods=["GET"])
@require_permission("documents.view")
def preview(document_id):
    document, path = document_service.prepare_download(
        g.company_id, document_id, g.current_user.id, request.remote_addr, action="view",
    )
    return send_file(
        path,
        mimetype=document.mime_type or "application/octet-stream",
        as_attachment=False,
        download_name=document.original_filename,
    )


@document_bp.route("/documents/<int:document_id>", methods=["DELETE"])
@require_permission("documents.manage")
def delete_document(document_id):
    document_service.delete_document(
        g.company_id, document_id, g.current_user.id, request.remote_addr,
    )
    return jsonify({"message": "Document deleted"}), 200


@document_bp.route("/documents/<int:document_id>/share", methods=["POST"])
@require_permission("documents.upload")
def share_document(document_id):
    result = document_service.share_document(
        g.company_id, document_id, g.current_user.id, request.remote_addr,
    )
    return jsonify(result), 201


@document_bp.route("/documents/<int:document_id>/access-log", methods=["GET"])
@require_permission("documents.manage")
def access_log(document_id):
    rows = document_service.get_access_log(g.company_id, document_id)
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})


# ═════════════════════════════════════════════════════════════════════════════
# Categories
# ═════════════════════════════════════════════════════════════════════════════


@document_bp.route("/document-categories", methods=["GET"])
@require_permission("documents.view")
def list_categories():
    rows = document_service.list_categories(g.company_id)
    return jsonify({"items": [c.to_dict() for c in rows], "total": len(rows)})


@document_bp.route("/document-categories", methods=["POST"])
@require_permission("documents.manage")
def create_category():
    data = request.get_json(silent=True) or {}
    if not str(data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    category = document_service.create_category(g.company_id, data)
    return jsonify(category.to_dict()), 201
