"""
Time Blueprint — check-in/out, breaks, time entries and approvals.

Endpoints:
    POST   /api/v1/time/check-in                 — {worker_id?, job_id, latitude?, longitude?, ...}
    POST   /api/v1/time/check-out                — {worker_id?, check_in_id?, ...}
    GET    /api/v1/time/status                   — ?worker_id= (open check-in / break)

    POST   /api/v1/time/breaks                   — {time_entry_id, break_type, is_paid}
    POST   /api/v1/time/breaks/<id>/end
    GET    /api/v1/time/entries/<id>/breaks

    GET    /api/v1/time/entries                  — ?worker_id=&job_id=&status=&date_from=&date_to=
    POST   /api/v1/time/entries                  — Manual entry
    GET    /api/v1/time/entries/<id>
    PUT    /api/v1/time/entries/<id>
    DELETE /api/v1/time/entries/<id>

    GET    /api/v1/time/approvals                — ?time_entry_id=
    POST   /api/v1/time/approvals                — Approve / reject one entry
    POST   /api/v1/time/approvals/bulk           — Many entries, per-entry errors

``worker_id`` defaults to the worker record linked to the caller. Users with
the ``worker`` role can only act on their own record.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_permission
from app.services import time_tracking_service as svc
from app.services import worker_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import paginate_query, parse_date

logger = logging.getLogger(__name__)

time_bp = Blueprint("time_bp", __name__, url_prefix="/api/v1/time")
register_service_error_handlers(time_bp)


def _body():
    return request.get_json(silent=True) or {}


def _resolve_worker_id(raw):
    """Return (worker_id, error_response)."""
    own = worker_service.get_worker_for_user(g.company_id, g.current_user.id)
    if raw in (None, ""):
        if own is None:
            return None, api_error(E.VALIDATION_REQUIRED, "worker_id is required")
        return own.id, None
    try:
        worker_id = int(raw)
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "worker_id must be an integer")
    if g.current_user.role == "worker" and (own is None or own.id != worker_id):
        return None, api_error(E.FORBIDDEN, "Workers can only track their own time")
    return worker_id, None


# ═════════════════════════════════════════════════════════════════════════════
# Check-in / check-out
# ═════════════════════════════════════════════════════════════════════════════


@time_bp.route("/check-in", methods=["POST"])
@require_permission("time.track")
def check_in():
    data = _body()
    if data.get("job_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "job_id is required")
    worker_id, err = _resolve_worker_id(data.get("worker_id"))
    if err:
        return err
    check, entry = svc.check_in(g.company_id, worker_id, data["job_id"], data)
    return jsonify({"check_in": check.to_dict(), "time_entry": entry.to_dict()}), 201


@time_bp.route("/check-out", methods=["POST"])
@require_permission("time.track")
def check_out():
    data = _body()
    worker_id, err = _resolve_worker_id(data.get("worker_id"))
    if err:
        return err
    result = svc.check_out(g.company_id, worker_id, data.get("check_in_id"), data)
    return jsonify(result)


@time_bp.route("/status", methods=["GET"])
@require_permission("time.track")
def status():
    worker_id, err = _resolve_worker_id(request.args.get("worker_id"))
    if err:
        return err
    return jsonify(svc.current_status(g.company_id, worker_id))


# ═════════════════════════════════════════════════════════════════════════════
# Breaks
# ═════════════════════════════════════════════════════════════════════════════


@time_bp.route("/breaks", methods=["POST"])
@require_permission("time.track")
def start_break():
    data = _body()
    if data.get("time_entry_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "time_entry_id is required")
    brk = svc.start_break(
        g.company_id,
        data["time_entry_id"],
        data.get("worker_id"),
        break_type=data.get("break_type") or "general",
        is_paid=bool(data.get("is_paid", False)),
        notes=data.get("notes"),
    )
    return jsonify(brk.to_dict()), 201


@time_bp.route("/breaks/<int:break_id>/end", methods=["POST"])
@require_permission("time.track")
def end_break(break_id):
    return jsonify(svc.end_break(g.company_id, break_id).to_dict())


@time_bp.route("/entries/<int:entry_id>/breaks", methods=["GET"])
@require_permission("time.track")
def list_breaks(entry_id):
    rows = svc.list_breaks(g.company_id, entry_id)
    return jsonify({"items": [b.to_dict() for b in rows], "total": len(rows)})


# ═════════════════════════════════════════════════════════════════════════════
# Time entries
# ═════════════════════════════════════════════════════════════════════════════


@time_bp.route("/entries", methods=["GET"])
@require_permission("time.track")
def list_entries():
    worker_id = request.args.get("worker_id", type=int)
    if g.current_user.role == "worker":
        worker_id, err = _resolve_worker_id(worker_id)
        if err:
            return err
    q = svc.list_entries(
        g.company_id,
        worker_id=worker_id,
        job_id=request.args.get("job_id", type=int),
        status=request.args.get("status"),
        date_from=parse_date(request.args.get("date_from")),
        date_to=parse_date(request.args.get("date_to")),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [e.to_dict() for e in items], "total": total})


@time_bp.route("/entries", methods=["POST"])
@require_permission("time.track")
def create_entry():
    data = _body()
    if data.get("job_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "job_id is required")
    if not data.get("start_time"):
        return api_error(E.VALIDATION_REQUIRED, "start_time is required")
    worker_id, err = _resolve_worker_id(data.get("worker_id"))
    if err:
        return err
    entry = svc.create_entry(g.company_id, {**data, "worker_id": worker_id})
    return jsonify(entry.to_dict()), 201


@time_bp.route("/entries/<int:entry_id>", methods=["GET"])
@require_permission("time.track")
def get_entry(entry_id):
    return jsonify(svc.get_entry(g.company_id, entry_id).to_dict())


@time_bp.route("/entries/<int:entry_id>", methods=["PUT"])
@require_permission("time.track")
def update_entry(entry_id):
    return jsonify(svc.update_entry(g.company_id, entry_id, _body()).to_dict())


@time_bp.route("/entries/<int:entry_id>", methods=["DELETE"])
@require_permission("time.track")
def delete_entry(entry_id):
    svc.delete_entry(g.company_id, entry_id)
    return jsonify({"message": "Time entry deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Approvals
# ═════════════════════════════════════════════════════════════════════════════


@time_bp.route("/approvals", methods=["GET"])
@require_permission("time.approve")
def list_approvals():
    q = svc.list_approvals(g.company_id, request.args.get("time_entry_id", type=int))
    items, total = paginate_query(q)
    return jsonify({"items": [a.to_dict() for a in items], "total": total})


@time_bp.route("/approvals", methods=["POST"])
@require_permission("time.approve")
def approve():
    data = _body()
    if data.get("time_entry_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "time_entry_id is required")
    if not data.get("approval_status"):
        return api_error(E.VALIDATION_REQUIRED, "approval_status is required")
    approval, entry = svc.approve_entry(
        g.company_id,
        data["time_entry_id"],
        data["approval_status"],
        g.current_user.id,
        notes=data.get("notes"),
        approved_start_time=data.get("approved_start_time"),
        approved_end_time=data.get("approved_end_time"),
    )
    return jsonify({"approval": approval.to_dict(), "time_entry": entry.to_dict()}), 201


@time_bp.route("/approvals/bulk", methods=["POST"])
@require_permission("time.approve")
def bulk_approve():
    data = _body()
    ids = data.get("time_entry_ids")
    if not isinstance(ids, list) or not ids:
        return api_error(E.VALIDATION_REQUIRED, "time_entry_ids must be a non-empty list")
    if not data.get("approval_status"):
        return api_error(E.VALIDATION_REQUIRED, "approval_status is required")
    result = svc.bulk_approve(
        g.company_id, ids, data["approval_status"], g.current_user.id, data.get("notes"),
    )
    logger.info(
        "Bulk %s by user %s: %d processed, %d failed",
        data["approval_status"], g.current_user.id, len(result["processed"]), len(result["errors"]),
    )
    return jsonify(result)
