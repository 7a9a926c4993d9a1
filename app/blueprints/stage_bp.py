"""
Stage Blueprint — per-company workflow configuration and stage reports.

Endpoints (stages.configure unless noted):
    GET    /api/v1/stages                                   — List (jobs.view)
    POST   /api/v1/stages
    GET    /api/v1/stages/<sid>                             — Detail + children
    PUT    /api/v1/stages/<sid>
    DELETE /api/v1/stages/<sid>
    POST   /api/v1/stages/setup-defaults                    — Seed default workflow (?reset=true)

    Questions:     /api/v1/stages/<sid>/questions[/<qid>]   + PUT .../questions/reorder
    Transitions:   /api/v1/stages/<sid>/transitions[/<tid>]
    Templates:     /api/v1/stages/<sid>/task-templates[/<tid>]

    Reports (reports.view):
        GET /api/v1/stages/reports/performance              — ?date_from=&date_to=
        GET /api/v1/stages/reports/sla-violations
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.permission_required import require_permission
from app.services import stage_config_service as svc
from app.services import stage_report_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

stage_bp = Blueprint("stage_bp", __name__, url_prefix="/api/v1/stages")
register_service_error_handlers(stage_bp)


def _body():
    return request.get_json(silent=True) or {}


def _listing(rows):
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})


# ═════════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("", methods=["GET"])
@require_permission("jobs.view")
def list_stages():
    include_inactive = request.args.get("include_inactive", "true").lower() != "false"
    return _listing(svc.list_stages(g.company_id, include_inactive=include_inactive))


@stage_bp.route("", methods=["POST"])
@require_permission("stages.configure")
def create_stage():
    data = _body()
    if not str(data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    stage = svc.create_stage(g.company_id, data)
    return jsonify(stage.to_dict()), 201


@stage_bp.route("/<int:stage_id>", methods=["GET"])
@require_permission("jobs.view")
def get_stage(stage_id):
    return jsonify(svc.get_stage(g.company_id, stage_id).to_dict(include_children=True))


@stage_bp.route("/<int:stage_id>", methods=["PUT"])
@require_permission("stages.configure")
def update_stage(stage_id):
    return jsonify(svc.update_stage(g.company_id, stage_id, _body()).to_dict())


@stage_bp.route("/<int:stage_id>", methods=["DELETE"])
@require_permission("stages.configure")
def delete_stage(stage_id):
    svc.delete_stage(g.company_id, stage_id)
    return jsonify({"message": "Stage deleted"}), 200


@stage_bp.route("/setup-defaults", methods=["POST"])
@require_permission("stages.configure")
def setup_defaults():
    reset = request.args.get("reset", "false").lower() == "true" or bool(_body().get("reset"))
    result = svc.setup_default_stages(g.company_id, reset=reset)
    logger.info("Default stages set up for company %s (reset=%s)", g.company_id, reset)
    return jsonify(result), 201


# ═════════════════════════════════════════════════════════════════════════════
# Questions
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/<int:stage_id>/questions", methods=["GET"])
@require_permission("jobs.view")
def list_questions(stage_id):
    return _listing(svc.list_questions(g.company_id, stage_id))


@stage_bp.route("/<int:stage_id>/questions", methods=["POST"])
@require_permission("stages.configure")
def create_question(stage_id):
    data = _body()
    if not str(data.get("question_text") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "question_text is required")
    return jsonify(svc.create_question(g.company_id, stage_id, data).to_dict()), 201


@stage_bp.route("/<int:stage_id>/questions/reorder", methods=["PUT"])
@require_permission("stages.configure")
def reorder_questions(stage_id):
    rows = svc.reorder_questions(g.company_id, stage_id, _body().get("question_ids"))
    return _listing(rows)


@stage_bp.route("/<int:stage_id>/questions/<int:question_id>", methods=["GET"])
@require_permission("jobs.view")
def get_question(stage_id, question_id):
    return jsonify(svc.get_question(g.company_id, stage_id, question_id).to_dict())


@stage_bp.route("/<int:stage_id>/questions/<int:question_id>", methods=["PUT"])
@require_permission("stages.configure")
def update_question(stage_id, question_id):
    return jsonify(svc.update_question(g.company_id, stage_id, question_id, _body()).to_dict())


@stage_bp.route("/<int:stage_id>/questions/<int:question_id>", methods=["DELETE"])
@require_permission("stages.configure")
def delete_question(stage_id, question_id):
    svc.delete_question(g.company_id, stage_id, question_id)
    return jsonify({"message": "Question deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/<int:stage_id>/transitions", methods=["GET"])
@require_permission("jobs.view")
def list_transitions(stage_id):
    return _listing(svc.list_transitions(g.company_id, stage_id))


@stage_bp.route("/<int:stage_id>/transitions", methods=["POST"])
@require_permission("stages.configure")
def create_transition(stage_id):
    data = _body()
    if data.get("to_stage_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "to_stage_id is required")
    return jsonify(svc.create_transition(g.company_id, stage_id, data).to_dict()), 201


@stage_bp.route("/<int:stage_id>/transitions/<int:transition_id>", methods=["GET"])
@require_permission("jobs.view")
def get_transition(stage_id, transition_id):
    return jsonify(svc.get_transition(g.company_id, stage_id, transition_id).to_dict())


@stage_bp.route("/<int:stage_id>/transitions/<int:transition_id>", methods=["PUT"])
@require_permission("stages.configure")
def update_transition(stage_id, transition_id):
    return jsonify(svc.update_transition(g.company_id, stage_id, transition_id, _body()).to_dict())


@stage_bp.route("/<int:stage_id>/transitions/<int:transition_id>", methods=["DELETE"])
@require_permission("stages.configure")
def delete_transition(stage_id, transition_id):
    svc.delete_transition(g.company_id, stage_id, transition_id)
    return jsonify({"message": "Transition deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Task templates
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/<int:stage_id>/task-templates", methods=["GET"])
@require_permission("jobs.view")
def list_templates(stage_id):
    return _listing(svc.list_templates(g.company_id, stage_id))


@stage_bp.route("/<int:stage_id>/task-templates", methods=["POST"])
@require_permission("stages.configure")
def create_template(stage_id):
    data = _body()
    if not str(data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    return jsonify(svc.create_template(g.company_id, stage_id, data).to_dict()), 201


@stage_bp.route("/<int:stage_id>/task-templates/<int:template_id>", methods=["GET"])
@require_permission("jobs.view")
def get_template(stage_id, template_id):
    return jsonify(svc.get_template(g.company_id, stage_id, template_id).to_dict())


@stage_bp.route("/<int:stage_id>/task-templates/<int:template_id>", methods=["PUT"])
@require_permission("stages.configure")
def update_template(stage_id, template_id):
    return jsonify(svc.update_template(g.company_id, stage_id, template_id, _body()).to_dict())


@stage_bp.route("/<int:stage_id>/task-templates/<int:template_id>", methods=["DELETE"])
@require_permission("stages.configure")
def delete_template(stage_id, template_id):
    svc.delete_template(g.company_id, stage_id, template_id)
    return jsonify({"message": "Task template deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Reports
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/reports/performance", methods=["GET"])
@require_permission("reports.view")
def performance_report():
    date_from = parse_date(request.args.get("date_from"))
    date_to = parse_date(request.args.get("date_to"))
    if date_from and date_to and date_from > date_to:
        return api_error(E.VALIDATION_INVALID, "date_from must not be after date_to")
    rows = stage_report_service.get_stage_performance_report(g.company_id, date_from, date_to)
    return jsonify({"items": rows, "total": len(rows)})


@stage_bp.route("/reports/sla-violations", methods=["GET"])
@require_permission("reports.view")
def sla_violations():
    rows = stage_report_service.check_sla_violations(g.company_id)
    return jsonify({"items": rows, "total": len(rows)})
