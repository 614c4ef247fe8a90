"""
Ledger Blueprint — task completions, key result check-ins and alerts.

Every write here re-syncs the affected phases before commit.

Endpoints (all under /api/v1/organizations/<org_id>):
  Tasks:        GET  /tasks?phase=<n>
                POST /tasks/<task_id>/completions
  Completions:  GET  /completions?phase=<n>&validated=true
                POST /completions/<id>/validate
                POST /completions/<id>/revoke
  Key results:  GET  /key-results/<id>/progress
                POST /key-results/<id>/check-ins
  Alerts:       GET  /alerts?unread=true
"""

from flask import Blueprint, jsonify, request

from roadmap.blueprints import paginate_query, register_error_handlers, request_actor, resolve_organization
from roadmap.models.alert import SmartAlert
from roadmap.models.task import Task
from roadmap.services import okr_store, task_ledger
from roadmap.utils.errors import E, api_error
from roadmap.utils.helpers import require_json_fields

ledger_bp = Blueprint(
    "ledger", __name__, url_prefix="/api/v1/organizations/<int:org_id>",
)
register_error_handlers(ledger_bp)


# ═════════════════════════════════════════════════════════════════════════
# Tasks & completions
# ═════════════════════════════════════════════════════════════════════════


@ledger_bp.route("/tasks", methods=["GET"])
def list_tasks(org_id):
    resolve_organization(org_id)
    query = Task.query_for_organization(org_id)
    phase = request.args.get("phase", type=int)
    if phase is not None:
        query = query.filter_by(phase=phase)
    items, total = paginate_query(query.order_by(Task.phase, Task.id))
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@ledger_bp.route("/tasks/<int:task_id>/completions", methods=["POST"])
def record_completion(org_id, task_id):
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    missing = require_json_fields(data, "user_id")
    if missing:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required", details={"missing": missing})
    completion, created = task_ledger.record_completion(org_id, task_id, data["user_id"])
    return jsonify(completion.to_dict()), 201 if created else 200


@ledger_bp.route("/completions", methods=["GET"])
def list_completions(org_id):
    resolve_organization(org_id)
    validated_only = request.args.get("validated", "").lower() in ("1", "true", "yes")
    completions = task_ledger.list_completions(
        org_id, phase=request.args.get("phase", type=int), validated_only=validated_only,
    )
    return jsonify({"items": [c.to_dict() for c in completions], "total": len(completions)})


@ledger_bp.route("/completions/<int:completion_id>/validate", methods=["POST"])
def validate_completion(org_id, completion_id):
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    result = task_ledger.validate_completion(org_id, completion_id, validator=request_actor(data))
    return jsonify(result)


@ledger_bp.route("/completions/<int:completion_id>/revoke", methods=["POST"])
def revoke_completion(org_id, completion_id):
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    result = task_ledger.revoke_validation(org_id, completion_id, actor=request_actor(data))
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Key results
# ═════════════════════════════════════════════════════════════════════════


@ledger_bp.route("/key-results/<int:kr_id>/progress", methods=["GET"])
def key_result_progress(org_id, kr_id):
    resolve_organization(org_id)
    return jsonify(okr_store.get_objective_progress(kr_id, organization_id=org_id))


@ledger_bp.route("/key-results/<int:kr_id>/check-ins", methods=["POST"])
def key_result_check_in(org_id, kr_id):
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    if data.get("value") is None:
        return api_error(E.VALIDATION_REQUIRED, "value is required", details={"missing": ["value"]})
    result = okr_store.check_in(
        org_id, kr_id, data["value"], actor=request_actor(data), notes=data.get("notes"),
    )
    return jsonify(result), 201


# ═════════════════════════════════════════════════════════════════════════
# Alerts
# ═════════════════════════════════════════════════════════════════════════


@ledger_bp.route("/alerts", methods=["GET"])
def list_alerts(org_id):
    resolve_organization(org_id)
    query = SmartAlert.query_for_organization(org_id)
    if request.args.get("unread", "").lower() in ("1", "true", "yes"):
        query = query.filter_by(is_read=False)
    items, total = paginate_query(query.order_by(SmartAlert.id.desc()))
    return jsonify({"items": [a.to_dict() for a in items], "total": total})
