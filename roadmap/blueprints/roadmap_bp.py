"""
Roadmap Blueprint — business phase read model and lifecycle actions.

Endpoints (all under /api/v1/organizations/<org_id>):
  Roadmap:     GET  /roadmap
               POST /roadmap/generate
  Phase:       GET  /phases/<n>
               GET  /phases/<n>/activation-preview
               POST /phases/<n>/activate
               POST /phases/<n>/skip
               POST /phases/<n>/regenerate
               POST /phases/<n>/sync
               POST /phases/check-completion
  OKR gate:    GET  /okr-status
"""

from flask import Blueprint, jsonify, request

from roadmap.blueprints import register_error_handlers, request_actor, resolve_organization
from roadmap.services import phase_generation_service, phase_lifecycle, progression_service
from roadmap.utils.errors import E, api_error
from roadmap.utils.helpers import commit_or_rollback, require_json_fields

roadmap_bp = Blueprint(
    "roadmap", __name__, url_prefix="/api/v1/organizations/<int:org_id>",
)
register_error_handlers(roadmap_bp)


# ═════════════════════════════════════════════════════════════════════════
# Roadmap
# ═════════════════════════════════════════════════════════════════════════


@roadmap_bp.route("/roadmap", methods=["GET"])
def get_roadmap(org_id):
    resolve_organization(org_id)
    return jsonify(progression_service.get_roadmap(org_id))


@roadmap_bp.route("/roadmap/generate", methods=["POST"])
def generate_roadmap_route(org_id):
    """Generate the first roadmap of an organization (LLM call)."""
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    result = phase_generation_service.generate_roadmap(org_id, actor=request_actor(data))
    return jsonify(result), 201


@roadmap_bp.route("/okr-status", methods=["GET"])
def okr_status(org_id):
    resolve_organization(org_id)
    return jsonify(progression_service.get_okr_status(org_id))


# ═════════════════════════════════════════════════════════════════════════
# Phases
# ═════════════════════════════════════════════════════════════════════════


@roadmap_bp.route("/phases/<int:phase_number>", methods=["GET"])
def get_phase(org_id, phase_number):
    resolve_organization(org_id)
    return jsonify(progression_service.get_phase_detail(org_id, phase_number))


@roadmap_bp.route("/phases/<int:phase_number>/activation-preview", methods=["GET"])
def activation_preview(org_id, phase_number):
    resolve_organization(org_id)
    return jsonify(phase_lifecycle.preview_activation(org_id, phase_number))


@roadmap_bp.route("/phases/<int:phase_number>/activate", methods=["POST"])
def activate_phase(org_id, phase_number):
    """Activate a pending phase. Requires ``{"confirmed": true}`` after the preview."""
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    if data.get("confirmed") is not True:
        return api_error(
            E.VALIDATION_REQUIRED,
            "Activation must be confirmed; fetch the activation preview first",
            details={"missing": ["confirmed"]},
        )
    result = phase_lifecycle.activate_phase(org_id, phase_number, actor=request_actor(data))
    return jsonify(result)


@roadmap_bp.route("/phases/<int:phase_number>/skip", methods=["POST"])
def skip_phase(org_id, phase_number):
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    missing = require_json_fields(data, "reason")
    if missing:
        return api_error(E.VALIDATION_REQUIRED, "reason is required", details={"missing": missing})
    result = phase_lifecycle.skip_phase(
        org_id, phase_number, actor=request_actor(data), reason=data["reason"],
    )
    return jsonify(result)


@roadmap_bp.route("/phases/<int:phase_number>/regenerate", methods=["POST"])
def regenerate_phase_route(org_id, phase_number):
    """Replace phase content with generated content (LLM call, capped per phase)."""
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    result = phase_lifecycle.regenerate_phase(org_id, phase_number, actor=request_actor(data))
    return jsonify(result)


@roadmap_bp.route("/phases/<int:phase_number>/sync", methods=["POST"])
def sync_phase(org_id, phase_number):
    """Recompute a phase from the ledger and key results (repair endpoint)."""
    resolve_organization(org_id)
    phase = progression_service.sync_phase(org_id, phase_number)
    commit_or_rollback("BusinessPhase")
    return jsonify(phase.to_dict())


@roadmap_bp.route("/phases/check-completion", methods=["POST"])
def check_completion(org_id):
    resolve_organization(org_id)
    data = request.get_json(silent=True) or {}
    return jsonify(phase_lifecycle.check_phase_completion(org_id, actor=request_actor(data)))
