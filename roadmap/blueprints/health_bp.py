"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed system health (DB, LLM provider)
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from roadmap.ai.gateway import LLMGateway
from roadmap.ai.prompt_registry import PromptRegistry
from roadmap.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Content generator provider ───────────────────────────────────
    model = current_app.config.get("LLM_DEFAULT_CHAT_MODEL", "local-stub")
    provider = LLMGateway.PROVIDER_MAP.get(model, "local")
    key_env = {"anthropic": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY"}.get(provider)
    if key_env and not os.getenv(key_env):
        if current_app.config.get("LLM_ALLOW_STUB_FALLBACK", True):
            # Generation still answers through the local stub; not fatal
            checks["llm"] = {"status": "degraded", "model": model, "detail": f"{key_env} not set"}
        else:
            checks["llm"] = {"status": "error", "model": model, "detail": f"{key_env} not set"}
            overall = False
    else:
        checks["llm"] = {"status": "ok", "model": model, "provider": provider}

    # ── Prompt templates ─────────────────────────────────────────────
    templates = PromptRegistry().list_templates()
    missing = sorted({"phase_roadmap", "phase_regenerate"} - set(templates))
    if missing:
        checks["prompts"] = {"status": "error", "missing": missing}
        overall = False
    else:
        checks["prompts"] = {"status": "ok", "templates": templates}

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Business Roadmap Engine",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
