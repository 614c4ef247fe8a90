"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in roadmap/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from roadmap.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Roadmap generation / regeneration call the LLM gateway
GENERATION_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Roadmap blueprint:  10/minute on generate + regenerate, 60/minute otherwise
        - Ledger blueprint:   60/minute
        - Health check:       exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for endpoint in ("roadmap.generate_roadmap_route", "roadmap.regenerate_phase_route"):
        view = app.view_functions.get(endpoint)
        if view:
            app.view_functions[endpoint] = limiter.limit(GENERATION_LIMIT)(view)

    for bp_name in ("roadmap", "ledger"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — generation: %s, write: %s", GENERATION_LIMIT, WRITE_LIMIT,
    )
