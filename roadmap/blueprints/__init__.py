"""
Business Roadmap Engine
Blueprint registry and shared request helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from roadmap.core.exceptions import ConflictError, GenerationFailure, NotFoundError, PreconditionError, ValidationError
from roadmap.models import db
from roadmap.models.organization import Organization
from roadmap.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def resolve_organization(org_id: int) -> Organization:
    """Active organization or NotFoundError (inactive tenants are invisible)."""
    org = db.session.get(Organization, org_id)
    if org is None or not org.is_active:
        raise NotFoundError(resource="Organization", resource_id=org_id)
    return org


def request_actor(data: dict | None = None) -> str:
    """Who performs the call: body ``actor``, then the X-Actor header."""
    actor = (data or {}).get("actor") or request.headers.get("X-Actor")
    return str(actor).strip()[:150] if actor else "system"


def register_error_handlers(bp):
    """Map service exceptions to standard error responses on *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(PreconditionError)
    def _handle_precondition(error: PreconditionError):
        return api_error(E.PRECONDITION, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(
            E.CONFLICT_STATE,
            "The roadmap was modified concurrently; reload and retry",
            details={"resource": error.resource, "field": error.field},
        )

    @bp.errorhandler(GenerationFailure)
    def _handle_generation(error: GenerationFailure):
        return api_error(E.GENERATION_FAILED, str(error), details=error.details)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
