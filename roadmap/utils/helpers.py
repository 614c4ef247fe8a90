"""Shared request-parsing and persistence helpers for blueprints and services."""
import logging

from roadmap.core.exceptions import ConflictError
from roadmap.models import db

logger = logging.getLogger(__name__)


def require_json_fields(data: dict, *fields: str) -> list[str]:
    """Return the subset of *fields* that are missing or blank in *data*."""
    missing = []
    for name in fields:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def _write_or_rollback(write, verb: str, resource: str):
    from sqlalchemy.orm.exc import StaleDataError

    try:
        write()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification on %s: %s", verb, exc)
        raise ConflictError(resource, "version") from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on %s", verb)
        raise


def commit_or_rollback(resource: str = "BusinessPhase"):
    """Commit the current session; roll back and re-raise on failure.

    StaleDataError (a version-column mismatch) becomes ConflictError so that
    blueprints map it to HTTP 409. Everything else propagates unchanged after
    the rollback so no half-applied unit of work stays in the session.
    """
    _write_or_rollback(db.session.commit, "commit", resource)


def flush_or_rollback(resource: str = "BusinessPhase"):
    """Flush pending changes with the same conflict mapping as commit_or_rollback."""
    _write_or_rollback(db.session.flush, "flush", resource)
