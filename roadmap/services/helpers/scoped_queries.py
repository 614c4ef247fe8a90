"""
Organization-scoped query helpers.

Every get-by-id in the engine MUST use these helpers instead of
db.session.get(Model, pk). Direct .get() calls bypass organization
isolation, which is the security boundary of this multi-tenant service.

Usage:
    # Scope by organization_id (every OrganizationModel subclass)
    task = get_scoped(Task, task_id, organization_id=organization_id)

    # Scope by objective_id (key results of one OKR objective)
    kr = get_scoped(KeyResult, kr_id, objective_id=objective_id)

    # When None is an acceptable outcome (optional FK lookups)
    kr = get_scoped_or_none(KeyResult, task.key_result_id, organization_id=organization_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing
    rather than silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import select

from roadmap.core.exceptions import NotFoundError
from roadmap.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    objective_id: int | None = None,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-organization access is indistinguishable from a missing record:
    both raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        organization_id: Scope by organization_id column.
        objective_id: Scope by objective_id column.

    Returns:
        The model instance if found within the given scope.

    Raises:
        ValueError: If no scope parameter is provided, OR if a provided
                    scope kwarg references a column the model lacks.
        NotFoundError: If the entity does not exist OR belongs to a different
                       scope. The two cases are intentionally indistinguishable.
    """
    provided_scopes: dict[str, int] = {
        "organization_id": organization_id,
        "objective_id": objective_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(organization_id or objective_id). "
            "Unscoped lookups are forbidden — they bypass organization isolation."
        )

    missing_fields = [field for field in provided_scopes if not hasattr(model, field)]
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {sorted(missing_fields)} "
            f"do not exist as columns on {model.__name__}. "
            "Refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise NotFoundError(
            resource=model.__name__, resource_id=pk, organization_id=organization_id,
        )

    return result


def get_scoped_or_none(
    model,
    pk: int | None,
    *,
    organization_id: int | None = None,
    objective_id: int | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    A ``pk`` of None short-circuits to None (optional FK columns).
    Scope enforcement still applies.
    """
    if pk is None:
        return None
    try:
        return get_scoped(
            model,
            pk,
            organization_id=organization_id,
            objective_id=objective_id,
        )
    except NotFoundError:
        return None
