"""
Roadmap-wide exception hierarchy.

Services raise these; blueprints register one handler per type and get
consistent HTTP status codes everywhere (see ``roadmap.blueprints.register_error_handlers``).

Usage:
    from roadmap.core.exceptions import NotFoundError, PreconditionError

    raise NotFoundError(resource="BusinessPhase", resource_id=3, organization_id=7)
    raise PreconditionError("No regenerations remaining", details={"regeneration_count": 2})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-organization access
    attempts, so a caller cannot probe for another organization's records.

    Args:
        resource: Human-readable model/entity name (e.g. "BusinessPhase").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional — the scope that was enforced.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown for API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PreconditionError(ValidationError):
    """Raised when an operation is invoked in a state that forbids it.

    Examples: activating a phase that is not ``pending``; regenerating a
    phase that has used up its regenerations. No state is mutated.
    """


class ConflictError(Exception):
    """Raised when a concurrent writer already changed the row being updated.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose expected value no longer holds.
        value: The stale value the caller relied on.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} {field}={value!r} was modified concurrently"
        super().__init__(msg)


class GenerationFailure(Exception):
    """Raised when the content generator fails or returns malformed content.

    Persisted phase content and regeneration counters are left untouched.
    Maps to HTTP 502.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class DataInconsistencyWarning(UserWarning):
    """Signal for incomplete setup, e.g. a phase with no tagged tasks.

    Never raised: progress defaults to 0 and the condition is logged.
    """
