"""
Platform-wide exception hierarchy.

Services raise these; ``create_app`` registers one handler per type so every
blueprint gets the same status code and JSON body.

Usage:
    from agileflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Task", resource_id=task_id)
    raise ValidationError("title is required", details={"title": "required"})
"""


class AgileFlowError(Exception):
    """Base class. ``status_code`` and ``code`` drive the HTTP rendering."""

    status_code = 500
    code = "ERR_INTERNAL"

    def __init__(self, message: str = "", details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(AgileFlowError):
    """Missing, malformed, expired or revoked credentials (401)."""

    status_code = 401
    code = "ERR_UNAUTHENTICATED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(AgileFlowError):
    """Authenticated but the role may not perform the action (403)."""

    status_code = 403
    code = "ERR_FORBIDDEN"

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message)


class NotFoundError(AgileFlowError):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND records outside the caller's
    tenant or project scope, so the response never confirms existence.

    Args:
        resource: Entity name (e.g. "Task", "Project").
        resource_id: The PK that was looked up. Logged, not rendered.
        tenant_id: The scope that was enforced. Logged, not rendered.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        super().__init__(f"{resource} not found")

    def __str__(self) -> str:
        msg = self.resource
        if self.resource_id is not None:
            msg += f" id={self.resource_id}"
        msg += " not found"
        if self.tenant_id is not None:
            msg += f" (tenant={self.tenant_id})"
        return msg


class ValidationError(AgileFlowError):
    """Input failed validation. Raised before any write (400).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    status_code = 400
    code = "ERR_VALIDATION_INVALID"


class QuotaExceededError(AgileFlowError):
    """The tenant's plan limit for ``resource`` is reached (400)."""

    status_code = 400
    code = "ERR_QUOTA_EXCEEDED"

    def __init__(self, resource, limit: int | None = None) -> None:
        self.resource = resource
        self.limit = limit
        name = getattr(resource, "value", resource)
        super().__init__(
            f"Plan limit reached for {name} ({limit}). Upgrade your plan.",
            details={"resource": name, "limit": limit},
        )


class ConflictError(AgileFlowError):
    """Raised when an operation would duplicate a unique value (409).

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    status_code = 409
    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")
