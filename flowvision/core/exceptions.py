"""
Platform-wide exception hierarchy.

Services raise these types; the app factory registers one handler per type
so every blueprint gets the same HTTP status codes.

Usage:
    from flowvision.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Initiative", resource_id=42)
    raise ValidationError("Title is required", details={"title": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for both genuinely missing records and cross-tenant lookups, so a
    caller cannot discover resources in other tenants.

    Args:
        resource: Human-readable entity name (e.g. "Initiative", "AIOperation").
        resource_id: The key that was looked up. Logged, not echoed in HTTP bodies.
        tenant_id: Optional scope that was enforced. Debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails schema or business-rule validation.

    Maps to HTTP 422 in the error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field paths;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique key. Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class UnauthorizedError(Exception):
    """Raised when the authenticated user lacks permission for an action.

    Missing credentials are answered with 401 by the auth middleware before
    any service runs; this type covers insufficient permission inside the
    service layer and maps to HTTP 403.
    """

    def __init__(self, message: str = "Permission denied", required_role: str | None = None) -> None:
        self.required_role = required_role
        super().__init__(message)


class ProviderError(Exception):
    """Raised when the AI provider call fails after all attempts. Maps to HTTP 502.

    Args:
        message: Failure description (never includes credentials).
        provider: Provider name that failed (e.g. "openai").
        model: Model identifier that was requested.
    """

    def __init__(self, message: str, provider: str | None = None, model: str | None = None) -> None:
        self.provider = provider
        self.model = model
        super().__init__(message)


class TransientError(Exception):
    """Raised for recoverable infrastructure hiccups (e.g. a DB read failing).

    Callers may retry, or use a fallback default when they supplied one.
    Maps to HTTP 503.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.cause = cause
        super().__init__(message)
