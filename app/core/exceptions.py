"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once and
map them to consistent HTTP status codes.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Job", resource_id=42)
    raise ValidationError("Invalid response for yes_no question", details={"response_value": "maybe"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-company access
    attempts, so a 404 never confirms that another company's row exists.

    Args:
        resource: Human-readable entity name (e.g. "Job", "StageQuestion").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        company_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        company_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.company_id = company_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if company_id is not None:
            msg += f" (company={company_id})"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value or clash with current state.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDeniedError(Exception):
    """Raised when the acting user lacks the role a service operation requires.

    Maps to HTTP 403.
    """


class GoneError(Exception):
    """Raised when a share link existed but is no longer valid (expired).

    Maps to HTTP 410.
    """


class BadRequestError(ValidationError):
    """A rule violation reported as HTTP 400 rather than 422.

    Used where a request is refused because of the caller's current state,
    e.g. checking in twice on the same day or repeating a job's status.
    """
