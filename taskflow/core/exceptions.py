"""
Engine-wide exception hierarchy.

Services raise these types; ``taskflow.register_error_handlers`` maps each
one to an HTTP status exactly once so every blueprint answers the same way.

Usage:
    from taskflow.core.exceptions import NotFoundError, ForbiddenError

    raise NotFoundError(resource="Task", resource_id=task_id)
    raise ForbiddenError("changeStatus")
"""


class UnauthenticatedError(Exception):
    """No actor is attached to the request (or the actor is inactive).

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Capability denial, privilege-escalation denial or empty view scope.

    Maps to HTTP 403.

    Args:
        capability: The capability or guard that denied the action.
        message: Optional human-readable override.
    """

    def __init__(self, capability: str, message: str | None = None) -> None:
        self.capability = capability
        super().__init__(message or f"Permission denied: {capability}")


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the actor's view.

    Security note: used for BOTH genuinely missing records AND records the
    actor is not allowed to see.  A 403 would confirm the record exists;
    a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Task", "User").
        resource_id: The key that was looked up.  Logged, never echoed.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Target status is not one of the closed set of task states.

    Maps to HTTP 400.
    """

    def __init__(self, status: str | None) -> None:
        self.status = status
        super().__init__(f"Invalid status: {status!r}")


class ValidationError(Exception):
    """Well-formed input that violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConfigurationMissingError(Exception):
    """No permission profile could be resolved.

    The resolver catches this internally and falls back to the most
    restrictive profile; it is never surfaced to callers.
    """

    def __init__(self, role: str | None) -> None:
        self.role = role
        super().__init__(f"No permission profile for role {role!r}")


class ConflictError(Exception):
    """Write would violate a uniqueness rule (e.g. duplicate email).

    Maps to HTTP 409.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
