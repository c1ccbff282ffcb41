"""
Engine-wide exception hierarchy.

Services raise these; blueprints map them to HTTP responses once through
``app.utils.errors.register_error_handlers``. Services never build HTTP
responses themselves.

Usage:
    from app.core.exceptions import ForbiddenError, InvalidStateError

    raise ForbiddenError("Only program owners can unblock units")
    raise InvalidStateError("Unit is not blocked")
"""


class UnauthenticatedError(Exception):
    """No credential, or a credential that did not resolve to an active user.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """The principal is known but may not perform this action.

    Covers missing role authority, cross-tenant access, separation-of-duties
    and criticality authority gaps. The message always names the rule that
    was violated.

    Maps to HTTP 403.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is archived.

    Cross-tenant probes raise ForbiddenError instead, after the row has been
    found; a missing row is a 404 for every caller alike.

    Args:
        resource: Human-readable model name (e.g. "Unit", "UnitProof").
        resource_id: The PK that was looked up.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidStateError(Exception):
    """The resource is not in a state that allows the operation.

    E.g. unblocking a unit that is not blocked, confirming an already
    confirmed unit, deciding an already decided proof.

    Maps to HTTP 409.
    """


class ValidationError(Exception):
    """Raised when input is well-formed JSON but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class RequirementConfigError(ValidationError):
    """A unit's evidence requirement configuration cannot be evaluated.

    Status computation fails closed on this error: the stored status is left
    untouched rather than being promoted.
    """


class TransientError(Exception):
    """A failure that the next scheduled run is expected to clear.

    Raised for optimistic-concurrency conflicts during the sweep and for
    delivery transport errors. Sweeps catch and count it; it is never
    surfaced as a sweep-wide failure.
    """
