"""
Authorization error taxonomy.

Caller-input errors (UnknownRole, BadRequest) propagate immediately.
Unauthorized and Forbidden are expected outcomes and are not application errors.
StoreFault is always fatal to the current operation.
"""


class AuthorizationError(Exception):
    """Base class for all authorization core errors."""


class UnknownRole(AuthorizationError):
    """Requested role has no catalog definition applicable to the owner's kind."""

    def __init__(self, role_name: str, owner_kind: str | None, owner_id: str | None = None):
        self.role_name = role_name
        self.owner_kind = owner_kind
        self.owner_id = owner_id
        super().__init__(
            f'Unknown role "{role_name}" for owner kind "{owner_kind}"'
            + (f' ("{owner_id}")' if owner_id else "")
        )


class Unauthorized(AuthorizationError):
    """Credential missing, malformed, expired, revoked, or signature-invalid."""

    def __init__(self, reason: str | None = None):
        # reason is internal only, never sent to the client
        self.reason = reason
        super().__init__("Unauthorized")


class Forbidden(AuthorizationError):
    """Principal authenticated but not permitted."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__("Forbidden")


class BadRequest(AuthorizationError):
    """A required request value (e.g. target organization id) is missing."""


class StoreFault(AuthorizationError):
    """Backing store unavailable, timed out, or otherwise failed."""

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store failure during {operation}: {cause!r}")


class PermissionConfigError(AuthorizationError):
    """Evaluator-internal fault: unknown action or misconfigured requirement."""
