"""
Authorization outcomes raised by the resolver and the administrator.

Routes turn ``PermissionDenied`` and ``Forbidden`` into a ``success: false``
payload with HTTP 200 so the UI can render a message instead of an error toast.
"""


class AuthorizationError(Exception):
    """Base class for non-transport authorization failures."""

    code = "authorization_error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_payload(self) -> dict:
        return {
            "success": False,
            "code": self.code,
            "reason": self.reason,
            "error": self.message,
        }


class PermissionDenied(AuthorizationError):
    """The caller lacks the capability the action requires."""

    code = "insufficient_permission"

    def __init__(self, feature_key: str):
        super().__init__(f"Insufficient permissions: {feature_key} required", reason=feature_key)
        self.feature_key = feature_key


class Forbidden(AuthorizationError):
    """The caller holds the capability but the target is off limits."""

    code = "forbidden"

    TARGET_UNAVAILABLE = "target_unavailable"
    SUPER_ADMIN_TARGET = "super_admin_target"
    ROLE_NOT_EDITABLE = "role_not_editable"
    NO_ORGANIZATION = "no_organization"


class UnknownCapabilityError(ValueError):
    """A write named feature keys that are not in the active catalog."""

    def __init__(self, keys):
        self.keys = sorted(keys)
        super().__init__(f"Unknown or retired feature keys: {', '.join(self.keys)}")
