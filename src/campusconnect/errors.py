"""
Campus Connect Error Taxonomy

Every failure raised by the realtime core carries a stable ``reason`` string
so callers can reject a request with a categorized message instead of
crashing the session.
"""

from typing import Optional


class CampusError(Exception):
    """Base class for recoverable Campus Connect errors."""

    reason: str = "error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.reason)


class NotAuthenticated(CampusError):
    """Raised when no actor is bound to the session for a protected action."""

    reason = "not_authenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDenied(CampusError):
    """Raised when the authorization engine returns deny."""

    reason = "permission_denied"

    def __init__(self, role: Optional[str], action: str, resource_kind: str):
        self.role = role
        self.action = action
        self.resource_kind = resource_kind
        super().__init__(f"Role {role!r} may not {action} {resource_kind}")


class PersistenceFailure(CampusError):
    """Raised when a record store write fails. Nothing was written."""

    reason = "persistence_failure"


class RecordNotFound(CampusError):
    """Raised when an operation targets a record that does not exist."""

    reason = "not_found"

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection}/{record_id} not found")


class ChannelError(CampusError):
    """Raised when the fan-out channel cannot accept a broadcast."""

    reason = "channel_unavailable"


class AccountError(CampusError):
    """Raised on failed registration or login."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


__all__ = [
    "CampusError",
    "NotAuthenticated",
    "PermissionDenied",
    "PersistenceFailure",
    "RecordNotFound",
    "ChannelError",
    "AccountError",
]
