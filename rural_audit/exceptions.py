"""
Custom exception hierarchy for the audit tracker.

Each exception type maps to one category of the error taxonomy, so the
store and the API can decide precisely what gets absorbed, what becomes a
notification, and what is refused.
"""

from __future__ import annotations


class AuditError(Exception):
    """Base exception for all audit tracker failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class GatewayError(AuditError):
    """A call to the remote store failed (network, HTTP status, bad payload)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.status_code = status_code
        super().__init__("REMOTE_FAILURE", message, details)


class LastPropertyError(AuditError):
    """An audit must keep at least one property."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("LAST_PROPERTY", message, details)


class EntityNotFoundError(AuditError):
    """The operation needs an entity that is not in the audit tree."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("NOT_FOUND", message, details)
