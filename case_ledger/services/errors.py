"""Domain exceptions shared by every service.

Each class carries an ``error_code`` and ``status_code`` that the API layer
uses to render an ``ErrorResponse``.
"""

from typing import Any


class CaseLedgerError(Exception):
    """Base exception for case ledger operations."""

    error_code = "case_ledger_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class RecordNotFoundError(CaseLedgerError):
    """Record does not exist, or exists outside the caller's scope."""

    error_code = "not_found"
    status_code = 404


class ScopeViolationError(CaseLedgerError):
    """Caller tried to write a value its role may not assign."""

    error_code = "scope_violation"
    status_code = 422


class PermissionDeniedError(CaseLedgerError):
    """Surface restricted to a role the caller does not hold."""

    error_code = "forbidden"
    status_code = 403


class VersionConflictError(CaseLedgerError):
    """Caller's version is stale; ``current`` holds the stored record."""

    error_code = "conflict"
    status_code = 409

    def __init__(self, message: str, current: dict[str, Any] | None = None):
        super().__init__(message)
        self.current = current


class IllegalTransitionError(CaseLedgerError):
    """Requested status/assignee combination violates a lifecycle rule."""

    error_code = "illegal_transition"
    status_code = 422

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TeamBoundaryError(IllegalTransitionError):
    """Assignee is outside the roster allowed for the case type."""

    error_code = "team_boundary"


class DependencyMissingError(CaseLedgerError):
    """Referenced parent record does not resolve within the caller's scope."""

    error_code = "dependency_missing"
    status_code = 400


class StorageFailureError(CaseLedgerError):
    """Unexpected backing-store failure. Never retried by the core."""

    error_code = "storage_failure"
    status_code = 500


class InvalidInputError(CaseLedgerError):
    """Request value the domain rejects (non-positive payment, duplicate user, ...)."""

    error_code = "invalid_input"
    status_code = 400


class LinkExpiredError(CaseLedgerError):
    """Client portal link is past its expiry."""

    error_code = "link_expired"
    status_code = 410
