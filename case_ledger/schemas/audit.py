"""Pydantic schemas for the audit log and chain verification."""

from datetime import datetime
from typing import Any

from .base import LedgerBaseModel, PaginatedResponse


# =============================================================================
# AUDIT LOG SCHEMAS
# =============================================================================


class AuditLogEntry(LedgerBaseModel):
    """A single audit log entry."""

    id: int
    actor: str | None = None  # None for unattributed writes
    role: str | None = None
    action: str
    resource: str
    resource_id: str | None = None
    details: dict[str, Any]
    created_at: datetime

    # Chain integrity
    previous_hash: str | None = None
    entry_hash: str | None = None


class AuditLogResponse(PaginatedResponse):
    """Paginated audit log response."""

    items: list[AuditLogEntry]


# =============================================================================
# CHAIN VERIFICATION
# =============================================================================


class ChainVerificationResult(LedgerBaseModel):
    """Result of audit chain integrity verification."""

    is_valid: bool
    entries_checked: int
    broken_at_id: int | None = None
    expected_hash: str | None = None
    actual_hash: str | None = None
    verified_at: datetime
