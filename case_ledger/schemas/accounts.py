"""Pydantic schemas for leads, confirmed clients and their status history."""

from datetime import datetime
from typing import Any

from pydantic import EmailStr, Field

from ..models import LeadStatus, RecordType
from .base import LedgerBaseModel


# =============================================================================
# REQUESTS
# =============================================================================


class AccountCreate(LedgerBaseModel):
    """Register a new lead. Status always starts at INTAKE."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    services: list[str] = Field(default_factory=list)
    proposal_fields: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    follow_up_date: datetime | None = None
    assigned_to: str | None = None


class AccountUpdateRequest(LedgerBaseModel):
    """
    Partial update of a lead or confirmed client.

    Only fields present in the request body are written. ``expected_version``
    is the version the caller last read.
    """

    expected_version: int = Field(..., ge=1)
    status: LeadStatus | None = None
    assigned_to: str | None = None

    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    services: list[str] | None = None
    proposal_fields: dict[str, Any] | None = None
    notes: str | None = None
    follow_up_date: datetime | None = None
    proposal_sent_at: datetime | None = None
    contract_sent_at: datetime | None = None

    def field_changes(self) -> dict[str, Any]:
        """Editable fields explicitly sent by the client."""
        data = self.model_dump(exclude_unset=True)
        for key in ("expected_version", "status", "assigned_to"):
            data.pop(key, None)
        return data


# =============================================================================
# RESPONSES
# =============================================================================


class StatusHistoryEntry(LedgerBaseModel):
    status: str
    date: datetime
    changed_by: str | None = None


class AccountResponse(LedgerBaseModel):
    """A lead or confirmed client as returned by the API."""

    customer_id: str
    record_type: RecordType
    name: str
    email: str | None = None
    phone: str | None = None
    services: list[str] = []
    proposal_fields: dict[str, Any] = {}
    notes: str | None = None
    status: LeadStatus
    assigned_to: str = ""
    created_by: str | None = None
    registered_at: datetime
    updated_at: datetime | None = None
    follow_up_date: datetime | None = None
    proposal_sent_at: datetime | None = None
    contract_sent_at: datetime | None = None
    proposal_accepted_at: datetime | None = None
    contract_accepted_at: datetime | None = None
    contract_signed_by_name: str | None = None
    status_history: list[StatusHistoryEntry] = []
    version: int

    # Confirmed clients only
    confirmed_at: datetime | None = None
    source_customer_id: str | None = None


class AccountHistoryResponse(LedgerBaseModel):
    history_id: str
    customer_id: str
    status_from: str | None = None
    status_to: str
    date: datetime
    changed_by: str | None = None
    changed_by_role: str | None = None
    changed_by_name: str | None = None
