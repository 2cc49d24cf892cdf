"""Schemas for client portal links and the client-facing portal page."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from ..models import RecordType
from .accounts import AccountResponse
from .base import LedgerBaseModel
from .cases import CaseResponse
from .records import ChatMessageResponse, InvoiceResponse


# =============================================================================
# LINKS (ADMIN)
# =============================================================================


class PortalTokenCreate(LedgerBaseModel):
    customer_id: str = Field(..., min_length=1, max_length=40)
    expires_in_days: int | None = Field(default=None, ge=1, le=365)


class PortalTokenResponse(LedgerBaseModel):
    """Link metadata; the secret itself is never stored."""

    customer_id: str
    client_name: str
    record_type: RecordType
    created_at: datetime
    expires_at: datetime
    created_by: str | None = None


class PortalTokenIssued(PortalTokenResponse):
    """Returned once, when the link is created."""

    token: str
    portal_url: str | None = None


class PortalTokenExtend(LedgerBaseModel):
    days: int = Field(default=30, ge=1, le=365)


# =============================================================================
# CLIENT SIDE
# =============================================================================


class PortalViewResponse(LedgerBaseModel):
    client: AccountResponse
    cases: list[CaseResponse]
    invoices: list[InvoiceResponse]
    messages: list[ChatMessageResponse]
    expires_at: datetime


class PortalMessageCreate(LedgerBaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class ProposalResponseRequest(LedgerBaseModel):
    action: Literal["accept", "revision"]
    note: str | None = Field(default=None, max_length=5000)


class ContractResponseRequest(LedgerBaseModel):
    signed_by_name: str | None = Field(default=None, max_length=255)


class PortalActionResult(LedgerBaseModel):
    customer_id: str
    record_type: RecordType
    status: str
    assigned_to: str = ""
