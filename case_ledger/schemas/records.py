"""Schemas for notifications, chat, invoices and the archive."""

from datetime import datetime
from typing import Any

from pydantic import Field

from ..models import InvoiceStatus, NotificationKind, NotificationSeverity, RecordType
from .base import LedgerBaseModel


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationResponse(LedgerBaseModel):
    notification_id: str
    customer_id: str
    kind: NotificationKind
    severity: NotificationSeverity
    message: str
    created_at: datetime


# =============================================================================
# CHAT
# =============================================================================


class ChatMessageCreate(LedgerBaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class ChatMessageResponse(LedgerBaseModel):
    message_id: str
    customer_id: str
    sender: str
    sender_name: str | None = None
    text: str
    read: bool
    created_at: datetime


class ChatReadResponse(LedgerBaseModel):
    marked_read: int


# =============================================================================
# INVOICES
# =============================================================================


class InvoiceCreate(LedgerBaseModel):
    customer_id: str = Field(..., min_length=1, max_length=40)
    amount: float = Field(..., ge=0)
    description: str = ""
    currency: str = Field(default="ALL", min_length=3, max_length=3)
    case_id: str | None = None
    due_date: datetime | None = None
    assigned_to: str | None = None


class InvoiceUpdate(LedgerBaseModel):
    description: str | None = None
    amount: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    status: InvoiceStatus | None = None
    due_date: datetime | None = None
    case_id: str | None = None


class PaymentCreate(LedgerBaseModel):
    amount: float = Field(..., gt=0)
    method: str = "bank_transfer"
    note: str | None = None


class PaymentEntry(LedgerBaseModel):
    payment_id: str
    amount: float
    method: str | None = None
    note: str | None = None
    date: datetime
    recorded_by: str | None = None


class InvoiceResponse(LedgerBaseModel):
    invoice_id: str
    customer_id: str
    case_id: str | None = None
    description: str
    amount: float
    currency: str
    status: InvoiceStatus
    due_date: datetime | None = None
    created_by: str | None = None
    assigned_to: str = ""
    auto_drafted: bool = False
    payments: list[PaymentEntry] = []
    created_at: datetime
    updated_at: datetime | None = None


# =============================================================================
# ARCHIVE
# =============================================================================


class ArchivedRecordSummary(LedgerBaseModel):
    """Archive listing entry; the snapshot is only returned by the detail view."""

    record_id: str
    record_type: RecordType
    customer_id: str
    customer_name: str
    deleted_at: datetime
    deleted_by: str
    reason: str


class ArchivedRecordDetail(ArchivedRecordSummary):
    snapshot: dict[str, Any]


class ArchivedChatResponse(LedgerBaseModel):
    archived_chat_id: str
    customer_id: str
    customer_name: str
    deleted_at: datetime
    deleted_by: str
    reason: str
    messages: list[dict[str, Any]]


class RestoreResponse(LedgerBaseModel):
    archive_id: str
    customer_id: str
    record_type: RecordType
    restored: dict[str, int]
    skipped: dict[str, int]
