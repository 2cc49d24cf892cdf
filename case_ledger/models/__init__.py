"""SQLAlchemy ORM Models for Case Ledger."""

from .base import Base, TimestampMixin, UTCDateTime, parse_timestamp, utcnow
from .models import (
    # Enums
    CaseState,
    CaseType,
    InvoiceStatus,
    LeadStatus,
    NotificationKind,
    NotificationSeverity,
    RecordType,
    Role,
    # Staff
    StaffUser,
    # Accounts
    AccountHistory,
    AccountMixin,
    ConfirmedClient,
    Lead,
    # Cases
    Case,
    CaseHistory,
    Note,
    Task,
    # Notifications & chat
    ChatMessage,
    Notification,
    # Client portal
    PortalToken,
    # Invoices
    Invoice,
    # Audit & archive
    ArchivedChat,
    ArchivedRecord,
    AuditLog,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "parse_timestamp",
    "utcnow",
    # Enums
    "CaseState",
    "CaseType",
    "InvoiceStatus",
    "LeadStatus",
    "NotificationKind",
    "NotificationSeverity",
    "RecordType",
    "Role",
    # Staff
    "StaffUser",
    # Accounts
    "AccountHistory",
    "AccountMixin",
    "ConfirmedClient",
    "Lead",
    # Cases
    "Case",
    "CaseHistory",
    "Note",
    "Task",
    # Notifications & chat
    "ChatMessage",
    "Notification",
    # Client portal
    "PortalToken",
    # Invoices
    "Invoice",
    # Audit & archive
    "ArchivedChat",
    "ArchivedRecord",
    "AuditLog",
]
