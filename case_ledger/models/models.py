"""SQLAlchemy ORM Models for Case Ledger.

Every collection is keyed by a stable string id generated in-process (see
``core.identifiers``). Leads and confirmed clients share one column set and
live in two tables; a record is in exactly one of them at any time.
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, Enum, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda x: [e.value for e in x],
    )


# =============================================================================
# ENUMS
# =============================================================================


class Role(str, PyEnum):
    """Staff roles. SYSTEM is reserved for scheduler-originated actions."""
    ADMIN = "admin"
    MANAGER = "manager"
    INTAKE = "intake"
    CONSULTANT = "consultant"
    STAFF = "staff"
    SYSTEM = "system"


class LeadStatus(str, PyEnum):
    INTAKE = "INTAKE"
    SEND_PROPOSAL = "SEND_PROPOSAL"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    DISCUSSING_Q = "DISCUSSING_Q"
    SEND_CONTRACT = "SEND_CONTRACT"
    WAITING_ACCEPTANCE = "WAITING_ACCEPTANCE"
    SEND_RESPONSE = "SEND_RESPONSE"
    CLIENT = "CLIENT"
    ON_HOLD = "ON_HOLD"
    ARCHIVED = "ARCHIVED"


class CaseType(str, PyEnum):
    CUSTOMER = "customer"  # Case of a pre-confirmation lead
    CLIENT = "client"      # Case of a confirmed client


class CaseState(str, PyEnum):
    INTAKE = "INTAKE"
    SEND_PROPOSAL = "SEND_PROPOSAL"
    WAITING_RESPONSE_P = "WAITING_RESPONSE_P"
    DISCUSSING_Q = "DISCUSSING_Q"
    SEND_CONTRACT = "SEND_CONTRACT"
    WAITING_RESPONSE_C = "WAITING_RESPONSE_C"


class NotificationKind(str, PyEnum):
    FOLLOW = "follow"
    RESPOND = "respond"


class NotificationSeverity(str, PyEnum):
    WARN = "warn"
    CRITICAL = "critical"


class RecordType(str, PyEnum):
    LEAD = "lead"
    CONFIRMED_CLIENT = "confirmed_client"


class InvoiceStatus(str, PyEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


# =============================================================================
# STAFF
# =============================================================================


class StaffUser(Base):
    """A login-capable staff member."""

    __tablename__ = "staff_users"

    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(_enum_column(Role, "staff_role"), nullable=False)
    consultant_name: Mapped[str | None] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


# =============================================================================
# ACCOUNTS (LEAD / CONFIRMED CLIENT)
# =============================================================================


class AccountMixin:
    """Columns shared by leads and confirmed clients."""

    customer_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    services: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    proposal_fields: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    status: Mapped[LeadStatus] = mapped_column(
        _enum_column(LeadStatus, "lead_status"),
        default=LeadStatus.INTAKE,
        nullable=False,
    )
    assigned_to: Mapped[str] = mapped_column(String(120), default="", nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(64), index=True)
    registered_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), onupdate=utcnow)

    follow_up_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    proposal_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    contract_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    # Set by the client through the portal
    proposal_accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    contract_accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    contract_signed_by_name: Mapped[str | None] = mapped_column(String(255))

    # [{"status": "INTAKE", "date": "<iso>"}, ...] append-only
    status_history: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    notification_tracker: Mapped[dict | None] = mapped_column(JSONType)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class Lead(Base, AccountMixin):
    """Pre-confirmation prospective client."""

    __tablename__ = "leads"

    record_type = RecordType.LEAD


class ConfirmedClient(Base, AccountMixin):
    """A lead that reached CLIENT and was migrated out of the lead table."""

    __tablename__ = "confirmed_clients"

    record_type = RecordType.CONFIRMED_CLIENT

    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    source_customer_id: Mapped[str | None] = mapped_column(String(40))


class AccountHistory(Base):
    """Status transition log for an account."""

    __tablename__ = "account_history"

    history_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    status_from: Mapped[str | None] = mapped_column(String(32))
    status_to: Mapped[str] = mapped_column(String(32), nullable=False)
    date: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(64))
    changed_by_role: Mapped[str | None] = mapped_column(String(32))
    changed_by_name: Mapped[str | None] = mapped_column(String(120))


# =============================================================================
# CASES
# =============================================================================


class Case(Base, TimestampMixin):
    """A unit of legal work owned by one lead or confirmed client."""

    __tablename__ = "cases"

    case_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    case_type: Mapped[CaseType] = mapped_column(_enum_column(CaseType, "case_type"), nullable=False)
    state: Mapped[CaseState] = mapped_column(
        _enum_column(CaseState, "case_state"),
        default=CaseState.INTAKE,
        nullable=False,
    )
    title: Mapped[str | None] = mapped_column(String(255))
    category: Mapped[str | None] = mapped_column(String(120))
    subcategory: Mapped[str | None] = mapped_column(String(120))
    priority: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(UTCDateTime())
    general_note: Mapped[str | None] = mapped_column(Text)
    assigned_to: Mapped[str] = mapped_column(String(120), default="", nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(64))
    last_state_change: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class CaseHistory(Base):
    """Case state transition log."""

    __tablename__ = "case_history"

    history_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    state_from: Mapped[str | None] = mapped_column(String(32))
    state_in: Mapped[str] = mapped_column(String(32), nullable=False)
    date: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Note(Base):
    __tablename__ = "notes"

    note_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    note_text: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Task(Base):
    __tablename__ = "tasks"

    task_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    done: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


# =============================================================================
# NOTIFICATIONS & CHAT
# =============================================================================


class Notification(Base):
    """Escalation notification for a lead; regenerated on status change."""

    __tablename__ = "notifications"

    notification_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    kind: Mapped[NotificationKind] = mapped_column(
        _enum_column(NotificationKind, "notification_kind"), nullable=False
    )
    severity: Mapped[NotificationSeverity] = mapped_column(
        _enum_column(NotificationSeverity, "notification_severity"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    message_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    sender: Mapped[str] = mapped_column(String(16), nullable=False)  # "staff" | "client"
    sender_name: Mapped[str | None] = mapped_column(String(120))
    text: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


# =============================================================================
# CLIENT PORTAL
# =============================================================================


class PortalToken(Base):
    """Client portal link for one lead or confirmed client.

    Only the SHA-256 of the link secret is stored; the secret itself is shown
    once, when the link is issued.
    """

    __tablename__ = "portal_tokens"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    record_type: Mapped[RecordType] = mapped_column(
        _enum_column(RecordType, "portal_record_type"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64))


# =============================================================================
# INVOICES
# =============================================================================


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    invoice_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    case_id: Mapped[str | None] = mapped_column(String(40))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="ALL", nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        _enum_column(InvoiceStatus, "invoice_status"),
        default=InvoiceStatus.PENDING,
        nullable=False,
    )
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    created_by: Mapped[str | None] = mapped_column(String(64))
    assigned_to: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    auto_drafted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # [{"payment_id": str, "amount": float, "date": "<iso>", "method": str | None}]
    payments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)


# =============================================================================
# AUDIT & ARCHIVE
# =============================================================================


class AuditLog(Base):
    """Append-only audit trail with a hash chain."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor: Mapped[str | None] = mapped_column(String(64))
    role: Mapped[str | None] = mapped_column(String(32))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64))
    details: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    previous_hash: Mapped[str | None] = mapped_column(String(64))
    entry_hash: Mapped[str | None] = mapped_column(String(64))

    __table_args__ = (
        Index("idx_audit_log_actor_time", "actor", "created_at"),
        Index("idx_audit_log_resource", "resource", "resource_id"),
        Index("idx_audit_log_action", "action", "created_at"),
    )


class ArchivedRecord(Base):
    """Immutable snapshot of a deleted account and its dependents."""

    __tablename__ = "archived_records"

    record_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    record_type: Mapped[RecordType] = mapped_column(
        _enum_column(RecordType, "record_type"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    deleted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    # {"entity", "cases", "case_history", "notes", "tasks", "entity_history"}
    snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)


class ArchivedChat(Base):
    """Chat transcript removed from the live chat table."""

    __tablename__ = "archived_chats"

    archived_chat_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    deleted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    messages: Mapped[list] = mapped_column(JSONType, nullable=False)
