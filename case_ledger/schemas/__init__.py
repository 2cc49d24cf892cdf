"""Case Ledger API Schemas.

Schemas are organized by domain:
- base: common configuration, pagination, errors
- accounts: leads, confirmed clients, status history
- cases: cases, case history, notes, tasks
- records: notifications, chat, invoices, archive
- audit: audit log and chain verification
- staff: authentication and the staff directory
- portal: client portal links and the client-facing page
"""

from .accounts import (
    AccountCreate,
    AccountHistoryResponse,
    AccountResponse,
    AccountUpdateRequest,
    StatusHistoryEntry,
)
from .audit import AuditLogEntry, AuditLogResponse, ChainVerificationResult
from .base import (
    ErrorDetail,
    ErrorResponse,
    LedgerBaseModel,
    PaginatedResponse,
)
from .cases import (
    CaseCreate,
    CaseHistoryResponse,
    CaseListResponse,
    CaseResponse,
    CaseStateChange,
    CaseStateChangeResponse,
    CaseUpdateRequest,
    NoteCreate,
    NoteResponse,
    TaskCreate,
    TaskResponse,
)
from .portal import (
    ContractResponseRequest,
    PortalActionResult,
    PortalMessageCreate,
    PortalTokenCreate,
    PortalTokenExtend,
    PortalTokenIssued,
    PortalTokenResponse,
    PortalViewResponse,
    ProposalResponseRequest,
)
from .records import (
    ArchivedChatResponse,
    ArchivedRecordDetail,
    ArchivedRecordSummary,
    ChatMessageCreate,
    ChatMessageResponse,
    ChatReadResponse,
    InvoiceCreate,
    InvoiceResponse,
    InvoiceUpdate,
    NotificationResponse,
    PaymentCreate,
    PaymentEntry,
    RestoreResponse,
)
from .staff import (
    ActorProfile,
    LoginRequest,
    StaffNamesResponse,
    StaffUserCreate,
    StaffUserResponse,
    StaffUserUpdate,
    TokenResponse,
)

__all__ = [
    # Base
    "LedgerBaseModel",
    "PaginatedResponse",
    "ErrorDetail",
    "ErrorResponse",
    # Accounts
    "AccountCreate",
    "AccountUpdateRequest",
    "AccountResponse",
    "AccountHistoryResponse",
    "StatusHistoryEntry",
    # Cases
    "CaseCreate",
    "CaseUpdateRequest",
    "CaseStateChange",
    "CaseResponse",
    "CaseListResponse",
    "CaseHistoryResponse",
    "CaseStateChangeResponse",
    "NoteCreate",
    "NoteResponse",
    "TaskCreate",
    "TaskResponse",
    # Records
    "NotificationResponse",
    "ChatMessageCreate",
    "ChatMessageResponse",
    "ChatReadResponse",
    "InvoiceCreate",
    "InvoiceUpdate",
    "InvoiceResponse",
    "PaymentCreate",
    "PaymentEntry",
    "ArchivedRecordSummary",
    "ArchivedRecordDetail",
    "ArchivedChatResponse",
    "RestoreResponse",
    # Audit
    "AuditLogEntry",
    "AuditLogResponse",
    "ChainVerificationResult",
    # Staff
    "LoginRequest",
    "TokenResponse",
    "ActorProfile",
    "StaffUserCreate",
    "StaffUserUpdate",
    "StaffUserResponse",
    "StaffNamesResponse",
    # Portal
    "PortalTokenCreate",
    "PortalTokenIssued",
    "PortalTokenResponse",
    "PortalTokenExtend",
    "PortalViewResponse",
    "PortalMessageCreate",
    "ProposalResponseRequest",
    "ContractResponseRequest",
    "PortalActionResult",
]
