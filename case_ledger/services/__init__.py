"""Business logic services for Case Ledger."""

from .accounts import AccountService, CreateLeadInput
from .archive import ArchiveStore, RestoreResult
from .audit import AuditService
from .cases import CaseFilters, CaseService, CaseUpdate, CreateCaseInput
from .chat import ChatService
from .concurrency import ConcurrencyGuard
from .errors import (
    CaseLedgerError,
    DependencyMissingError,
    IllegalTransitionError,
    InvalidInputError,
    LinkExpiredError,
    PermissionDeniedError,
    RecordNotFoundError,
    ScopeViolationError,
    StorageFailureError,
    TeamBoundaryError,
    VersionConflictError,
)
from .escalation import EscalationEngine, EscalationReport
from .invoices import CreateInvoiceInput, InvoiceService
from .lifecycle import AccountUpdate, LifecycleMachine
from .mailer import Mailer, get_mailer
from .notifications import NotificationService
from .portal import PortalService, PortalView
from .scope import Actor, ScopeResolver, normalize_staff_name, validate_team_boundary
from .staff import StaffService

__all__ = [
    # Core
    "Actor",
    "ScopeResolver",
    "normalize_staff_name",
    "validate_team_boundary",
    "ConcurrencyGuard",
    "LifecycleMachine",
    "AccountUpdate",
    "EscalationEngine",
    "EscalationReport",
    "ArchiveStore",
    "RestoreResult",
    "AuditService",
    # Application services
    "AccountService",
    "CreateLeadInput",
    "CaseService",
    "CaseFilters",
    "CaseUpdate",
    "CreateCaseInput",
    "ChatService",
    "InvoiceService",
    "CreateInvoiceInput",
    "NotificationService",
    "PortalService",
    "PortalView",
    "StaffService",
    "Mailer",
    "get_mailer",
    # Errors
    "CaseLedgerError",
    "RecordNotFoundError",
    "ScopeViolationError",
    "PermissionDeniedError",
    "VersionConflictError",
    "IllegalTransitionError",
    "TeamBoundaryError",
    "DependencyMissingError",
    "InvalidInputError",
    "LinkExpiredError",
    "StorageFailureError",
]
