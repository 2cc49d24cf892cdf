"""Pydantic schemas for cases, case history, notes and tasks."""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from ..models import CaseState, CaseType
from .base import LedgerBaseModel, PaginatedResponse


# =============================================================================
# CASES
# =============================================================================


class CaseCreate(LedgerBaseModel):
    customer_id: str = Field(..., min_length=1, max_length=40)
    title: str | None = Field(default=None, max_length=255)
    category: str | None = Field(default=None, max_length=120)
    subcategory: str | None = Field(default=None, max_length=120)
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    deadline: datetime | None = None
    general_note: str | None = None
    assigned_to: str | None = None
    state: CaseState = CaseState.INTAKE
    case_scope: Literal["customer", "client"] | None = Field(
        default=None,
        description="Admins pass 'customer' to attach the case to a lead",
    )


class CaseUpdateRequest(LedgerBaseModel):
    """Partial case update; state moves go through the history endpoint."""

    expected_version: int = Field(..., ge=1)
    assigned_to: str | None = None

    customer_id: str | None = Field(default=None, max_length=40)
    title: str | None = Field(default=None, max_length=255)
    category: str | None = Field(default=None, max_length=120)
    subcategory: str | None = Field(default=None, max_length=120)
    priority: Literal["low", "medium", "high", "urgent"] | None = None
    deadline: datetime | None = None
    general_note: str | None = None

    def field_changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        data.pop("expected_version", None)
        data.pop("assigned_to", None)
        return data


class CaseStateChange(LedgerBaseModel):
    """Move a case to the next state of its sub-workflow."""

    state_in: CaseState
    expected_version: int = Field(..., ge=1)


class CaseResponse(LedgerBaseModel):
    case_id: str
    customer_id: str
    case_type: CaseType
    state: CaseState
    title: str | None = None
    category: str | None = None
    subcategory: str | None = None
    priority: str
    deadline: datetime | None = None
    general_note: str | None = None
    assigned_to: str = ""
    created_by: str | None = None
    last_state_change: datetime
    created_at: datetime
    updated_at: datetime | None = None
    version: int


class CaseListResponse(PaginatedResponse):
    items: list[CaseResponse]


class CaseHistoryResponse(LedgerBaseModel):
    history_id: str
    case_id: str
    state_from: str | None = None
    state_in: str
    date: datetime


class CaseStateChangeResponse(LedgerBaseModel):
    case: CaseResponse
    history: CaseHistoryResponse


# =============================================================================
# NOTES & TASKS
# =============================================================================


class NoteCreate(LedgerBaseModel):
    note_text: str = Field(..., min_length=1)


class NoteResponse(LedgerBaseModel):
    note_id: str
    case_id: str
    note_text: str
    date: datetime


class TaskCreate(LedgerBaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    due_date: datetime | None = None


class TaskResponse(LedgerBaseModel):
    task_id: str
    case_id: str
    title: str
    done: bool
    due_date: datetime | None = None
    created_at: datetime
