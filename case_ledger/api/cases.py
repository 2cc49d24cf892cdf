"""API routes for cases and their history, notes and tasks."""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentUserDep, MailerDep, SessionDep
from ..models import CaseState, CaseType
from ..schemas import (
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
from ..services import CaseFilters, CaseService, CaseUpdate, CreateCaseInput

router = APIRouter(prefix="/cases", tags=["cases"])
tasks_router = APIRouter(prefix="/tasks", tags=["cases"])


def get_case_service(session: SessionDep, mailer: MailerDep) -> CaseService:
    return CaseService(session, mailer=mailer)


CaseServiceDep = Annotated[CaseService, Depends(get_case_service)]


# =============================================================================
# CASE CRUD
# =============================================================================


@router.get("", response_model=CaseListResponse)
async def list_cases(
    current_user: CurrentUserDep,
    service: CaseServiceDep,
    state: CaseState | None = None,
    customer_id: str | None = None,
    case_type: CaseType | None = None,
    search: str | None = Query(None, max_length=80),
    sort_by: Literal["case_id", "priority", "last_state_change", "deadline", "assigned_to"] = "case_id",
    sort_dir: Literal["asc", "desc"] = "asc",
    page: int | None = Query(None, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """
    List cases visible to the caller.

    Without ``page`` every matching case is returned in one page.
    """
    rows, total = await service.list_cases(
        current_user.scope,
        CaseFilters(
            state=state,
            customer_id=customer_id,
            case_type=case_type,
            search=search,
            sort_by=sort_by,
            sort_dir=sort_dir,
            page=page,
            page_size=page_size,
        ),
    )
    items = [CaseResponse.model_validate(c) for c in rows]
    if page is None:
        return CaseListResponse.create(items=items, total=total, page=1, page_size=max(total, 1))
    return CaseListResponse.create(items=items, total=total, page=page, page_size=page_size)


@router.post("", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(
    data: CaseCreate,
    current_user: CurrentUserDep,
    service: CaseServiceDep,
):
    case = await service.create_case(
        CreateCaseInput(
            customer_id=data.customer_id,
            title=data.title,
            category=data.category,
            subcategory=data.subcategory,
            priority=data.priority,
            deadline=data.deadline,
            general_note=data.general_note,
            assigned_to=data.assigned_to,
            state=CaseState(data.state),
            case_scope=data.case_scope,
        ),
        current_user.actor,
        current_user.scope,
    )
    return CaseResponse.model_validate(case)


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(case_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    case = await service.get_case(case_id, current_user.scope)
    return CaseResponse.model_validate(case)


@router.put("/{case_id}", response_model=CaseResponse)
async def update_case(
    case_id: str,
    data: CaseUpdateRequest,
    current_user: CurrentUserDep,
    service: CaseServiceDep,
):
    case = await service.update_case(
        case_id,
        CaseUpdate(
            expected_version=data.expected_version,
            fields=data.field_changes(),
            assigned_to=data.assigned_to,
        ),
        current_user.actor,
        current_user.scope,
    )
    return CaseResponse.model_validate(case)


@router.delete("/{case_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_case(case_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    """Delete a case together with its history, notes and tasks."""
    await service.delete_case(case_id, current_user.actor, current_user.scope)


# =============================================================================
# CASE HISTORY (STATE CHANGES)
# =============================================================================


@router.get("/{case_id}/history", response_model=list[CaseHistoryResponse])
async def get_case_history(case_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    entries = await service.list_case_history(case_id, current_user.scope)
    return [CaseHistoryResponse.model_validate(e) for e in entries]


@router.post(
    "/{case_id}/history",
    response_model=CaseStateChangeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def change_case_state(
    case_id: str,
    data: CaseStateChange,
    current_user: CurrentUserDep,
    service: CaseServiceDep,
):
    """Move the case along its workflow and record the step."""
    case, entry = await service.change_state(
        case_id,
        CaseState(data.state_in),
        current_user.actor,
        current_user.scope,
        expected_version=data.expected_version,
    )
    return CaseStateChangeResponse(
        case=CaseResponse.model_validate(case),
        history=CaseHistoryResponse.model_validate(entry),
    )


# =============================================================================
# NOTES & TASKS
# =============================================================================


@router.get("/{case_id}/notes", response_model=list[NoteResponse])
async def list_notes(case_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    notes = await service.list_notes(case_id, current_user.scope)
    return [NoteResponse.model_validate(n) for n in notes]


@router.post("/{case_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def add_note(
    case_id: str,
    data: NoteCreate,
    current_user: CurrentUserDep,
    service: CaseServiceDep,
):
    note = await service.add_note(case_id, data.note_text, current_user.actor, current_user.scope)
    return NoteResponse.model_validate(note)


@router.get("/{case_id}/tasks", response_model=list[TaskResponse])
async def list_tasks(case_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    tasks = await service.list_tasks(case_id, current_user.scope)
    return [TaskResponse.model_validate(t) for t in tasks]


@router.post("/{case_id}/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def add_task(
    case_id: str,
    data: TaskCreate,
    current_user: CurrentUserDep,
    service: CaseServiceDep,
):
    task = await service.add_task(
        case_id, data.title, current_user.actor, current_user.scope, due_date=data.due_date
    )
    return TaskResponse.model_validate(task)


@tasks_router.post("/{task_id}/toggle", response_model=TaskResponse)
async def toggle_task(task_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    task = await service.toggle_task(task_id, current_user.actor, current_user.scope)
    return TaskResponse.model_validate(task)


@tasks_router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, current_user: CurrentUserDep, service: CaseServiceDep):
    await service.delete_task(task_id, current_user.actor, current_user.scope)
