"""
Case service: cases, their state sub-workflow, notes and tasks.

Every case belongs to exactly one lead (``customer`` case) or confirmed
client (``client`` case). Its assignee must be on the roster for that case
type, checked on create and on every reassignment.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identifiers import generate_case_id, generate_short_id
from ..models import (
    Case,
    CaseHistory,
    CaseState,
    CaseType,
    ConfirmedClient,
    Lead,
    Note,
    Role,
    Task,
    utcnow,
)
from .audit import AuditService
from .concurrency import ConcurrencyGuard
from .errors import (
    DependencyMissingError,
    IllegalTransitionError,
    RecordNotFoundError,
    StorageFailureError,
)
from .mailer import Mailer, case_update_email, get_mailer
from .scope import Actor, ScopeResolver, validate_team_boundary

logger = logging.getLogger(__name__)


CASE_TRANSITIONS: dict[CaseState, frozenset[CaseState]] = {
    CaseState.INTAKE: frozenset({CaseState.SEND_PROPOSAL}),
    CaseState.SEND_PROPOSAL: frozenset({CaseState.WAITING_RESPONSE_P}),
    CaseState.WAITING_RESPONSE_P: frozenset({CaseState.DISCUSSING_Q, CaseState.SEND_CONTRACT}),
    CaseState.DISCUSSING_Q: frozenset({CaseState.SEND_PROPOSAL, CaseState.SEND_CONTRACT}),
    CaseState.SEND_CONTRACT: frozenset({CaseState.WAITING_RESPONSE_C}),
    CaseState.WAITING_RESPONSE_C: frozenset(),
}

CASE_EDITABLE_FIELDS = frozenset({
    "title",
    "category",
    "subcategory",
    "priority",
    "deadline",
    "general_note",
    "customer_id",
})

SORTABLE_COLUMNS = {
    "case_id": Case.case_id,
    "priority": Case.priority,
    "last_state_change": Case.last_state_change,
    "deadline": Case.deadline,
    "assigned_to": Case.assigned_to,
}


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateCaseInput:
    customer_id: str
    title: str | None = None
    category: str | None = None
    subcategory: str | None = None
    priority: str = "medium"
    deadline: datetime | None = None
    general_note: str | None = None
    assigned_to: str | None = None
    state: CaseState = CaseState.INTAKE
    case_scope: str | None = None  # "customer" lets an admin attach to a lead


@dataclass
class CaseUpdate:
    expected_version: int
    fields: dict[str, Any] = field(default_factory=dict)
    assigned_to: str | None = None


@dataclass
class CaseFilters:
    state: CaseState | None = None
    customer_id: str | None = None
    case_type: CaseType | None = None
    search: str | None = None
    sort_by: str = "case_id"
    sort_dir: str = "asc"
    page: int | None = None
    page_size: int = 20


# =============================================================================
# CASE SERVICE
# =============================================================================


class CaseService:
    """Scope-checked case operations."""

    def __init__(self, session: AsyncSession, mailer: Mailer | None = None):
        self._session = session
        self._guard = ConcurrencyGuard(session)
        self._audit = AuditService(session)
        self._mailer = mailer or get_mailer()

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_cases(
        self,
        scope: ScopeResolver,
        filters: CaseFilters | None = None,
    ) -> tuple[Sequence[Case], int]:
        filters = filters or CaseFilters()
        query = select(Case).where(scope.predicate(Case))

        if filters.state is not None:
            query = query.where(Case.state == filters.state)
        if filters.customer_id:
            query = query.where(Case.customer_id == filters.customer_id)
        if filters.case_type is not None:
            query = query.where(Case.case_type == filters.case_type)
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()[:80]}%"
            query = query.where(
                or_(
                    Case.case_id.ilike(pattern),
                    Case.category.ilike(pattern),
                    Case.subcategory.ilike(pattern),
                    Case.assigned_to.ilike(pattern),
                    Case.general_note.ilike(pattern),
                    Case.customer_id.in_(
                        select(Lead.customer_id).where(Lead.name.ilike(pattern))
                    ),
                    Case.customer_id.in_(
                        select(ConfirmedClient.customer_id).where(ConfirmedClient.name.ilike(pattern))
                    ),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self._session.execute(count_query)).scalar_one()

        column = SORTABLE_COLUMNS.get(filters.sort_by, Case.case_id)
        query = query.order_by(column.desc() if filters.sort_dir == "desc" else column.asc())
        if filters.page is not None:
            query = query.limit(filters.page_size).offset((filters.page - 1) * filters.page_size)

        result = await self._session.execute(query)
        return result.scalars().all(), total

    async def get_case(self, case_id: str, scope: ScopeResolver) -> Case:
        result = await self._session.execute(
            select(Case).where(Case.case_id == case_id.strip(), scope.predicate(Case))
        )
        case = result.scalar_one_or_none()
        if case is None:
            raise RecordNotFoundError(f"Case {case_id} not found")
        return case

    async def list_case_history(self, case_id: str, scope: ScopeResolver) -> Sequence[CaseHistory]:
        await self.get_case(case_id, scope)
        result = await self._session.execute(
            select(CaseHistory)
            .where(CaseHistory.case_id == case_id)
            .order_by(CaseHistory.date, CaseHistory.history_id)
        )
        return result.scalars().all()

    # =========================================================================
    # CASE MUTATIONS
    # =========================================================================

    async def create_case(
        self,
        data: CreateCaseInput,
        actor: Actor,
        scope: ScopeResolver,
    ) -> Case:
        """
        Create a case under a lead or a confirmed client.

        Intake and manager users (and admins asking for ``case_scope="customer"``)
        attach to leads; everyone else attaches to confirmed clients.
        """
        customer_id = (data.customer_id or "").strip()
        if not customer_id:
            raise DependencyMissingError("customer_id is required")

        on_leads = actor.role in (Role.INTAKE, Role.MANAGER) or (
            actor.is_admin and (data.case_scope or "").strip() == "customer"
        )
        case_type = CaseType.CUSTOMER if on_leads else CaseType.CLIENT
        await self._resolve_parent(customer_id, case_type, scope)

        assignee = scope.assignee_for_create(data.assigned_to)
        validate_team_boundary(case_type, assignee)

        now = utcnow()
        case = Case(
            case_id=generate_case_id("CC" if on_leads else "CL", actor.username),
            customer_id=customer_id,
            case_type=case_type,
            state=data.state,
            title=data.title,
            category=data.category,
            subcategory=data.subcategory,
            priority=data.priority,
            deadline=data.deadline,
            general_note=data.general_note,
            assigned_to=assignee,
            created_by=actor.username,
            last_state_change=now,
            version=1,
        )
        self._session.add(case)
        self._session.add(CaseHistory(
            history_id=generate_short_id("H"),
            case_id=case.case_id,
            state_from=data.state.value,
            state_in=data.state.value,
            date=now,
        ))
        await self._session.flush()

        await self._audit.log_event(
            actor, "create", "case", case.case_id,
            {"customer_id": customer_id, "case_type": case_type.value, "assigned_to": assignee},
        )
        return case

    async def update_case(
        self,
        case_id: str,
        update: CaseUpdate,
        actor: Actor,
        scope: ScopeResolver,
    ) -> Case:
        case = await self.get_case(case_id, scope)
        self._guard.check(case, update.expected_version)

        changes = {k: v for k, v in update.fields.items() if k in CASE_EDITABLE_FIELDS}
        assignee = scope.assignee_for_update(update.assigned_to)
        if assignee is not None:
            validate_team_boundary(case.case_type, assignee)
            changes["assigned_to"] = assignee

        if changes.get("customer_id"):
            changes["customer_id"] = str(changes["customer_id"]).strip()
            await self._resolve_parent(changes["customer_id"], case.case_type, scope)
        else:
            changes.pop("customer_id", None)

        try:
            case = await self._guard.apply(Case, case.case_id, update.expected_version, changes)
        except SQLAlchemyError as e:
            logger.error(f"Storage failure updating case {case_id}: {e}")
            raise StorageFailureError(f"Failed to update case {case_id}") from e

        await self._audit.log_event(
            actor, "update", "case", case.case_id, {"fields": sorted(changes)}
        )
        return case

    async def change_state(
        self,
        case_id: str,
        target: CaseState,
        actor: Actor,
        scope: ScopeResolver,
        expected_version: int,
    ) -> tuple[Case, CaseHistory]:
        """Move a case along its sub-workflow and record the step."""
        case = await self.get_case(case_id, scope)
        self._guard.check(case, expected_version)

        current = case.state
        if target not in CASE_TRANSITIONS.get(current, frozenset()):
            raise IllegalTransitionError(
                f"Cannot move case from {current.value} to {target.value}"
            )

        now = utcnow()
        entry = CaseHistory(
            history_id=generate_short_id("H"),
            case_id=case.case_id,
            state_from=current.value,
            state_in=target.value,
            date=now,
        )
        self._session.add(entry)
        case = await self._guard.apply(
            Case, case.case_id, expected_version, {"state": target, "last_state_change": now}
        )

        await self._audit.log_event(
            actor, "state_change", "case", case.case_id,
            {"from": current.value, "to": target.value, "history_id": entry.history_id},
        )

        owner = await self._owner(case.customer_id)
        if owner is not None:
            self._mailer.dispatch_after_commit(
                self._session,
                owner.email,
                *case_update_email(owner.name, case.title or case.case_id, target.value),
            )
        return case, entry

    async def delete_case(self, case_id: str, actor: Actor, scope: ScopeResolver) -> None:
        case = await self.get_case(case_id, scope)
        for stmt in (
            delete(CaseHistory).where(CaseHistory.case_id == case.case_id),
            delete(Note).where(Note.case_id == case.case_id),
            delete(Task).where(Task.case_id == case.case_id),
        ):
            await self._session.execute(stmt.execution_options(synchronize_session=False))
        await self._session.delete(case)
        await self._audit.log_event(actor, "delete", "case", case.case_id)

    # =========================================================================
    # NOTES & TASKS
    # =========================================================================

    async def list_notes(self, case_id: str, scope: ScopeResolver) -> Sequence[Note]:
        await self.get_case(case_id, scope)
        result = await self._session.execute(
            select(Note).where(Note.case_id == case_id).order_by(Note.date.desc())
        )
        return result.scalars().all()

    async def add_note(self, case_id: str, text: str, actor: Actor, scope: ScopeResolver) -> Note:
        case = await self.get_case(case_id, scope)
        note = Note(
            note_id=generate_short_id("N"),
            case_id=case.case_id,
            note_text=text,
            date=utcnow(),
        )
        self._session.add(note)
        await self._audit.log_event(actor, "create", "note", note.note_id, {"case_id": case.case_id})
        return note

    async def list_tasks(self, case_id: str, scope: ScopeResolver) -> Sequence[Task]:
        await self.get_case(case_id, scope)
        result = await self._session.execute(
            select(Task).where(Task.case_id == case_id).order_by(Task.created_at)
        )
        return result.scalars().all()

    async def add_task(
        self,
        case_id: str,
        title: str,
        actor: Actor,
        scope: ScopeResolver,
        due_date: datetime | None = None,
    ) -> Task:
        case = await self.get_case(case_id, scope)
        task = Task(
            task_id=generate_short_id("T"),
            case_id=case.case_id,
            title=title,
            done=False,
            due_date=due_date,
            created_at=utcnow(),
        )
        self._session.add(task)
        await self._audit.log_event(actor, "create", "task", task.task_id, {"case_id": case.case_id})
        return task

    async def toggle_task(self, task_id: str, actor: Actor, scope: ScopeResolver) -> Task:
        task = await self._task_in_scope(task_id, scope)
        task.done = not task.done
        await self._session.flush()
        await self._audit.log_event(actor, "update", "task", task_id, {"done": task.done})
        return task

    async def delete_task(self, task_id: str, actor: Actor, scope: ScopeResolver) -> None:
        task = await self._task_in_scope(task_id, scope)
        await self._session.delete(task)
        await self._audit.log_event(actor, "delete", "task", task_id, {"case_id": task.case_id})

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _task_in_scope(self, task_id: str, scope: ScopeResolver) -> Task:
        task = await self._session.get(Task, task_id)
        if task is None:
            raise RecordNotFoundError(f"Task {task_id} not found")
        # A task outside the caller's case scope does not exist for them
        try:
            await self.get_case(task.case_id, scope)
        except RecordNotFoundError:
            raise RecordNotFoundError(f"Task {task_id} not found") from None
        return task

    async def _resolve_parent(
        self,
        customer_id: str,
        case_type: CaseType,
        scope: ScopeResolver,
    ) -> Lead | ConfirmedClient:
        model = Lead if case_type == CaseType.CUSTOMER else ConfirmedClient
        result = await self._session.execute(
            select(model).where(model.customer_id == customer_id, scope.predicate(model))
        )
        parent = result.scalar_one_or_none()
        if parent is None:
            if case_type == CaseType.CUSTOMER:
                raise DependencyMissingError("Customer not found or not accessible")
            raise DependencyMissingError(
                "Case customer_id must belong to a confirmed client you can access"
            )
        return parent

    async def _owner(self, customer_id: str) -> Lead | ConfirmedClient | None:
        for model in (Lead, ConfirmedClient):
            owner = await self._session.get(model, customer_id)
            if owner is not None:
                return owner
        return None
