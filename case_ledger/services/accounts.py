"""Account service: create, read and delete leads and confirmed clients.

Status changes go through ``LifecycleMachine``; deletes go through
``ArchiveStore``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identifiers import generate_account_id
from ..models import (
    AccountHistory,
    ArchivedRecord,
    ConfirmedClient,
    Lead,
    LeadStatus,
    RecordType,
    Role,
    utcnow,
)
from .archive import REASON_MANUAL, ArchiveStore, account_model
from .audit import AuditService
from .errors import PermissionDeniedError, RecordNotFoundError
from .scope import Actor, ScopeResolver

logger = logging.getLogger(__name__)

LEAD_CREATOR_ROLES = (Role.ADMIN, Role.MANAGER, Role.INTAKE)


@dataclass
class CreateLeadInput:
    """Input for registering a new lead."""
    name: str
    email: str | None = None
    phone: str | None = None
    services: list[str] = field(default_factory=list)
    proposal_fields: dict[str, Any] = field(default_factory=dict)
    notes: str | None = None
    follow_up_date: datetime | None = None
    assigned_to: str | None = None


class AccountService:
    """Reads and creates accounts inside the caller's scope."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._audit = AuditService(session)

    async def create_lead(
        self,
        data: CreateLeadInput,
        actor: Actor,
        scope: ScopeResolver,
    ) -> Lead:
        if actor.role not in LEAD_CREATOR_ROLES:
            raise PermissionDeniedError("Only intake, manager and admin users can register customers")

        assignee = scope.assignee_for_create(data.assigned_to)
        now = utcnow()
        lead = Lead(
            customer_id=generate_account_id(actor.username),
            name=data.name.strip(),
            email=data.email,
            phone=data.phone,
            services=list(data.services),
            proposal_fields=dict(data.proposal_fields),
            notes=data.notes,
            follow_up_date=data.follow_up_date,
            status=LeadStatus.INTAKE,
            assigned_to=assignee,
            created_by=actor.username,
            registered_at=now,
            status_history=[{
                "status": LeadStatus.INTAKE.value,
                "date": now.isoformat(),
                "changed_by": actor.username,
            }],
            version=1,
        )
        self._session.add(lead)
        await self._session.flush()

        await self._audit.log_event(
            actor, "create", "lead", lead.customer_id,
            {"name": lead.name, "assigned_to": assignee},
        )
        logger.info(f"Registered lead {lead.customer_id} for {assignee or 'unassigned'}")
        return lead

    async def list_accounts(
        self,
        record_type: RecordType,
        scope: ScopeResolver,
        search: str | None = None,
        status: LeadStatus | None = None,
    ) -> Sequence[Lead | ConfirmedClient]:
        model = account_model(record_type)
        query = select(model).where(scope.predicate(model))
        if status is not None:
            query = query.where(model.status == status)
        if search and search.strip():
            pattern = f"%{search.strip()[:80]}%"
            query = query.where(
                or_(
                    model.name.ilike(pattern),
                    model.email.ilike(pattern),
                    model.customer_id.ilike(pattern),
                )
            )
        result = await self._session.execute(query.order_by(model.registered_at.desc()))
        return result.scalars().all()

    async def get_account(
        self,
        record_type: RecordType,
        customer_id: str,
        scope: ScopeResolver,
    ) -> Lead | ConfirmedClient:
        model = account_model(record_type)
        result = await self._session.execute(
            select(model).where(model.customer_id == customer_id, scope.predicate(model))
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(f"{customer_id} not found")
        return record

    async def find_account(
        self,
        customer_id: str,
        scope: ScopeResolver,
    ) -> Lead | ConfirmedClient:
        """Look the id up in whichever table currently holds it."""
        for model in (Lead, ConfirmedClient):
            result = await self._session.execute(
                select(model).where(model.customer_id == customer_id, scope.predicate(model))
            )
            record = result.scalar_one_or_none()
            if record is not None:
                return record
        raise RecordNotFoundError(f"{customer_id} not found")

    async def list_history(
        self,
        customer_id: str,
        scope: ScopeResolver,
    ) -> Sequence[AccountHistory]:
        await self.find_account(customer_id, scope)
        result = await self._session.execute(
            select(AccountHistory)
            .where(AccountHistory.customer_id == customer_id)
            .order_by(AccountHistory.date, AccountHistory.history_id)
        )
        return result.scalars().all()

    async def delete_account(
        self,
        record_type: RecordType,
        customer_id: str,
        actor: Actor,
        scope: ScopeResolver,
        expected_version: int | None = None,
    ) -> ArchivedRecord:
        return await ArchiveStore(self._session).archive(
            record_type,
            customer_id,
            actor,
            reason=REASON_MANUAL,
            scope=scope,
            expected_version=expected_version,
        )
