"""API routes for leads (``/customers``) and confirmed clients.

Both collections share one response shape; ``record_type`` tells them apart.
An update that moves a lead to CLIENT (or a confirmed client back into the
pipeline) returns the record from its new table.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentUserDep, MailerDep, SessionDep
from ..models import LeadStatus, RecordType
from ..schemas import (
    AccountCreate,
    AccountHistoryResponse,
    AccountResponse,
    AccountUpdateRequest,
    ArchivedRecordSummary,
    CaseResponse,
)
from ..services import (
    AccountService,
    AccountUpdate,
    CaseFilters,
    CaseService,
    CreateLeadInput,
    LifecycleMachine,
)

customers_router = APIRouter(prefix="/customers", tags=["customers"])
clients_router = APIRouter(prefix="/confirmed-clients", tags=["confirmed-clients"])


def get_account_service(session: SessionDep) -> AccountService:
    return AccountService(session)


def get_lifecycle(session: SessionDep, mailer: MailerDep) -> LifecycleMachine:
    return LifecycleMachine(session, mailer=mailer)


def get_case_service(session: SessionDep, mailer: MailerDep) -> CaseService:
    return CaseService(session, mailer=mailer)


AccountServiceDep = Annotated[AccountService, Depends(get_account_service)]
LifecycleDep = Annotated[LifecycleMachine, Depends(get_lifecycle)]
CaseServiceDep = Annotated[CaseService, Depends(get_case_service)]


def _to_update(data: AccountUpdateRequest) -> AccountUpdate:
    return AccountUpdate(
        expected_version=data.expected_version,
        fields=data.field_changes(),
        status=LeadStatus(data.status) if data.status is not None else None,
        assigned_to=data.assigned_to,
    )


# =============================================================================
# LEADS
# =============================================================================


@customers_router.get("", response_model=list[AccountResponse])
async def list_customers(
    current_user: CurrentUserDep,
    service: AccountServiceDep,
    search: str | None = Query(None, max_length=80),
    status_filter: LeadStatus | None = Query(None, alias="status"),
):
    """List leads visible to the caller."""
    leads = await service.list_accounts(
        RecordType.LEAD, current_user.scope, search=search, status=status_filter
    )
    return [AccountResponse.model_validate(lead) for lead in leads]


@customers_router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    data: AccountCreate,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
):
    """Register a new lead in INTAKE."""
    lead = await service.create_lead(
        CreateLeadInput(
            name=data.name,
            email=data.email,
            phone=data.phone,
            services=data.services,
            proposal_fields=data.proposal_fields,
            notes=data.notes,
            follow_up_date=data.follow_up_date,
            assigned_to=data.assigned_to,
        ),
        current_user.actor,
        current_user.scope,
    )
    return AccountResponse.model_validate(lead)


@customers_router.get("/{customer_id}", response_model=AccountResponse)
async def get_customer(
    customer_id: str,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
):
    lead = await service.get_account(RecordType.LEAD, customer_id, current_user.scope)
    return AccountResponse.model_validate(lead)


@customers_router.put("/{customer_id}", response_model=AccountResponse)
async def update_customer(
    customer_id: str,
    data: AccountUpdateRequest,
    current_user: CurrentUserDep,
    lifecycle: LifecycleDep,
):
    """Update a lead. Moving it to CLIENT migrates it to the confirmed-client table."""
    record = await lifecycle.update_lead(
        customer_id, _to_update(data), current_user.actor, current_user.scope
    )
    return AccountResponse.model_validate(record)


@customers_router.delete("/{customer_id}", response_model=ArchivedRecordSummary)
async def delete_customer(
    customer_id: str,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
    expected_version: int | None = Query(None, ge=1),
):
    """Archive a lead with its cases, notes, tasks and history."""
    archived = await service.delete_account(
        RecordType.LEAD,
        customer_id,
        current_user.actor,
        current_user.scope,
        expected_version=expected_version,
    )
    return ArchivedRecordSummary.model_validate(archived)


@customers_router.get("/{customer_id}/cases", response_model=list[CaseResponse])
async def list_customer_cases(
    customer_id: str,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
    cases: CaseServiceDep,
):
    await service.find_account(customer_id, current_user.scope)
    rows, _ = await cases.list_cases(current_user.scope, CaseFilters(customer_id=customer_id))
    return [CaseResponse.model_validate(c) for c in rows]


@customers_router.get("/{customer_id}/history", response_model=list[AccountHistoryResponse])
async def get_customer_history(
    customer_id: str,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
):
    """Status transitions recorded for the account, oldest first."""
    entries = await service.list_history(customer_id, current_user.scope)
    return [AccountHistoryResponse.model_validate(e) for e in entries]


# =============================================================================
# CONFIRMED CLIENTS
# =============================================================================


@clients_router.get("", response_model=list[AccountResponse])
async def list_confirmed_clients(
    current_user: CurrentUserDep,
    service: AccountServiceDep,
    search: str | None = Query(None, max_length=80),
):
    clients = await service.list_accounts(
        RecordType.CONFIRMED_CLIENT, current_user.scope, search=search
    )
    return [AccountResponse.model_validate(c) for c in clients]


@clients_router.get("/{customer_id}", response_model=AccountResponse)
async def get_confirmed_client(
    customer_id: str,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
):
    client = await service.get_account(
        RecordType.CONFIRMED_CLIENT, customer_id, current_user.scope
    )
    return AccountResponse.model_validate(client)


@clients_router.put("/{customer_id}", response_model=AccountResponse)
async def update_confirmed_client(
    customer_id: str,
    data: AccountUpdateRequest,
    current_user: CurrentUserDep,
    lifecycle: LifecycleDep,
):
    """Update a confirmed client. A non-CLIENT status demotes it (admin only)."""
    record = await lifecycle.update_confirmed_client(
        customer_id, _to_update(data), current_user.actor, current_user.scope
    )
    return AccountResponse.model_validate(record)


@clients_router.delete("/{customer_id}", response_model=ArchivedRecordSummary)
async def delete_confirmed_client(
    customer_id: str,
    current_user: CurrentUserDep,
    service: AccountServiceDep,
    expected_version: int | None = Query(None, ge=1),
):
    archived = await service.delete_account(
        RecordType.CONFIRMED_CLIENT,
        customer_id,
        current_user.actor,
        current_user.scope,
        expected_version=expected_version,
    )
    return ArchivedRecordSummary.model_validate(archived)
