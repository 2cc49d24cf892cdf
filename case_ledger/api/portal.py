"""API routes for client portal links (admin) and the portal itself (public).

The public routes carry no staff token: the link secret in the path is the
only credential and it resolves to exactly one account.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..core import AdminDep, MailerDep, SessionDep, get_settings
from ..schemas import (
    AccountResponse,
    CaseResponse,
    ChatMessageResponse,
    ContractResponseRequest,
    InvoiceResponse,
    PortalActionResult,
    PortalMessageCreate,
    PortalTokenCreate,
    PortalTokenExtend,
    PortalTokenIssued,
    PortalTokenResponse,
    PortalViewResponse,
    ProposalResponseRequest,
)
from ..services import PortalService, RecordNotFoundError

router = APIRouter(prefix="/portal", tags=["portal"])
settings = get_settings()


def get_portal_service(session: SessionDep, mailer: MailerDep) -> PortalService:
    return PortalService(session, mailer=mailer)


PortalServiceDep = Annotated[PortalService, Depends(get_portal_service)]


def _action_result(record) -> PortalActionResult:
    return PortalActionResult(
        customer_id=record.customer_id,
        record_type=record.record_type,
        status=record.status.value,
        assigned_to=record.assigned_to,
    )


# =============================================================================
# LINKS (ADMIN)
# =============================================================================


@router.post("/tokens", response_model=PortalTokenIssued, status_code=status.HTTP_201_CREATED)
async def issue_token(data: PortalTokenCreate, current_user: AdminDep, service: PortalServiceDep):
    """Create a link, replacing any existing one. The secret is shown only here."""
    secret, token = await service.issue_token(
        data.customer_id, current_user.actor, data.expires_in_days
    )
    return PortalTokenIssued(
        **PortalTokenResponse.model_validate(token).model_dump(),
        token=secret,
        portal_url=f"{settings.app_url}/portal/{secret}" if settings.app_url else None,
    )


@router.get("/tokens/{customer_id}", response_model=PortalTokenResponse)
async def get_token(customer_id: str, current_user: AdminDep, service: PortalServiceDep):
    token = await service.get_token(customer_id, current_user.actor)
    if token is None:
        raise RecordNotFoundError(f"No portal link found for {customer_id}")
    return PortalTokenResponse.model_validate(token)


@router.delete("/tokens/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_token(customer_id: str, current_user: AdminDep, service: PortalServiceDep):
    await service.revoke_token(customer_id, current_user.actor)


@router.patch("/tokens/{customer_id}/extend", response_model=PortalTokenResponse)
async def extend_token(
    customer_id: str,
    data: PortalTokenExtend,
    current_user: AdminDep,
    service: PortalServiceDep,
):
    token = await service.extend_token(customer_id, data.days, current_user.actor)
    return PortalTokenResponse.model_validate(token)


# =============================================================================
# CLIENT SIDE
# =============================================================================


@router.get("/{token}", response_model=PortalViewResponse)
async def view_portal(token: str, service: PortalServiceDep):
    view = await service.view(token)
    return PortalViewResponse(
        client=AccountResponse.model_validate(view.account),
        cases=[CaseResponse.model_validate(c) for c in view.cases],
        invoices=[InvoiceResponse.model_validate(i) for i in view.invoices],
        messages=[ChatMessageResponse.model_validate(m) for m in view.messages],
        expires_at=view.expires_at,
    )


@router.post(
    "/{token}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(token: str, data: PortalMessageCreate, service: PortalServiceDep):
    message = await service.post_message(token, data.text)
    return ChatMessageResponse.model_validate(message)


@router.post("/{token}/respond-proposal", response_model=PortalActionResult)
async def respond_proposal(token: str, data: ProposalResponseRequest, service: PortalServiceDep):
    record = await service.respond_proposal(token, data.action, data.note)
    return _action_result(record)


@router.post("/{token}/respond-contract", response_model=PortalActionResult)
async def respond_contract(token: str, data: ContractResponseRequest, service: PortalServiceDep):
    record = await service.respond_contract(token, data.signed_by_name)
    return _action_result(record)
