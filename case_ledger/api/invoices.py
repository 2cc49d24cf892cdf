"""API routes for invoices and payments."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..core import CurrentUserDep, SessionDep
from ..models import InvoiceStatus
from ..schemas import InvoiceCreate, InvoiceResponse, InvoiceUpdate, PaymentCreate
from ..services import CreateInvoiceInput, InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


def get_invoice_service(session: SessionDep) -> InvoiceService:
    return InvoiceService(session)


InvoiceServiceDep = Annotated[InvoiceService, Depends(get_invoice_service)]


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    current_user: CurrentUserDep,
    service: InvoiceServiceDep,
    customer_id: str | None = None,
    case_id: str | None = None,
):
    invoices = await service.list_invoices(
        current_user.scope, customer_id=customer_id, case_id=case_id
    )
    return [InvoiceResponse.model_validate(i) for i in invoices]


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    current_user: CurrentUserDep,
    service: InvoiceServiceDep,
):
    invoice = await service.create_invoice(
        CreateInvoiceInput(
            customer_id=data.customer_id,
            amount=data.amount,
            description=data.description,
            currency=data.currency.upper(),
            case_id=data.case_id,
            due_date=data.due_date,
            assigned_to=data.assigned_to,
        ),
        current_user.actor,
        current_user.scope,
    )
    return InvoiceResponse.model_validate(invoice)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: str, current_user: CurrentUserDep, service: InvoiceServiceDep):
    invoice = await service.get_invoice(invoice_id, current_user.scope)
    return InvoiceResponse.model_validate(invoice)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str,
    data: InvoiceUpdate,
    current_user: CurrentUserDep,
    service: InvoiceServiceDep,
):
    changes = data.model_dump(exclude_unset=True)
    if changes.get("status") is not None:
        changes["status"] = InvoiceStatus(changes["status"])
    invoice = await service.update_invoice(
        invoice_id,
        changes,
        current_user.actor,
        current_user.scope,
    )
    return InvoiceResponse.model_validate(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(invoice_id: str, current_user: CurrentUserDep, service: InvoiceServiceDep):
    """Admin only."""
    await service.delete_invoice(invoice_id, current_user.actor)


# =============================================================================
# PAYMENTS
# =============================================================================


@router.post(
    "/{invoice_id}/payments",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    invoice_id: str,
    data: PaymentCreate,
    current_user: CurrentUserDep,
    service: InvoiceServiceDep,
):
    """Record a payment and derive the invoice status from the running total."""
    invoice = await service.record_payment(
        invoice_id,
        data.amount,
        current_user.actor,
        current_user.scope,
        method=data.method,
        note=data.note,
    )
    return InvoiceResponse.model_validate(invoice)


@router.delete("/{invoice_id}/payments/{payment_id}", response_model=InvoiceResponse)
async def remove_payment(
    invoice_id: str,
    payment_id: str,
    current_user: CurrentUserDep,
    service: InvoiceServiceDep,
):
    """Admin only."""
    invoice = await service.remove_payment(invoice_id, payment_id, current_user.actor)
    return InvoiceResponse.model_validate(invoice)
