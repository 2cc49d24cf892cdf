"""Invoice service: invoices and recorded payments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identifiers import generate_short_id
from ..models import ConfirmedClient, Invoice, InvoiceStatus, Lead, Role, utcnow
from .audit import AuditService
from .errors import (
    DependencyMissingError,
    InvalidInputError,
    PermissionDeniedError,
    RecordNotFoundError,
)
from .scope import Actor, ScopeResolver

logger = logging.getLogger(__name__)

INVOICE_EDITABLE_FIELDS = frozenset({
    "description",
    "amount",
    "currency",
    "status",
    "due_date",
    "case_id",
})


@dataclass
class CreateInvoiceInput:
    customer_id: str
    amount: float
    description: str = ""
    currency: str = "ALL"
    case_id: str | None = None
    due_date: datetime | None = None
    assigned_to: str | None = None


def payment_status(invoice: Invoice, payments: list[dict[str, Any]]) -> InvoiceStatus:
    """Status implied by the recorded payments; a cancelled invoice stays cancelled."""
    if invoice.status == InvoiceStatus.CANCELLED:
        return InvoiceStatus.CANCELLED
    paid = sum(float(p.get("amount") or 0) for p in payments)
    if paid >= float(invoice.amount) and paid > 0:
        return InvoiceStatus.PAID
    if paid > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


class InvoiceService:
    def __init__(self, session: AsyncSession):
        self._session = session
        self._audit = AuditService(session)

    async def list_invoices(
        self,
        scope: ScopeResolver,
        customer_id: str | None = None,
        case_id: str | None = None,
    ) -> Sequence[Invoice]:
        query = select(Invoice).where(scope.predicate(Invoice))
        if customer_id:
            query = query.where(Invoice.customer_id == customer_id)
        if case_id:
            query = query.where(Invoice.case_id == case_id)
        result = await self._session.execute(query.order_by(Invoice.created_at.desc()))
        return result.scalars().all()

    async def get_invoice(self, invoice_id: str, scope: ScopeResolver) -> Invoice:
        result = await self._session.execute(
            select(Invoice).where(Invoice.invoice_id == invoice_id, scope.predicate(Invoice))
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise RecordNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def create_invoice(
        self,
        data: CreateInvoiceInput,
        actor: Actor,
        scope: ScopeResolver,
    ) -> Invoice:
        if data.amount < 0:
            raise InvalidInputError("Invoice amount cannot be negative")
        owner = None
        for model in (Lead, ConfirmedClient):
            owner = await self._session.get(model, data.customer_id)
            if owner is not None:
                break
        if owner is None:
            raise DependencyMissingError(f"Customer {data.customer_id} not found")

        requested = data.assigned_to
        if requested is None and (actor.is_unrestricted or actor.role == Role.MANAGER):
            requested = owner.assigned_to

        invoice = Invoice(
            invoice_id=generate_short_id("INV"),
            customer_id=data.customer_id,
            case_id=data.case_id,
            description=data.description,
            amount=data.amount,
            currency=data.currency,
            status=InvoiceStatus.PENDING,
            due_date=data.due_date,
            created_by=actor.username,
            assigned_to=scope.assignee_for_create(requested),
            auto_drafted=False,
            payments=[],
        )
        self._session.add(invoice)
        await self._session.flush()
        await self._audit.log_event(
            actor, "create", "invoice", invoice.invoice_id,
            {"customer_id": data.customer_id, "amount": data.amount, "currency": data.currency},
        )
        return invoice

    async def update_invoice(
        self,
        invoice_id: str,
        fields: dict[str, Any],
        actor: Actor,
        scope: ScopeResolver,
    ) -> Invoice:
        invoice = await self.get_invoice(invoice_id, scope)
        # Assignee and authorship are never changed through an update
        changes = {k: v for k, v in fields.items() if k in INVOICE_EDITABLE_FIELDS}
        for key, value in changes.items():
            setattr(invoice, key, value)
        await self._session.flush()
        await self._audit.log_event(
            actor, "update", "invoice", invoice_id, {"fields": sorted(changes)}
        )
        return invoice

    async def delete_invoice(self, invoice_id: str, actor: Actor) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can delete invoices")
        invoice = await self._session.get(Invoice, invoice_id)
        if invoice is None:
            raise RecordNotFoundError(f"Invoice {invoice_id} not found")
        await self._session.delete(invoice)
        await self._audit.log_event(actor, "delete", "invoice", invoice_id)

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    async def record_payment(
        self,
        invoice_id: str,
        amount: float,
        actor: Actor,
        scope: ScopeResolver,
        method: str = "bank_transfer",
        note: str | None = None,
    ) -> Invoice:
        if amount <= 0:
            raise InvalidInputError("Payment amount must be greater than 0")
        invoice = await self.get_invoice(invoice_id, scope)

        payment = {
            "payment_id": generate_short_id("PAY"),
            "amount": amount,
            "method": method,
            "note": (note or "").strip() or None,
            "date": utcnow().isoformat(),
            "recorded_by": actor.username,
        }
        payments = [*(invoice.payments or []), payment]
        invoice.payments = payments
        invoice.status = payment_status(invoice, payments)
        await self._session.flush()

        await self._audit.log_event(
            actor, "payment_recorded", "invoice", invoice_id,
            {"amount": amount, "status": invoice.status.value},
        )
        return invoice

    async def remove_payment(self, invoice_id: str, payment_id: str, actor: Actor) -> Invoice:
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can remove payments")
        invoice = await self._session.get(Invoice, invoice_id)
        if invoice is None:
            raise RecordNotFoundError(f"Invoice {invoice_id} not found")

        payments = [p for p in (invoice.payments or []) if p.get("payment_id") != payment_id]
        if len(payments) == len(invoice.payments or []):
            raise RecordNotFoundError(f"Payment {payment_id} not found")
        invoice.payments = payments
        invoice.status = payment_status(invoice, payments)
        await self._session.flush()

        await self._audit.log_event(
            actor, "payment_removed", "invoice", invoice_id,
            {"payment_id": payment_id, "status": invoice.status.value},
        )
        return invoice
