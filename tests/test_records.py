"""
Tests for invoices, payments, chat transcripts and notification dismissal.
"""

import pytest
from sqlalchemy import select

from case_ledger.models import (
    ArchivedChat,
    ChatMessage,
    InvoiceStatus,
    Notification,
    NotificationKind,
    NotificationSeverity,
)
from case_ledger.services import (
    ChatService,
    CreateInvoiceInput,
    DependencyMissingError,
    InvalidInputError,
    InvoiceService,
    NotificationService,
    PermissionDeniedError,
    RecordNotFoundError,
    ScopeResolver,
)


class TestInvoices:
    """Payments drive the invoice status."""

    async def test_payments_move_status(self, session, make_client, admin):
        client = await make_client(assigned_to="Albert")
        service = InvoiceService(session)
        scope = ScopeResolver(admin)

        invoice = await service.create_invoice(
            CreateInvoiceInput(customer_id=client.customer_id, amount=1000, description="Retainer"),
            admin,
            scope,
        )
        assert invoice.assigned_to == "Albert"
        assert invoice.status == InvoiceStatus.PENDING

        invoice = await service.record_payment(invoice.invoice_id, 400, admin, scope)
        assert invoice.status == InvoiceStatus.PARTIAL

        invoice = await service.record_payment(invoice.invoice_id, 600, admin, scope, method="cash")
        assert invoice.status == InvoiceStatus.PAID

        first = invoice.payments[0]["payment_id"]
        invoice = await service.remove_payment(invoice.invoice_id, first, admin)
        assert invoice.status == InvoiceStatus.PARTIAL
        assert len(invoice.payments) == 1

    async def test_non_positive_payment_is_rejected(self, session, make_client, admin):
        client = await make_client()
        service = InvoiceService(session)
        invoice = await service.create_invoice(
            CreateInvoiceInput(customer_id=client.customer_id, amount=500), admin, ScopeResolver(admin)
        )

        with pytest.raises(InvalidInputError):
            await service.record_payment(invoice.invoice_id, 0, admin, ScopeResolver(admin))

    async def test_unknown_customer_is_a_dependency_error(self, session, admin):
        with pytest.raises(DependencyMissingError):
            await InvoiceService(session).create_invoice(
                CreateInvoiceInput(customer_id="C-XX-NONE", amount=10), admin, ScopeResolver(admin)
            )

    async def test_consultant_sees_only_own_invoices(self, session, make_client, admin, consultant):
        mine = await make_client(assigned_to="Kejdi")
        other = await make_client(assigned_to="Albert")
        service = InvoiceService(session)
        for client in (mine, other):
            await service.create_invoice(
                CreateInvoiceInput(customer_id=client.customer_id, amount=100), admin, ScopeResolver(admin)
            )

        visible = await service.list_invoices(ScopeResolver(consultant))
        assert [i.customer_id for i in visible] == [mine.customer_id]

    async def test_only_admin_deletes(self, session, make_client, admin, consultant):
        client = await make_client(assigned_to="Kejdi")
        service = InvoiceService(session)
        invoice = await service.create_invoice(
            CreateInvoiceInput(customer_id=client.customer_id, amount=100), admin, ScopeResolver(admin)
        )

        with pytest.raises(PermissionDeniedError):
            await service.delete_invoice(invoice.invoice_id, consultant)

        await service.delete_invoice(invoice.invoice_id, admin)
        with pytest.raises(RecordNotFoundError):
            await service.get_invoice(invoice.invoice_id, ScopeResolver(admin))


class TestChat:
    """Staff messages, read receipts and manual transcript archive."""

    async def test_post_and_archive_transcript(self, session, make_lead, intake, mailer):
        lead = await make_lead()
        service = ChatService(session, mailer)
        scope = ScopeResolver(intake)

        message = await service.post_message(lead.customer_id, "  Please send your passport ", intake, scope)
        session.add(ChatMessage(
            message_id="M-CLIENT",
            customer_id=lead.customer_id,
            sender="client",
            text="Sent!",
        ))
        await session.flush()
        await session.commit()
        await mailer.drain()

        assert message.text == "Please send your passport"
        assert message.sender_name == "Kejdi 1"
        assert mailer.channel.sent[0]["subject"] == "New message from your lawyer"
        assert await service.mark_read(lead.customer_id, scope) == 1

        archived = await service.clear_transcript(lead.customer_id, intake, scope)

        assert archived.reason == "manual"
        assert len(archived.messages) == 2
        assert await service.list_messages(lead.customer_id, scope) == []
        stored = (await session.execute(select(ArchivedChat))).scalars().all()
        assert [c.archived_chat_id for c in stored] == [archived.archived_chat_id]

    async def test_empty_message_is_rejected(self, session, make_lead, intake, mailer):
        lead = await make_lead()
        with pytest.raises(InvalidInputError):
            await ChatService(session, mailer).post_message(
                lead.customer_id, "   ", intake, ScopeResolver(intake)
            )

    async def test_chat_outside_scope_is_not_found(self, session, make_lead, consultant, mailer):
        lead = await make_lead()
        with pytest.raises(RecordNotFoundError):
            await ChatService(session, mailer).list_messages(lead.customer_id, ScopeResolver(consultant))


class TestNotifications:
    """Dismissal is limited to notifications the caller can see."""

    async def test_dismiss_outside_scope_is_not_found(
        self, session, make_lead, intake, other_intake
    ):
        lead = await make_lead(assigned_to="Kejdi 1", created_by="kejdi1")
        session.add(Notification(
            notification_id="CN-1",
            customer_id=lead.customer_id,
            kind=NotificationKind.FOLLOW,
            severity=NotificationSeverity.WARN,
            message="Follow up Ana Hoxha",
        ))
        await session.commit()
        service = NotificationService(session)

        with pytest.raises(RecordNotFoundError):
            await service.dismiss("CN-1", other_intake, ScopeResolver(other_intake))
        assert await session.get(Notification, "CN-1") is not None

        await service.dismiss("CN-1", intake, ScopeResolver(intake))
        await session.flush()

        remaining = (await session.execute(select(Notification))).scalars().all()
        assert remaining == []
