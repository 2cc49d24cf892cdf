"""
Tests for the Client Portal - links, the client view and client responses.

These tests verify:
1. LINKS: only the hash is stored, admin-only management, expiry
2. PROPOSAL: accept advances to SEND_CONTRACT, revision to DISCUSSING_Q
3. CONTRACT: accept confirms the client with an auto-assigned lawyer
4. HTTP: public routes work with the link alone
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from case_ledger.core.security import hash_content
from case_ledger.models import (
    AccountHistory,
    AuditLog,
    ChatMessage,
    ConfirmedClient,
    Invoice,
    Lead,
    LeadStatus,
    PortalToken,
    RecordType,
    utcnow,
)
from case_ledger.services import (
    IllegalTransitionError,
    LinkExpiredError,
    PermissionDeniedError,
    PortalService,
    RecordNotFoundError,
)
from case_ledger.services import portal as portal_module

API = "/api"


async def _history(session, customer_id: str) -> list[tuple[str, str, str]]:
    rows = (await session.execute(
        select(AccountHistory).where(AccountHistory.customer_id == customer_id)
    )).scalars().all()
    return [(r.status_from, r.status_to, r.changed_by) for r in rows]


async def _messages(session, customer_id: str) -> list[ChatMessage]:
    result = await session.execute(
        select(ChatMessage).where(ChatMessage.customer_id == customer_id)
    )
    return list(result.scalars().all())


@pytest.fixture
def office_inbox(monkeypatch):
    monkeypatch.setattr(portal_module.settings, "admin_email", "office@example.com")
    return "office@example.com"


# =============================================================================
# TEST: LINKS
# =============================================================================


class TestPortalLinks:
    """Issuing, reading, extending and revoking links."""

    async def test_issue_stores_only_the_hash_and_mails_the_link(
        self, session, make_lead, admin, mailer, monkeypatch
    ):
        monkeypatch.setattr(portal_module.settings, "app_url", "https://ledger.example.com")
        lead = await make_lead()
        service = PortalService(session, mailer)

        secret, token = await service.issue_token(lead.customer_id, admin)
        await session.commit()
        await mailer.drain()

        assert len(secret) == 64
        assert token.token_hash == hash_content(secret)
        assert token.record_type == RecordType.LEAD
        assert token.created_by == "admirim"
        assert (await session.get(PortalToken, secret)) is None

        sent = mailer.channel.sent
        assert [m["to"] for m in sent] == ["ana@example.com"]
        assert f"https://ledger.example.com/portal/{secret}" in sent[0]["body"]

        actions = (await session.execute(
            select(AuditLog.action).where(AuditLog.resource == "portal_token")
        )).scalars().all()
        assert actions == ["create"]

    async def test_reissue_replaces_the_old_link(self, session, make_lead, admin, mailer):
        lead = await make_lead()
        service = PortalService(session, mailer)

        first, _ = await service.issue_token(lead.customer_id, admin)
        second, _ = await service.issue_token(lead.customer_id, admin)
        await session.commit()

        with pytest.raises(RecordNotFoundError):
            await service.resolve(first)
        assert (await service.resolve(second)).customer_id == lead.customer_id

    async def test_only_admins_manage_links(self, session, make_lead, manager, mailer):
        lead = await make_lead()
        service = PortalService(session, mailer)

        with pytest.raises(PermissionDeniedError):
            await service.issue_token(lead.customer_id, manager)
        with pytest.raises(PermissionDeniedError):
            await service.get_token(lead.customer_id, manager)

    async def test_expired_link_is_refused(self, session, make_lead, admin, mailer):
        lead = await make_lead()
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin, expires_in_days=1)

        with pytest.raises(LinkExpiredError):
            await service.view(secret, now=utcnow() + timedelta(days=2))

    async def test_extend_is_clamped_and_builds_on_current_expiry(
        self, session, make_lead, admin, mailer
    ):
        lead = await make_lead()
        service = PortalService(session, mailer)
        _, token = await service.issue_token(lead.customer_id, admin, expires_in_days=10)
        before = token.expires_at

        extended = await service.extend_token(lead.customer_id, 9999, admin)

        assert extended.expires_at == before + timedelta(days=365)

    async def test_revoke_removes_the_link(self, session, make_lead, admin, mailer):
        lead = await make_lead()
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin)

        await service.revoke_token(lead.customer_id, admin)

        assert await service.get_token(lead.customer_id, admin) is None
        with pytest.raises(RecordNotFoundError):
            await service.resolve(secret)


# =============================================================================
# TEST: PROPOSAL RESPONSES
# =============================================================================


class TestProposalResponse:
    """The client answers a proposal waiting for approval."""

    async def test_accept_advances_to_send_contract(
        self, session, make_lead, admin, mailer, office_inbox
    ):
        lead = await make_lead(status=LeadStatus.WAITING_APPROVAL)
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin)

        record = await service.respond_proposal(secret, "accept", "Looks good")
        await session.commit()
        await mailer.drain()

        assert record.status == LeadStatus.SEND_CONTRACT
        assert record.version == 2
        assert record.proposal_accepted_at is not None
        assert record.status_history[-1]["changed_by"] == "portal-client"
        assert await _history(session, lead.customer_id) == [
            ("WAITING_APPROVAL", "SEND_CONTRACT", "portal-client")
        ]
        assert [m.text for m in await _messages(session, lead.customer_id)] == [
            "[Proposal Accepted] Looks good"
        ]
        alerts = [m for m in mailer.channel.sent if m["to"] == office_inbox]
        assert alerts[0]["subject"] == "Proposal accepted: Ana Hoxha"

    async def test_revision_moves_to_discussing_with_a_chat_message(
        self, session, make_lead, admin, mailer
    ):
        lead = await make_lead(status=LeadStatus.WAITING_APPROVAL)
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin)

        record = await service.respond_proposal(secret, "revision")

        assert record.status == LeadStatus.DISCUSSING_Q
        messages = await _messages(session, lead.customer_id)
        assert [(m.sender, m.text) for m in messages] == [
            ("client", "[Revision Request] The client has requested revisions to the proposal.")
        ]

    async def test_accept_outside_waiting_approval_is_rejected(
        self, session, make_lead, admin, mailer
    ):
        lead = await make_lead(status=LeadStatus.SEND_PROPOSAL)
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin)

        with pytest.raises(IllegalTransitionError):
            await service.respond_proposal(secret, "accept")

        refreshed = await session.get(Lead, lead.customer_id, populate_existing=True)
        assert refreshed.status == LeadStatus.SEND_PROPOSAL
        assert refreshed.version == 1


# =============================================================================
# TEST: CONTRACT RESPONSES
# =============================================================================


class TestContractResponse:
    """The client accepts the contract and becomes a confirmed client."""

    async def test_accept_confirms_and_assigns_the_less_loaded_lawyer(
        self, session, make_lead, make_client, admin, mailer
    ):
        await make_client(name="Dritan Leka", assigned_to="Albert")
        await make_client(name="Elira Shehu", assigned_to="Albert")
        lead = await make_lead(
            status=LeadStatus.WAITING_ACCEPTANCE,
            proposal_fields={"serviceFeeALL": 30000},
        )
        customer_id = lead.customer_id
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(customer_id, admin)

        client = await service.respond_contract(secret, "  Ana B. Hoxha ")
        await session.commit()

        assert isinstance(client, ConfirmedClient)
        assert client.assigned_to == "Kejdi"
        assert client.contract_signed_by_name == "Ana B. Hoxha"
        assert client.contract_accepted_at is not None
        assert await session.get(Lead, customer_id) is None
        assert await _history(session, customer_id) == [
            ("WAITING_ACCEPTANCE", "CLIENT", "portal-client")
        ]

        invoice = (await session.execute(
            select(Invoice).where(Invoice.customer_id == customer_id)
        )).scalar_one()
        assert invoice.amount == 30000

        token = (await session.execute(
            select(PortalToken).where(PortalToken.customer_id == customer_id)
        )).scalar_one()
        assert token.record_type == RecordType.CONFIRMED_CLIENT

        messages = await _messages(session, customer_id)
        assert messages[-1].text.startswith("[Contract Accepted]")
        assert '"Ana B. Hoxha"' in messages[-1].text

    async def test_tie_goes_to_albert_and_signature_defaults_to_name(
        self, session, make_lead, admin, mailer
    ):
        lead = await make_lead(status=LeadStatus.WAITING_ACCEPTANCE)
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin)

        client = await service.respond_contract(secret)

        assert client.assigned_to == "Albert"
        assert client.contract_signed_by_name == "Ana Hoxha"

    async def test_contract_before_it_was_sent_is_rejected(
        self, session, make_lead, admin, mailer
    ):
        lead = await make_lead(status=LeadStatus.SEND_CONTRACT)
        service = PortalService(session, mailer)
        secret, _ = await service.issue_token(lead.customer_id, admin)

        with pytest.raises(IllegalTransitionError):
            await service.respond_contract(secret)
        assert await session.get(ConfirmedClient, lead.customer_id) is None


# =============================================================================
# TEST: HTTP
# =============================================================================


class TestPortalOverHttp:
    """Admin routes need a staff token; client routes need only the link."""

    async def test_issue_view_and_respond(self, client, auth_headers, make_lead):
        lead = await make_lead(status=LeadStatus.WAITING_APPROVAL)

        refused = await client.post(
            f"{API}/portal/tokens",
            json={"customer_id": lead.customer_id},
            headers=auth_headers("lenci"),
        )
        assert refused.status_code == 403

        issued = await client.post(
            f"{API}/portal/tokens",
            json={"customer_id": lead.customer_id},
            headers=auth_headers("admirim"),
        )
        assert issued.status_code == 201
        secret = issued.json()["token"]

        view = await client.get(f"{API}/portal/{secret}")
        assert view.status_code == 200
        assert view.json()["client"]["customer_id"] == lead.customer_id

        answered = await client.post(
            f"{API}/portal/{secret}/respond-proposal", json={"action": "accept"}
        )
        assert answered.status_code == 200
        assert answered.json()["status"] == "SEND_CONTRACT"

        meta = await client.get(
            f"{API}/portal/tokens/{lead.customer_id}", headers=auth_headers("admirim")
        )
        assert "token" not in meta.json()

    async def test_expired_link_is_410(self, client, session, auth_headers, make_lead):
        lead = await make_lead()
        issued = await client.post(
            f"{API}/portal/tokens",
            json={"customer_id": lead.customer_id},
            headers=auth_headers("admirim"),
        )
        secret = issued.json()["token"]

        await session.execute(
            update(PortalToken)
            .where(PortalToken.customer_id == lead.customer_id)
            .values(expires_at=utcnow() - timedelta(minutes=1))
        )
        await session.commit()

        response = await client.get(f"{API}/portal/{secret}")
        assert response.status_code == 410

    async def test_unknown_link_is_404(self, client):
        response = await client.get(f"{API}/portal/{'0' * 64}")
        assert response.status_code == 404
