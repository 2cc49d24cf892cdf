"""
Tests for the Lifecycle Machine - lead transitions and table migration.

These tests verify:
1. TRANSITIONS: only graph edges are accepted
2. PROMOTION: CLIENT moves the lead to the confirmed-client table
3. AUTO-ADVANCE: first proposal/contract dispatch advances the status
4. DEMOTION: admin-only, clears ownership, retypes cases
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from case_ledger.models import (
    AccountHistory,
    AuditLog,
    Case,
    CaseType,
    ConfirmedClient,
    Invoice,
    Lead,
    LeadStatus,
    Notification,
    NotificationKind,
    NotificationSeverity,
)
from case_ledger.services import (
    AccountUpdate,
    IllegalTransitionError,
    LifecycleMachine,
    RecordNotFoundError,
    ScopeResolver,
    VersionConflictError,
)
from case_ledger.services.lifecycle import validate_lead_transition


async def _count(session, model, *conditions) -> int:
    return await session.scalar(select(func.count()).select_from(model).where(*conditions))


async def _actions(session, customer_id: str) -> list[str]:
    result = await session.execute(
        select(AuditLog.action).where(AuditLog.resource_id == customer_id).order_by(AuditLog.id)
    )
    return list(result.scalars().all())


# =============================================================================
# TEST: TRANSITION GRAPH
# =============================================================================


class TestTransitionGraph:
    """Edges of the lead status graph."""

    @pytest.mark.parametrize("current,target", [
        (LeadStatus.INTAKE, LeadStatus.SEND_PROPOSAL),
        (LeadStatus.WAITING_APPROVAL, LeadStatus.SEND_RESPONSE),
        (LeadStatus.WAITING_ACCEPTANCE, LeadStatus.CLIENT),
        (LeadStatus.ON_HOLD, LeadStatus.DISCUSSING_Q),
        (LeadStatus.ARCHIVED, LeadStatus.INTAKE),
        (LeadStatus.SEND_CONTRACT, LeadStatus.ON_HOLD),
    ])
    def test_allowed_edges(self, current, target):
        validate_lead_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (LeadStatus.INTAKE, LeadStatus.CLIENT),
        (LeadStatus.INTAKE, LeadStatus.WAITING_APPROVAL),
        (LeadStatus.SEND_CONTRACT, LeadStatus.SEND_PROPOSAL),
        (LeadStatus.ARCHIVED, LeadStatus.SEND_PROPOSAL),
    ])
    def test_rejected_edges(self, current, target):
        with pytest.raises(IllegalTransitionError):
            validate_lead_transition(current, target)

    def test_same_status_is_a_no_op(self):
        validate_lead_transition(LeadStatus.ON_HOLD, LeadStatus.ON_HOLD)


# =============================================================================
# TEST: LEAD UPDATES
# =============================================================================


class TestLeadUpdates:
    """Status changes that keep the record in the lead table."""

    async def test_status_change_records_history_and_audit(
        self, session, make_lead, intake, mailer
    ):
        lead = await make_lead()
        machine = LifecycleMachine(session, mailer)

        updated = await machine.update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.SEND_PROPOSAL),
            intake,
            ScopeResolver(intake),
        )

        assert updated.status == LeadStatus.SEND_PROPOSAL
        assert updated.version == 2
        assert updated.status_history[-1]["status"] == "SEND_PROPOSAL"
        assert updated.status_history[-1]["changed_by"] == "kejdi1"

        rows = (await session.execute(
            select(AccountHistory).where(AccountHistory.customer_id == lead.customer_id)
        )).scalars().all()
        assert [(r.status_from, r.status_to) for r in rows] == [("INTAKE", "SEND_PROPOSAL")]
        assert rows[0].history_id.startswith("CH")
        assert rows[0].changed_by_name == "Kejdi 1"
        assert await _actions(session, lead.customer_id) == ["status_change"]

    async def test_illegal_transition_writes_nothing(self, session, make_lead, intake, mailer):
        lead = await make_lead()

        with pytest.raises(IllegalTransitionError):
            await LifecycleMachine(session, mailer).update_lead(
                lead.customer_id,
                AccountUpdate(expected_version=1, status=LeadStatus.WAITING_ACCEPTANCE),
                intake,
                ScopeResolver(intake),
            )

        refreshed = await session.get(Lead, lead.customer_id, populate_existing=True)
        assert refreshed.status == LeadStatus.INTAKE
        assert refreshed.version == 1

    async def test_stale_version_is_rejected(self, session, make_lead, intake, mailer):
        lead = await make_lead()

        with pytest.raises(VersionConflictError) as exc_info:
            await LifecycleMachine(session, mailer).update_lead(
                lead.customer_id,
                AccountUpdate(expected_version=4, fields={"notes": "late"}),
                intake,
                ScopeResolver(intake),
            )
        assert exc_info.value.current["version"] == 1

    async def test_out_of_scope_lead_is_not_found(
        self, session, make_lead, other_intake, mailer
    ):
        lead = await make_lead(assigned_to="Kejdi 1", created_by="kejdi1")

        with pytest.raises(RecordNotFoundError):
            await LifecycleMachine(session, mailer).update_lead(
                lead.customer_id,
                AccountUpdate(expected_version=1, fields={"notes": "peek"}),
                other_intake,
                ScopeResolver(other_intake),
            )

    async def test_status_change_clears_notifications(
        self, session, make_lead, intake, mailer
    ):
        lead = await make_lead(status=LeadStatus.SEND_PROPOSAL)
        session.add(Notification(
            notification_id="N-TEST-1",
            customer_id=lead.customer_id,
            kind=NotificationKind.RESPOND,
            severity=NotificationSeverity.WARN,
            message="Respond to Ana Hoxha",
        ))
        await session.commit()

        await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.ON_HOLD),
            intake,
            ScopeResolver(intake),
        )

        assert await _count(session, Notification, Notification.customer_id == lead.customer_id) == 0

    async def test_field_edit_without_status_is_audited_as_update(
        self, session, make_lead, intake, mailer
    ):
        lead = await make_lead()

        updated = await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, fields={"phone": "+355 69 000 0000", "version": 99}),
            intake,
            ScopeResolver(intake),
        )

        assert updated.phone == "+355 69 000 0000"
        assert updated.version == 2
        assert await _actions(session, lead.customer_id) == ["update"]


# =============================================================================
# TEST: AUTOMATIC ADVANCES
# =============================================================================


class TestAutomaticAdvance:
    """First dispatch of a proposal or contract moves the lead forward."""

    async def test_proposal_dispatch_advances_to_waiting_approval(
        self, session, make_lead, intake, mailer
    ):
        lead = await make_lead(status=LeadStatus.SEND_PROPOSAL)
        sent_at = datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc)

        updated = await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, fields={"proposal_sent_at": sent_at}),
            intake,
            ScopeResolver(intake),
        )
        await session.commit()
        await mailer.drain()

        assert updated.status == LeadStatus.WAITING_APPROVAL
        assert updated.status_history[-1]["changed_by"] == "system"
        rows = (await session.execute(
            select(AccountHistory).where(AccountHistory.customer_id == lead.customer_id)
        )).scalars().all()
        assert rows[-1].changed_by == "system"
        assert "proposal_sent" in await _actions(session, lead.customer_id)
        assert [m["subject"] for m in mailer.channel.sent][0].startswith("Your Service Proposal is Ready")

    async def test_proposal_mail_waits_for_commit(self, session, make_lead, intake, mailer):
        lead = await make_lead(status=LeadStatus.SEND_PROPOSAL)

        await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(
                expected_version=1,
                fields={"proposal_sent_at": datetime(2026, 3, 3, tzinfo=timezone.utc)},
            ),
            intake,
            ScopeResolver(intake),
        )
        await mailer.drain()
        assert mailer.channel.sent == []

        await session.commit()
        await mailer.drain()
        assert len(mailer.channel.sent) == 1

    async def test_rollback_discards_queued_mail(self, session, make_lead, intake, mailer):
        lead = await make_lead(status=LeadStatus.SEND_PROPOSAL)
        customer_id = lead.customer_id

        await LifecycleMachine(session, mailer).update_lead(
            customer_id,
            AccountUpdate(
                expected_version=1,
                fields={"proposal_sent_at": datetime(2026, 3, 3, tzinfo=timezone.utc)},
            ),
            intake,
            ScopeResolver(intake),
        )
        await session.rollback()
        await mailer.drain()

        assert mailer.channel.sent == []
        refreshed = await session.get(Lead, customer_id, populate_existing=True)
        assert refreshed.status == LeadStatus.SEND_PROPOSAL
        assert refreshed.proposal_sent_at is None

        # A later commit on the same session does not resurrect the dropped mail
        await session.commit()
        await mailer.drain()
        assert mailer.channel.sent == []

    async def test_second_proposal_dispatch_does_not_advance(
        self, session, make_lead, intake, mailer
    ):
        lead = await make_lead(
            status=LeadStatus.SEND_PROPOSAL,
            proposal_sent_at=datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc),
        )

        updated = await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(
                expected_version=1,
                fields={"proposal_sent_at": datetime(2026, 3, 4, tzinfo=timezone.utc)},
            ),
            intake,
            ScopeResolver(intake),
        )

        assert updated.status == LeadStatus.SEND_PROPOSAL

    async def test_contract_dispatch_advances_to_waiting_acceptance(
        self, session, make_lead, intake, mailer
    ):
        lead = await make_lead(
            status=LeadStatus.SEND_CONTRACT,
            proposal_fields={"serviceFeeALL": 50000},
        )

        updated = await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(
                expected_version=1,
                fields={"contract_sent_at": datetime(2026, 3, 5, tzinfo=timezone.utc)},
            ),
            intake,
            ScopeResolver(intake),
        )
        await session.commit()
        await mailer.drain()

        assert updated.status == LeadStatus.WAITING_ACCEPTANCE
        assert "TOTAL: 50,000 ALL" in mailer.channel.sent[0]["body"]


# =============================================================================
# TEST: PROMOTION TO CONFIRMED CLIENT
# =============================================================================


class TestPromotion:
    """WAITING_ACCEPTANCE -> CLIENT moves the record across tables."""

    async def test_client_requires_an_assignee(self, session, make_lead, admin, mailer):
        lead = await make_lead(status=LeadStatus.WAITING_ACCEPTANCE, assigned_to="")

        with pytest.raises(IllegalTransitionError):
            await LifecycleMachine(session, mailer).update_lead(
                lead.customer_id,
                AccountUpdate(expected_version=1, status=LeadStatus.CLIENT),
                admin,
                ScopeResolver(admin),
            )
        assert await session.get(ConfirmedClient, lead.customer_id) is None

    async def test_assignee_in_same_update_satisfies_client_rule(
        self, session, make_lead, admin, mailer
    ):
        lead = await make_lead(status=LeadStatus.WAITING_ACCEPTANCE, assigned_to="")

        client = await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.CLIENT, assigned_to="Dr. Albert"),
            admin,
            ScopeResolver(admin),
        )

        assert isinstance(client, ConfirmedClient)
        assert client.assigned_to == "Albert"

    async def test_promotion_moves_record_and_drafts_invoice(
        self, session, make_lead, make_case, admin, mailer
    ):
        lead = await make_lead(
            status=LeadStatus.WAITING_ACCEPTANCE,
            assigned_to="Kejdi",
            services=["residency_permit"],
            proposal_fields={"serviceFeeALL": "40000", "poaFeeALL": 5000, "otherFeesALL": "n/a"},
        )
        customer_id = lead.customer_id
        case = await make_case(customer_id, CaseType.CUSTOMER, "Kejdi 1")

        client = await LifecycleMachine(session, mailer).update_lead(
            customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.CLIENT),
            admin,
            ScopeResolver(admin),
        )
        await session.commit()
        await mailer.drain()

        assert isinstance(client, ConfirmedClient)
        assert client.version == 2
        assert client.confirmed_at is not None
        assert client.source_customer_id == customer_id
        assert await _count(session, Lead, Lead.customer_id == customer_id) == 0
        assert await _count(session, ConfirmedClient, ConfirmedClient.customer_id == customer_id) == 1

        invoice = (await session.execute(
            select(Invoice).where(Invoice.customer_id == customer_id)
        )).scalar_one()
        assert invoice.amount == 45000
        assert invoice.auto_drafted is True
        assert invoice.assigned_to == "Kejdi"
        assert "Residency Permit" in invoice.description

        synced = await session.get(Case, case.case_id, populate_existing=True)
        assert synced.case_type == CaseType.CLIENT
        assert synced.assigned_to == "Kejdi"
        assert synced.version == 2

        actions = await _actions(session, customer_id)
        assert actions[-1] == "confirm"
        assert mailer.channel.sent[-1]["subject"].startswith("Update on your file")

    async def test_no_invoice_without_fees(self, session, make_lead, admin, mailer):
        lead = await make_lead(status=LeadStatus.WAITING_ACCEPTANCE, assigned_to="Albert")

        await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.CLIENT),
            admin,
            ScopeResolver(admin),
        )

        assert await _count(session, Invoice, Invoice.customer_id == lead.customer_id) == 0

    async def test_off_roster_owner_clears_case_assignee(
        self, session, make_lead, make_case, admin, mailer
    ):
        lead = await make_lead(status=LeadStatus.WAITING_ACCEPTANCE, assigned_to="Lenci")
        case = await make_case(lead.customer_id, CaseType.CUSTOMER, "Kejdi 2")

        await LifecycleMachine(session, mailer).update_lead(
            lead.customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.CLIENT),
            admin,
            ScopeResolver(admin),
        )

        synced = await session.get(Case, case.case_id, populate_existing=True)
        assert synced.case_type == CaseType.CLIENT
        assert synced.assigned_to == ""


# =============================================================================
# TEST: CONFIRMED CLIENT UPDATES AND DEMOTION
# =============================================================================


class TestConfirmedClients:
    """Edits and the admin-only way back to the lead pipeline."""

    async def test_plain_update_keeps_client_in_place(self, session, make_client, consultant, mailer):
        client = await make_client(assigned_to="Kejdi")

        updated = await LifecycleMachine(session, mailer).update_confirmed_client(
            client.customer_id,
            AccountUpdate(expected_version=1, fields={"notes": "documents received"}),
            consultant,
            ScopeResolver(consultant),
        )

        assert isinstance(updated, ConfirmedClient)
        assert updated.notes == "documents received"
        assert updated.version == 2

    async def test_demotion_requires_admin(self, session, make_client, consultant, mailer):
        client = await make_client(assigned_to="Kejdi")

        with pytest.raises(IllegalTransitionError):
            await LifecycleMachine(session, mailer).update_confirmed_client(
                client.customer_id,
                AccountUpdate(expected_version=1, status=LeadStatus.DISCUSSING_Q),
                consultant,
                ScopeResolver(consultant),
            )

    async def test_admin_demotion_moves_back_and_clears_assignee(
        self, session, make_client, make_case, admin, mailer
    ):
        client = await make_client(assigned_to="Kejdi")
        case = await make_case(client.customer_id, CaseType.CLIENT, "Kejdi", created_by="admirim")

        lead = await LifecycleMachine(session, mailer).update_confirmed_client(
            client.customer_id,
            AccountUpdate(expected_version=1, status=LeadStatus.DISCUSSING_Q),
            admin,
            ScopeResolver(admin),
        )
        await session.commit()

        assert isinstance(lead, Lead)
        assert lead.status == LeadStatus.DISCUSSING_Q
        assert lead.assigned_to == ""
        assert lead.version == 2
        assert await session.get(ConfirmedClient, client.customer_id) is None

        synced = await session.get(Case, case.case_id, populate_existing=True)
        assert synced.case_type == CaseType.CUSTOMER
        assert synced.assigned_to == ""
        assert (await _actions(session, client.customer_id))[-1] == "demote"
