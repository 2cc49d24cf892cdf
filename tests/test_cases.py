"""
Tests for the Case Service - parent resolution, team rules, sub-workflow.
"""

import pytest
from sqlalchemy import select

from case_ledger.models import AuditLog, Case, CaseHistory, CaseState, CaseType
from case_ledger.services import (
    CaseFilters,
    CaseService,
    CaseUpdate,
    CreateCaseInput,
    DependencyMissingError,
    IllegalTransitionError,
    RecordNotFoundError,
    ScopeResolver,
    TeamBoundaryError,
    VersionConflictError,
)


# =============================================================================
# TEST: CREATION
# =============================================================================


class TestCreateCase:
    """Where a new case attaches and who may own it."""

    async def test_intake_case_attaches_to_lead(self, session, make_lead, intake, mailer):
        lead = await make_lead()

        case = await CaseService(session, mailer).create_case(
            CreateCaseInput(customer_id=f" {lead.customer_id} ", title="Visa D"),
            intake,
            ScopeResolver(intake),
        )

        assert case.case_type == CaseType.CUSTOMER
        assert case.case_id.startswith("CC")
        assert case.assigned_to == "Kejdi 1"
        assert case.version == 1
        history = (await session.execute(
            select(CaseHistory).where(CaseHistory.case_id == case.case_id)
        )).scalars().all()
        assert [(h.state_from, h.state_in) for h in history] == [("INTAKE", "INTAKE")]

    async def test_consultant_case_attaches_to_confirmed_client(
        self, session, make_client, consultant, mailer
    ):
        client = await make_client(assigned_to="Kejdi")

        case = await CaseService(session, mailer).create_case(
            CreateCaseInput(customer_id=client.customer_id),
            consultant,
            ScopeResolver(consultant),
        )

        assert case.case_type == CaseType.CLIENT
        assert case.case_id.startswith("CL")

    async def test_missing_parent_is_a_dependency_error(self, session, intake, mailer):
        with pytest.raises(DependencyMissingError):
            await CaseService(session, mailer).create_case(
                CreateCaseInput(customer_id="C-K1-NOPE"), intake, ScopeResolver(intake)
            )

    async def test_empty_customer_id_is_a_dependency_error(self, session, admin, mailer):
        with pytest.raises(DependencyMissingError):
            await CaseService(session, mailer).create_case(
                CreateCaseInput(customer_id="  "), admin, ScopeResolver(admin)
            )

    async def test_admin_needs_customer_scope_for_leads(self, session, make_lead, admin, mailer):
        lead = await make_lead()
        service = CaseService(session, mailer)

        with pytest.raises(DependencyMissingError):
            await service.create_case(
                CreateCaseInput(customer_id=lead.customer_id, assigned_to="Kejdi 2"),
                admin,
                ScopeResolver(admin),
            )

        case = await service.create_case(
            CreateCaseInput(customer_id=lead.customer_id, assigned_to="Kejdi 2", case_scope="customer"),
            admin,
            ScopeResolver(admin),
        )
        assert case.case_type == CaseType.CUSTOMER

    async def test_client_case_rejects_intake_assignee(self, session, make_client, admin, mailer):
        client = await make_client()

        with pytest.raises(TeamBoundaryError):
            await CaseService(session, mailer).create_case(
                CreateCaseInput(customer_id=client.customer_id, assigned_to="Kejdi 1"),
                admin,
                ScopeResolver(admin),
            )


# =============================================================================
# TEST: STATE CHANGES
# =============================================================================


class TestChangeState:
    """Sub-workflow edges and their history rows."""

    async def test_forward_step_records_history(self, session, make_lead, make_case, intake, mailer):
        lead = await make_lead()
        case = await make_case(lead.customer_id)

        updated, entry = await CaseService(session, mailer).change_state(
            case.case_id, CaseState.SEND_PROPOSAL, intake, ScopeResolver(intake), expected_version=1
        )
        await session.commit()
        await mailer.drain()

        assert updated.state == CaseState.SEND_PROPOSAL
        assert updated.version == 2
        assert (entry.state_from, entry.state_in) == ("INTAKE", "SEND_PROPOSAL")
        assert mailer.channel.sent[0]["subject"] == "Case update: Residency permit"

    @pytest.mark.parametrize("start,target", [
        (CaseState.INTAKE, CaseState.SEND_CONTRACT),
        (CaseState.WAITING_RESPONSE_C, CaseState.INTAKE),
        (CaseState.SEND_PROPOSAL, CaseState.DISCUSSING_Q),
    ])
    async def test_off_graph_steps_are_rejected(
        self, session, make_lead, make_case, intake, mailer, start, target
    ):
        lead = await make_lead()
        case = await make_case(lead.customer_id, state=start)

        with pytest.raises(IllegalTransitionError):
            await CaseService(session, mailer).change_state(
                case.case_id, target, intake, ScopeResolver(intake), expected_version=1
            )

    async def test_discussion_loops_back_to_proposal(
        self, session, make_lead, make_case, intake, mailer
    ):
        lead = await make_lead()
        case = await make_case(lead.customer_id, state=CaseState.DISCUSSING_Q)

        updated, _ = await CaseService(session, mailer).change_state(
            case.case_id, CaseState.SEND_PROPOSAL, intake, ScopeResolver(intake), expected_version=1
        )
        assert updated.state == CaseState.SEND_PROPOSAL

    async def test_stale_version_conflicts(self, session, make_lead, make_case, intake, mailer):
        lead = await make_lead()
        case = await make_case(lead.customer_id)

        with pytest.raises(VersionConflictError):
            await CaseService(session, mailer).change_state(
                case.case_id, CaseState.SEND_PROPOSAL, intake, ScopeResolver(intake), expected_version=3
            )


# =============================================================================
# TEST: UPDATES, LISTING, NOTES AND TASKS
# =============================================================================


class TestCaseRecords:
    """Field edits and the notes/tasks hanging off a case."""

    async def test_update_case_fields(self, session, make_lead, make_case, intake, mailer):
        lead = await make_lead()
        case = await make_case(lead.customer_id)

        updated = await CaseService(session, mailer).update_case(
            case.case_id,
            CaseUpdate(expected_version=1, fields={"priority": "high", "state": "SEND_CONTRACT"}),
            intake,
            ScopeResolver(intake),
        )

        assert updated.priority == "high"
        assert updated.state == CaseState.INTAKE
        assert updated.version == 2

    async def test_reassigning_client_case_to_intake_is_rejected(
        self, session, make_client, make_case, admin, mailer
    ):
        client = await make_client(assigned_to="Kejdi")
        case = await make_case(client.customer_id, CaseType.CLIENT, "Kejdi", created_by="admirim")

        with pytest.raises(TeamBoundaryError):
            await CaseService(session, mailer).update_case(
                case.case_id,
                CaseUpdate(expected_version=1, assigned_to="Kejdi 1"),
                admin,
                ScopeResolver(admin),
            )

        unchanged = await session.get(Case, case.case_id, populate_existing=True)
        assert unchanged.assigned_to == "Kejdi"
        assert unchanged.version == 1

    async def test_list_filters_and_scope(self, session, make_lead, make_case, intake, mailer):
        mine = await make_lead()
        theirs = await make_lead(assigned_to="Kejdi 2", created_by="kejdi2")
        await make_case(mine.customer_id)
        await make_case(mine.customer_id, state=CaseState.SEND_PROPOSAL)
        await make_case(theirs.customer_id, assigned_to="Kejdi 2", created_by="kejdi2")
        service = CaseService(session, mailer)

        cases, total = await service.list_cases(ScopeResolver(intake))
        assert total == 2

        cases, total = await service.list_cases(
            ScopeResolver(intake), CaseFilters(state=CaseState.SEND_PROPOSAL)
        )
        assert total == 1
        assert cases[0].state == CaseState.SEND_PROPOSAL

    async def test_notes_and_tasks(self, session, make_lead, make_case, intake, mailer):
        lead = await make_lead()
        case = await make_case(lead.customer_id)
        service = CaseService(session, mailer)
        scope = ScopeResolver(intake)

        await service.add_note(case.case_id, "Called the embassy", intake, scope)
        task = await service.add_task(case.case_id, "Translate diploma", intake, scope)
        toggled = await service.toggle_task(task.task_id, intake, scope)

        assert [n.note_text for n in await service.list_notes(case.case_id, scope)] == ["Called the embassy"]
        assert toggled.done is True

        await service.delete_task(task.task_id, intake, scope)
        assert await service.list_tasks(case.case_id, scope) == []

        actions = (await session.execute(
            select(AuditLog.action).where(AuditLog.resource == "task").order_by(AuditLog.id)
        )).scalars().all()
        assert actions == ["create", "update", "delete"]

    async def test_tasks_outside_scope_are_not_found(
        self, session, make_lead, make_case, intake, other_intake, mailer
    ):
        lead = await make_lead()
        case = await make_case(lead.customer_id)
        service = CaseService(session, mailer)
        task = await service.add_task(case.case_id, "Translate diploma", intake, ScopeResolver(intake))
        await session.commit()

        with pytest.raises(RecordNotFoundError):
            await service.toggle_task(task.task_id, other_intake, ScopeResolver(other_intake))
