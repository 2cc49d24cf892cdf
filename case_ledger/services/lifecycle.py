"""
Lifecycle Machine: status transitions for leads and confirmed clients.

A lead moves INTAKE -> SEND_PROPOSAL -> WAITING_APPROVAL -> SEND_CONTRACT ->
WAITING_ACCEPTANCE -> CLIENT, with a DISCUSSING_Q revision loop and ON_HOLD /
ARCHIVED reachable from the active stages. Reaching CLIENT moves the record
from the lead table to the confirmed-client table; an administrator can move
it back (demotion).

Guarantees:
1. Every rule is checked before the first write; a rejected request writes
   nothing (no history, no audit, no migration)
2. Each status change appends exactly one status-history entry, one
   account-history row and one audit entry
3. Dispatch timestamps set for the first time advance the status on their own;
   those steps are attributed to the system actor
4. Pending notifications are dropped whenever the status changes
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identifiers import generate_short_id
from ..models import (
    AccountHistory,
    Case,
    CaseType,
    ConfirmedClient,
    Invoice,
    InvoiceStatus,
    Lead,
    LeadStatus,
    Notification,
    utcnow,
)
from .audit import AuditService
from .concurrency import ConcurrencyGuard
from .errors import IllegalTransitionError, RecordNotFoundError, StorageFailureError
from .mailer import (
    Mailer,
    contract_ready_email,
    fee_total,
    get_mailer,
    proposal_ready_email,
    service_names,
    status_update_email,
)
from .scope import Actor, ScopeResolver, normalize_staff_name, roster_for

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================


_ACTIVE = (
    LeadStatus.INTAKE,
    LeadStatus.SEND_PROPOSAL,
    LeadStatus.WAITING_APPROVAL,
    LeadStatus.DISCUSSING_Q,
    LeadStatus.SEND_CONTRACT,
    LeadStatus.WAITING_ACCEPTANCE,
    LeadStatus.SEND_RESPONSE,
)
_PARK = (LeadStatus.ON_HOLD, LeadStatus.ARCHIVED)

LEAD_TRANSITIONS: dict[LeadStatus, frozenset[LeadStatus]] = {
    LeadStatus.INTAKE: frozenset({LeadStatus.SEND_PROPOSAL, *_PARK}),
    LeadStatus.SEND_PROPOSAL: frozenset(
        {LeadStatus.WAITING_APPROVAL, LeadStatus.DISCUSSING_Q, *_PARK}
    ),
    LeadStatus.WAITING_APPROVAL: frozenset({
        LeadStatus.SEND_CONTRACT,
        LeadStatus.DISCUSSING_Q,
        LeadStatus.SEND_PROPOSAL,
        LeadStatus.SEND_RESPONSE,
        *_PARK,
    }),
    LeadStatus.DISCUSSING_Q: frozenset(
        {LeadStatus.SEND_CONTRACT, LeadStatus.SEND_PROPOSAL, *_PARK}
    ),
    LeadStatus.SEND_CONTRACT: frozenset({LeadStatus.WAITING_ACCEPTANCE, *_PARK}),
    LeadStatus.WAITING_ACCEPTANCE: frozenset({
        LeadStatus.CLIENT,
        LeadStatus.DISCUSSING_Q,
        LeadStatus.SEND_RESPONSE,
        *_PARK,
    }),
    LeadStatus.SEND_RESPONSE: frozenset({
        LeadStatus.SEND_PROPOSAL,
        LeadStatus.SEND_CONTRACT,
        LeadStatus.DISCUSSING_Q,
        *_PARK,
    }),
    LeadStatus.ON_HOLD: frozenset({*_ACTIVE, LeadStatus.ARCHIVED}),
    LeadStatus.ARCHIVED: frozenset({LeadStatus.INTAKE}),
}

# Fields a caller may change directly; status and assignee go through rules
EDITABLE_FIELDS = frozenset({
    "name",
    "email",
    "phone",
    "services",
    "proposal_fields",
    "notes",
    "follow_up_date",
    "proposal_sent_at",
    "contract_sent_at",
    "proposal_accepted_at",
    "contract_accepted_at",
    "contract_signed_by_name",
})


def validate_lead_transition(current: LeadStatus, target: LeadStatus) -> None:
    """Raise ``IllegalTransitionError`` unless ``current -> target`` is allowed."""
    if current == target:
        return
    allowed = LEAD_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise IllegalTransitionError(
            f"Cannot move a lead from {current.value} to {target.value}"
        )


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class AccountUpdate:
    """Input for updating a lead or confirmed client."""
    expected_version: int
    fields: dict[str, Any] = field(default_factory=dict)
    status: LeadStatus | None = None
    assigned_to: str | None = None  # None = leave unchanged


@dataclass
class StatusStep:
    """One status change to record."""
    status_from: LeadStatus
    status_to: LeadStatus
    actor: Actor
    automatic: bool = False


# =============================================================================
# LIFECYCLE MACHINE
# =============================================================================


class LifecycleMachine:
    """Validates and executes account status changes and store migrations."""

    def __init__(self, session: AsyncSession, mailer: Mailer | None = None):
        self._session = session
        self._guard = ConcurrencyGuard(session)
        self._audit = AuditService(session)
        self._mailer = mailer or get_mailer()

    # =========================================================================
    # LEADS
    # =========================================================================

    async def update_lead(
        self,
        customer_id: str,
        update: AccountUpdate,
        actor: Actor,
        scope: ScopeResolver,
    ) -> Lead | ConfirmedClient:
        """
        Update a lead; may migrate it to the confirmed-client table.

        Flow:
        1. Load the lead inside the caller's scope
        2. Version check
        3. Resolve assignee against the caller's role
        4. Plan status steps (explicit + automatic) and validate them
        5. Write (conditional update, or guarded move on CLIENT)
        6. History, audit, notifications, mail
        """
        lead = await self._load(Lead, customer_id, scope)
        self._guard.check(lead, update.expected_version)

        assignee = scope.assignee_for_update(update.assigned_to)
        changes = {k: v for k, v in update.fields.items() if k in EDITABLE_FIELDS}
        if assignee is not None:
            changes["assigned_to"] = assignee

        proposal_dispatched = (
            changes.get("proposal_sent_at") is not None and lead.proposal_sent_at is None
        )
        contract_dispatched = (
            changes.get("contract_sent_at") is not None and lead.contract_sent_at is None
        )

        steps = self._plan_steps(lead, update.status, actor, proposal_dispatched, contract_dispatched)
        final_status = steps[-1].status_to if steps else lead.status

        if final_status == LeadStatus.CLIENT:
            effective = changes.get("assigned_to", lead.assigned_to)
            if not normalize_staff_name(effective):
                raise IllegalTransitionError(
                    "A confirmed client must be assigned to a staff member before moving to CLIENT"
                )

        if steps:
            changes["status"] = final_status
            changes["status_history"] = self._extend_history(lead.status_history, steps)

        try:
            if final_status == LeadStatus.CLIENT:
                record = await self._promote(lead, changes, update.expected_version, steps, actor)
            else:
                record = await self._guard.apply(Lead, customer_id, update.expected_version, changes)
                await self._record_steps(customer_id, steps)
                if not steps:
                    await self._audit.log_event(
                        actor, "update", "lead", customer_id,
                        {"fields": sorted(changes)},
                    )
        except SQLAlchemyError as e:
            logger.error(f"Storage failure updating lead {customer_id}: {e}")
            raise StorageFailureError(f"Failed to update {customer_id}") from e

        sender = actor.staff_name or None
        if proposal_dispatched:
            await self._audit.log_event(
                actor, "proposal_sent", "lead", customer_id,
                {"proposal_sent_at": changes["proposal_sent_at"]},
            )
            self._mailer.dispatch_after_commit(
                self._session, record.email, *proposal_ready_email(record.name, sender)
            )
        if contract_dispatched:
            await self._audit.log_event(
                actor, "contract_sent", "lead", customer_id,
                {"contract_sent_at": changes["contract_sent_at"]},
            )
            self._mailer.dispatch_after_commit(
                self._session,
                record.email,
                *contract_ready_email(record.name, record.proposal_fields, sender),
            )

        return record

    def _plan_steps(
        self,
        lead: Lead,
        requested: LeadStatus | None,
        actor: Actor,
        proposal_dispatched: bool,
        contract_dispatched: bool,
    ) -> list[StatusStep]:
        steps: list[StatusStep] = []
        status = lead.status

        if requested is not None and requested != status:
            validate_lead_transition(status, requested)
            steps.append(StatusStep(status, requested, actor))
            status = requested

        system = Actor.system()
        # First proposal dispatch without an explicit status advances the lead
        if proposal_dispatched and requested is None and status == LeadStatus.SEND_PROPOSAL:
            steps.append(StatusStep(status, LeadStatus.WAITING_APPROVAL, system, automatic=True))
            status = LeadStatus.WAITING_APPROVAL

        # First contract dispatch on SEND_CONTRACT advances to WAITING_ACCEPTANCE
        if contract_dispatched and status == LeadStatus.SEND_CONTRACT:
            steps.append(StatusStep(status, LeadStatus.WAITING_ACCEPTANCE, system, automatic=True))

        return steps

    # =========================================================================
    # CONFIRMED CLIENTS
    # =========================================================================

    async def update_confirmed_client(
        self,
        customer_id: str,
        update: AccountUpdate,
        actor: Actor,
        scope: ScopeResolver,
    ) -> Lead | ConfirmedClient:
        """Update a confirmed client; a non-CLIENT status demotes it (admin only)."""
        client = await self._load(ConfirmedClient, customer_id, scope)
        self._guard.check(client, update.expected_version)

        assignee = scope.assignee_for_update(update.assigned_to, confirmed=True)
        changes = {k: v for k, v in update.fields.items() if k in EDITABLE_FIELDS}
        if assignee is not None:
            changes["assigned_to"] = assignee

        target = update.status
        try:
            if target is not None and target != LeadStatus.CLIENT:
                if not actor.is_admin:
                    raise IllegalTransitionError(
                        "Only administrators can move a confirmed client back to the lead pipeline"
                    )
                return await self._demote(client, changes, update.expected_version, target, actor)

            record = await self._guard.apply(
                ConfirmedClient, customer_id, update.expected_version, changes
            )
        except SQLAlchemyError as e:
            logger.error(f"Storage failure updating client {customer_id}: {e}")
            raise StorageFailureError(f"Failed to update {customer_id}") from e

        await self._audit.log_event(
            actor, "update", "confirmed_client", customer_id,
            {"fields": sorted(changes)},
        )
        return record

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    async def _promote(
        self,
        lead: Lead,
        changes: dict[str, Any],
        expected_version: int,
        steps: list[StatusStep],
        actor: Actor,
    ) -> ConfirmedClient:
        """Move a lead into the confirmed-client table."""
        customer_id = lead.customer_id
        now = utcnow()
        overrides = {**changes, "confirmed_at": now, "source_customer_id": customer_id}

        client = await self._guard.move(Lead, ConfirmedClient, lead, expected_version, overrides)
        await self._record_steps(customer_id, steps, final_action="confirm")

        total = fee_total(client.proposal_fields)
        if total > 0:
            services = service_names(client.services)
            invoice = Invoice(
                invoice_id=generate_short_id("INV"),
                customer_id=customer_id,
                case_id=None,
                description=(
                    f"Legal Services{f' — {services}' if services else ''} — {client.name or customer_id}"
                ),
                amount=total,
                currency="ALL",
                status=InvoiceStatus.PENDING,
                created_by=actor.username,
                assigned_to=client.assigned_to,
                auto_drafted=True,
                payments=[],
            )
            self._session.add(invoice)
            await self._audit.log_event(
                actor, "auto_invoice", "invoice", invoice.invoice_id,
                {"customer_id": customer_id, "amount": total, "currency": "ALL"},
            )

        await self._sync_cases(customer_id, CaseType.CLIENT, client.assigned_to)
        await self._session.flush()

        self._mailer.dispatch_after_commit(
            self._session, client.email, *status_update_email(client.name, LeadStatus.CLIENT.value)
        )
        logger.info(f"Lead {customer_id} confirmed as client of {client.assigned_to}")
        return client

    async def _demote(
        self,
        client: ConfirmedClient,
        changes: dict[str, Any],
        expected_version: int,
        target: LeadStatus,
        actor: Actor,
    ) -> Lead:
        """Move a confirmed client back to the lead table, clearing ownership."""
        customer_id = client.customer_id
        step = StatusStep(client.status, target, actor)
        overrides = {
            **changes,
            "status": target,
            "assigned_to": "",
            "status_history": self._extend_history(client.status_history, [step]),
        }

        lead = await self._guard.move(ConfirmedClient, Lead, client, expected_version, overrides)
        await self._record_steps(customer_id, [step], final_action="demote")
        await self._sync_cases(customer_id, CaseType.CUSTOMER, "")
        await self._session.flush()

        logger.info(f"Client {customer_id} demoted to lead status {target.value}")
        return lead

    async def _sync_cases(self, customer_id: str, case_type: CaseType, owner: str) -> None:
        """Align dependent cases with the parent's table.

        Case type follows the parent; an assignee outside the new roster is
        replaced by the parent's owner when that owner is on the roster, or
        cleared.
        """
        roster = roster_for(case_type)
        fallback = owner if owner in roster else ""
        cases = (
            await self._session.execute(select(Case).where(Case.customer_id == customer_id))
        ).scalars().all()
        for case in cases:
            case_changes: dict[str, Any] = {}
            if case.case_type != case_type:
                case_changes["case_type"] = case_type
            if case.assigned_to and normalize_staff_name(case.assigned_to) not in roster:
                case_changes["assigned_to"] = fallback
            if case_changes:
                await self._guard.apply(Case, case.case_id, case.version, case_changes)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _load(
        self,
        model: type[Lead] | type[ConfirmedClient],
        customer_id: str,
        scope: ScopeResolver,
    ) -> Any:
        result = await self._session.execute(
            select(model).where(model.customer_id == customer_id, scope.predicate(model))
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(f"{customer_id} not found")
        return record

    @staticmethod
    def _extend_history(history: list | None, steps: list[StatusStep]) -> list[dict]:
        entries = list(history or [])
        for step in steps:
            entries.append({
                "status": step.status_to.value,
                "date": utcnow().isoformat(),
                "changed_by": step.actor.username,
            })
        return entries

    async def _record_steps(
        self,
        customer_id: str,
        steps: list[StatusStep],
        final_action: str = "status_change",
    ) -> None:
        """History row + audit entry per step; drop stale notifications."""
        if not steps:
            return
        for index, step in enumerate(steps):
            self._session.add(AccountHistory(
                history_id=generate_short_id("CH"),
                customer_id=customer_id,
                status_from=step.status_from.value,
                status_to=step.status_to.value,
                date=utcnow(),
                changed_by=step.actor.username,
                changed_by_role=step.actor.role.value,
                changed_by_name=step.actor.staff_name or None,
            ))
            action = final_action if index == len(steps) - 1 else "status_change"
            await self._audit.log_event(
                step.actor, action, "lead", customer_id,
                {
                    "from": step.status_from.value,
                    "to": step.status_to.value,
                    "automatic": step.automatic,
                },
            )
        await self._session.execute(
            delete(Notification)
            .where(Notification.customer_id == customer_id)
            .execution_options(synchronize_session=False)
        )
