"""
Client Portal: link-addressed access for one lead or confirmed client.

Administrators issue one link per account. The link secret is returned once
and only its SHA-256 is stored. Through the link the client reads their file,
writes to the chat and answers the proposal and the contract. Those answers
run through the ``LifecycleMachine`` as the ``portal-client`` actor, so each
step gets its history row, audit entry and version bump exactly like a staff
edit:

- proposal accepted: WAITING_APPROVAL -> SEND_CONTRACT
- revision requested: -> DISCUSSING_Q
- contract accepted: WAITING_ACCEPTANCE -> CLIENT, assigned to the client
  lawyer with the fewest confirmed clients
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.identifiers import generate_short_id
from ..core.security import hash_content
from ..models import (
    Case,
    CaseType,
    ChatMessage,
    ConfirmedClient,
    Invoice,
    Lead,
    LeadStatus,
    PortalToken,
    RecordType,
    utcnow,
)
from .audit import AuditService
from .chat import SENDER_CLIENT
from .errors import (
    IllegalTransitionError,
    InvalidInputError,
    LinkExpiredError,
    PermissionDeniedError,
    RecordNotFoundError,
)
from .lifecycle import AccountUpdate, LifecycleMachine
from .mailer import Mailer, get_mailer, portal_access_email
from .scope import CLIENT_LAWYERS, Actor, ScopeResolver

logger = logging.getLogger(__name__)
settings = get_settings()

PROPOSAL_ACCEPT = "accept"
PROPOSAL_REVISION = "revision"
MAX_EXTENSION_DAYS = 365


@dataclass
class PortalView:
    """What the client sees on their portal page."""
    account: Lead | ConfirmedClient
    cases: Sequence[Case]
    invoices: Sequence[Invoice]
    messages: Sequence[ChatMessage]
    expires_at: datetime


class PortalService:
    """Portal links for admins, and the client side reached through them."""

    def __init__(self, session: AsyncSession, mailer: Mailer | None = None):
        self._session = session
        self._audit = AuditService(session)
        self._mailer = mailer or get_mailer()
        self._lifecycle = LifecycleMachine(session, self._mailer)
        # The link already pins the one account it may touch
        self._scope = ScopeResolver(Actor.system())

    # =========================================================================
    # LINKS (ADMIN)
    # =========================================================================

    async def issue_token(
        self,
        customer_id: str,
        actor: Actor,
        expires_in_days: int | None = None,
    ) -> tuple[str, PortalToken]:
        """Replace the account's link with a new one; returns the secret once."""
        self._require_admin(actor)
        customer_id = customer_id.strip()
        account = await self._account(customer_id)
        if account is None:
            raise RecordNotFoundError(f"{customer_id} not found")

        await self._session.execute(
            delete(PortalToken)
            .where(PortalToken.customer_id == customer_id)
            .execution_options(synchronize_session=False)
        )

        secret = secrets.token_hex(32)
        now = utcnow()
        token = PortalToken(
            token_hash=hash_content(secret),
            customer_id=customer_id,
            client_name=account.name,
            record_type=account.record_type,
            created_at=now,
            expires_at=now + timedelta(days=expires_in_days or settings.portal_link_days),
            created_by=actor.username,
        )
        self._session.add(token)
        await self._audit.log_event(
            actor, "create", "portal_token", customer_id, {"expires_at": token.expires_at}
        )

        if settings.app_url:
            self._mailer.dispatch_after_commit(
                self._session,
                account.email,
                *portal_access_email(account.name, f"{settings.app_url}/portal/{secret}", token.expires_at),
            )
        logger.info(f"Portal link issued for {customer_id} until {token.expires_at.isoformat()}")
        return secret, token

    async def get_token(self, customer_id: str, actor: Actor) -> PortalToken | None:
        self._require_admin(actor)
        return await self._token_for(customer_id.strip())

    async def revoke_token(self, customer_id: str, actor: Actor) -> None:
        self._require_admin(actor)
        customer_id = customer_id.strip()
        await self._session.execute(
            delete(PortalToken)
            .where(PortalToken.customer_id == customer_id)
            .execution_options(synchronize_session=False)
        )
        await self._audit.log_event(actor, "delete", "portal_token", customer_id)

    async def extend_token(self, customer_id: str, days: int, actor: Actor) -> PortalToken:
        """Push the expiry out by ``days`` (1-365) from now or the current expiry."""
        self._require_admin(actor)
        customer_id = customer_id.strip()
        token = await self._token_for(customer_id)
        if token is None:
            raise RecordNotFoundError(f"No portal link found for {customer_id}")

        days = min(MAX_EXTENSION_DAYS, max(1, days))
        base = max(token.expires_at, utcnow())
        token.expires_at = base + timedelta(days=days)
        await self._session.flush()
        await self._audit.log_event(
            actor, "extend", "portal_token", customer_id,
            {"days": days, "expires_at": token.expires_at},
        )
        return token

    # =========================================================================
    # CLIENT SIDE
    # =========================================================================

    async def resolve(self, secret: str, now: datetime | None = None) -> PortalToken:
        token = await self._session.get(PortalToken, hash_content(secret or ""))
        if token is None:
            raise RecordNotFoundError("Invalid portal link")
        if token.expires_at <= (now or utcnow()):
            raise LinkExpiredError("Portal link expired")
        return token

    async def view(self, secret: str, now: datetime | None = None) -> PortalView:
        token = await self.resolve(secret, now)
        account = await self._account(token.customer_id)
        if account is None:
            raise RecordNotFoundError("Client not found")

        # Leads see their customer cases, confirmed clients their client cases
        case_type = CaseType.CLIENT if isinstance(account, ConfirmedClient) else CaseType.CUSTOMER
        cases = (await self._session.execute(
            select(Case)
            .where(Case.customer_id == account.customer_id, Case.case_type == case_type)
            .order_by(Case.last_state_change.desc())
        )).scalars().all()
        invoices = (await self._session.execute(
            select(Invoice)
            .where(Invoice.customer_id == account.customer_id)
            .order_by(Invoice.created_at.desc())
        )).scalars().all()
        messages = (await self._session.execute(
            select(ChatMessage)
            .where(ChatMessage.customer_id == account.customer_id)
            .order_by(ChatMessage.created_at, ChatMessage.message_id)
        )).scalars().all()

        return PortalView(
            account=account,
            cases=cases,
            invoices=invoices,
            messages=messages,
            expires_at=token.expires_at,
        )

    async def post_message(self, secret: str, text: str, now: datetime | None = None) -> ChatMessage:
        body = (text or "").strip()
        if not body:
            raise InvalidInputError("Message text is required")
        token = await self.resolve(secret, now)
        account = await self._account(token.customer_id)
        if account is None:
            raise RecordNotFoundError("Client not found")

        message = self._client_message(account, body)
        await self._session.flush()
        self._alert_staff(
            f"New portal message from {account.name}",
            f'You have a new message from {account.name}:\n\n"{body}"\n\n'
            "Log in to the admin panel to respond.",
        )
        return message

    async def respond_proposal(
        self,
        secret: str,
        action: str,
        note: str | None = None,
        now: datetime | None = None,
    ) -> Lead:
        """Accept the proposal or ask for a revision."""
        token = await self.resolve(secret, now)
        lead = await self._lead(token.customer_id)
        name = lead.name
        note = (note or "").strip()

        if action == PROPOSAL_ACCEPT:
            if lead.status != LeadStatus.WAITING_APPROVAL:
                raise IllegalTransitionError("Proposal is not awaiting a response")
            record = await self._lifecycle.update_lead(
                lead.customer_id,
                AccountUpdate(
                    expected_version=lead.version,
                    status=LeadStatus.SEND_CONTRACT,
                    fields={"proposal_accepted_at": utcnow()},
                ),
                Actor.portal(),
                self._scope,
            )
            if note:
                self._client_message(record, f"[Proposal Accepted] {note}")
            self._alert_staff(
                f"Proposal accepted: {name}",
                f'{name} has accepted the proposal via the client portal.\n\n'
                'Status advanced to "Send Contract". Please prepare and send the contract.',
            )
        elif action == PROPOSAL_REVISION:
            record = await self._lifecycle.update_lead(
                lead.customer_id,
                AccountUpdate(expected_version=lead.version, status=LeadStatus.DISCUSSING_Q),
                Actor.portal(),
                self._scope,
            )
            self._client_message(
                record,
                f"[Revision Request] {note}" if note
                else "[Revision Request] The client has requested revisions to the proposal.",
            )
            self._alert_staff(
                f"Proposal revision requested: {name}",
                f"{name} has requested revisions to the proposal via the client portal.\n\n"
                'Status changed to "Under Discussion".\n\n'
                f"Client message:\n{note or '(no message provided)'}",
            )
        else:
            raise InvalidInputError("action must be accept or revision")

        await self._session.flush()
        return record

    async def respond_contract(
        self,
        secret: str,
        signed_by_name: str | None = None,
        now: datetime | None = None,
    ) -> ConfirmedClient:
        """Accept the contract: the lead becomes a confirmed client."""
        token = await self.resolve(secret, now)
        lead = await self._lead(token.customer_id)
        if lead.status != LeadStatus.WAITING_ACCEPTANCE:
            raise IllegalTransitionError("Contract is not awaiting acceptance")

        name = lead.name
        signed_by = (signed_by_name or "").strip() or name
        accepted_at = utcnow()
        lawyer = await self._pick_client_lawyer()

        client = await self._lifecycle.update_lead(
            lead.customer_id,
            AccountUpdate(
                expected_version=lead.version,
                status=LeadStatus.CLIENT,
                assigned_to=lawyer,
                fields={"contract_accepted_at": accepted_at, "contract_signed_by_name": signed_by},
            ),
            Actor.portal(),
            self._scope,
        )
        token.record_type = RecordType.CONFIRMED_CLIENT

        self._client_message(
            client,
            "[Contract Accepted] The client has accepted the contract and is now a confirmed "
            f'client. Electronic signature recorded as: "{signed_by}" at {accepted_at.isoformat()}.',
        )
        await self._session.flush()
        self._alert_staff(
            f"Contract accepted: {name}",
            f"{name} has accepted the contract via the client portal.\n\n"
            f'Electronic signature name: "{signed_by}"\nAccepted at: {accepted_at.isoformat()}\n\n'
            f"They have been confirmed as a client and auto-assigned to {lawyer}.",
        )
        return client

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators manage portal links")

    async def _token_for(self, customer_id: str) -> PortalToken | None:
        result = await self._session.execute(
            select(PortalToken).where(PortalToken.customer_id == customer_id)
        )
        return result.scalars().first()

    async def _account(self, customer_id: str) -> Lead | ConfirmedClient | None:
        client = await self._session.get(ConfirmedClient, customer_id)
        if client is not None:
            return client
        return await self._session.get(Lead, customer_id)

    async def _lead(self, customer_id: str) -> Lead:
        lead = await self._session.get(Lead, customer_id)
        if lead is None:
            raise RecordNotFoundError("Customer not found")
        return lead

    async def _pick_client_lawyer(self) -> str:
        rows = await self._session.execute(
            select(ConfirmedClient.assigned_to, func.count())
            .where(ConfirmedClient.assigned_to.in_(CLIENT_LAWYERS))
            .group_by(ConfirmedClient.assigned_to)
        )
        counts = dict(rows.all())
        # Fewest confirmed clients wins; a tie goes to the last roster entry
        return min(reversed(CLIENT_LAWYERS), key=lambda name: counts.get(name, 0))

    def _client_message(self, account: Lead | ConfirmedClient, text: str) -> ChatMessage:
        message = ChatMessage(
            message_id=generate_short_id("M"),
            customer_id=account.customer_id,
            sender=SENDER_CLIENT,
            sender_name=account.name,
            text=text,
            read=False,
            created_at=utcnow(),
        )
        self._session.add(message)
        return message

    def _alert_staff(self, subject: str, body: str) -> None:
        self._mailer.dispatch_after_commit(self._session, settings.admin_email, subject, body)
