"""Chat service: staff-side messaging with a lead or confirmed client."""

import logging
from typing import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identifiers import generate_short_id
from ..models import ArchivedChat, ChatMessage, ConfirmedClient, Lead, utcnow
from .archive import CHAT_REASON_MANUAL, ArchiveStore
from .audit import AuditService
from .errors import InvalidInputError, RecordNotFoundError
from .mailer import Mailer, get_mailer
from .scope import Actor, ScopeResolver

logger = logging.getLogger(__name__)

SENDER_STAFF = "staff"
SENDER_CLIENT = "client"


class ChatService:
    """Chat access follows the owning account's scope."""

    def __init__(self, session: AsyncSession, mailer: Mailer | None = None):
        self._session = session
        self._audit = AuditService(session)
        self._mailer = mailer or get_mailer()

    async def _account(self, customer_id: str, scope: ScopeResolver) -> Lead | ConfirmedClient | None:
        for model in (Lead, ConfirmedClient):
            result = await self._session.execute(
                select(model).where(model.customer_id == customer_id, scope.predicate(model))
            )
            account = result.scalar_one_or_none()
            if account is not None:
                return account
        if scope.actor.is_unrestricted:
            # Admins can still read a transcript whose account is gone
            return None
        raise RecordNotFoundError(f"Chat for {customer_id} not found")

    async def list_messages(self, customer_id: str, scope: ScopeResolver) -> Sequence[ChatMessage]:
        await self._account(customer_id, scope)
        result = await self._session.execute(
            select(ChatMessage)
            .where(ChatMessage.customer_id == customer_id)
            .order_by(ChatMessage.created_at, ChatMessage.message_id)
        )
        return result.scalars().all()

    async def post_message(
        self,
        customer_id: str,
        text: str,
        actor: Actor,
        scope: ScopeResolver,
    ) -> ChatMessage:
        body = (text or "").strip()
        if not body:
            raise InvalidInputError("Message text is required")
        account = await self._account(customer_id, scope)

        message = ChatMessage(
            message_id=generate_short_id("M"),
            customer_id=customer_id,
            sender=SENDER_STAFF,
            sender_name=actor.staff_name or actor.username,
            text=body,
            read=False,
            created_at=utcnow(),
        )
        self._session.add(message)
        await self._session.flush()

        if account is not None:
            self._mailer.dispatch_after_commit(
                self._session,
                account.email,
                "New message from your lawyer",
                f"Dear {account.name or 'Client'},\n\n"
                f"Your lawyer sent you a new message:\n\n\"{body}\"\n\n"
                "Visit your customer portal to reply.",
            )
        return message

    async def mark_read(self, customer_id: str, scope: ScopeResolver) -> int:
        """Mark the client's unread messages as read. Returns how many changed."""
        await self._account(customer_id, scope)
        result = await self._session.execute(
            update(ChatMessage)
            .where(
                ChatMessage.customer_id == customer_id,
                ChatMessage.sender == SENDER_CLIENT,
                ChatMessage.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_message(self, customer_id: str, message_id: str, scope: ScopeResolver) -> None:
        await self._account(customer_id, scope)
        result = await self._session.execute(
            delete(ChatMessage)
            .where(ChatMessage.customer_id == customer_id, ChatMessage.message_id == message_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RecordNotFoundError(f"Message {message_id} not found")

    async def clear_transcript(
        self,
        customer_id: str,
        actor: Actor,
        scope: ScopeResolver,
    ) -> ArchivedChat | None:
        """Archive the whole transcript (reason ``manual``) and clear it."""
        account = await self._account(customer_id, scope)
        name = account.name if account is not None else customer_id
        archived = await ArchiveStore(self._session).archive_chat(
            customer_id, name or customer_id, actor, CHAT_REASON_MANUAL
        )
        if archived is not None:
            await self._audit.log_event(
                actor, "archive_chat", "chat", customer_id,
                {"archived_chat_id": archived.archived_chat_id, "messages": len(archived.messages)},
            )
            logger.info(f"Archived chat for {customer_id} as {archived.archived_chat_id}")
        return archived
