"""Notification queries and dismissal."""

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Lead, Notification
from .audit import AuditService
from .errors import PermissionDeniedError, RecordNotFoundError
from .scope import Actor, ScopeResolver

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 50


class NotificationService:
    def __init__(self, session: AsyncSession):
        self._session = session
        self._audit = AuditService(session)

    async def list_visible(
        self,
        scope: ScopeResolver,
        limit: int = NOTIFICATION_LIMIT,
    ) -> Sequence[Notification]:
        """Most recent notifications whose lead the caller can see.

        Notifications only ever belong to leads, so joining on the lead table
        also drops anything left behind by a promotion.
        """
        result = await self._session.execute(
            select(Notification)
            .join(Lead, Lead.customer_id == Notification.customer_id)
            .where(scope.predicate(Lead))
            .order_by(Notification.created_at.desc(), Notification.notification_id.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def dismiss(self, notification_id: str, actor: Actor, scope: ScopeResolver) -> None:
        if not scope.can_dismiss_notifications:
            raise PermissionDeniedError("Only admin, manager and intake users can dismiss notifications")
        # Outside the caller's scope reads the same as missing
        result = await self._session.execute(
            select(Notification)
            .join(Lead, Lead.customer_id == Notification.customer_id)
            .where(Notification.notification_id == notification_id, scope.predicate(Lead))
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise RecordNotFoundError(f"Notification {notification_id} not found")
        customer_id = notification.customer_id
        await self._session.delete(notification)
        await self._audit.log_event(
            actor, "delete", "notification", notification_id, {"customer_id": customer_id}
        )
