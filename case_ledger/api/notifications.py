"""API routes for escalation notifications."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from ..core import CurrentUserDep, SessionDep
from ..schemas import NotificationResponse
from ..services import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_service(session: SessionDep) -> NotificationService:
    return NotificationService(session)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    request: Request,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    limit: int = Query(50, ge=1, le=50),
):
    """Refresh escalations, then return the newest notifications the caller can see."""
    report = await request.app.state.escalation.run_once()
    logger.debug(
        f"Read-through sweep: {report.notifications_emitted} emitted, "
        f"{len(report.archived)} archived"
    )
    notifications = await service.list_visible(current_user.scope, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_notification(
    notification_id: str,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    await service.dismiss(notification_id, current_user.actor, current_user.scope)
