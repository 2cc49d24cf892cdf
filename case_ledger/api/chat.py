"""API routes for staff-side chat with leads and confirmed clients."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..core import CurrentUserDep, MailerDep, SessionDep
from ..schemas import (
    ArchivedChatResponse,
    ChatMessageCreate,
    ChatMessageResponse,
    ChatReadResponse,
)
from ..services import ChatService

router = APIRouter(prefix="/chat", tags=["chat"])


def get_chat_service(session: SessionDep, mailer: MailerDep) -> ChatService:
    return ChatService(session, mailer=mailer)


ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]


@router.get("/{customer_id}", response_model=list[ChatMessageResponse])
async def list_messages(customer_id: str, current_user: CurrentUserDep, service: ChatServiceDep):
    messages = await service.list_messages(customer_id, current_user.scope)
    return [ChatMessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{customer_id}",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    customer_id: str,
    data: ChatMessageCreate,
    current_user: CurrentUserDep,
    service: ChatServiceDep,
):
    message = await service.post_message(
        customer_id, data.text, current_user.actor, current_user.scope
    )
    return ChatMessageResponse.model_validate(message)


@router.put("/{customer_id}/read", response_model=ChatReadResponse)
async def mark_read(customer_id: str, current_user: CurrentUserDep, service: ChatServiceDep):
    count = await service.mark_read(customer_id, current_user.scope)
    return ChatReadResponse(marked_read=count)


@router.delete("/{customer_id}/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    customer_id: str,
    message_id: str,
    current_user: CurrentUserDep,
    service: ChatServiceDep,
):
    await service.delete_message(customer_id, message_id, current_user.scope)


@router.delete("/{customer_id}", response_model=ArchivedChatResponse | None)
async def clear_chat(customer_id: str, current_user: CurrentUserDep, service: ChatServiceDep):
    """Archive the whole transcript, then clear it. Returns null when it was empty."""
    archived = await service.clear_transcript(customer_id, current_user.actor, current_user.scope)
    if archived is None:
        return None
    return ArchivedChatResponse.model_validate(archived)
