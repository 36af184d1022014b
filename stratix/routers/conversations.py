from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from stratix.config import get_settings
from stratix.schemas.chat import (
    ConversationPage,
    ConversationPublic,
    CreateConversationRequest,
    MarkConversationReadResponse,
    MessagePage,
    MessagePublic,
    Pagination,
)
from stratix.services.broadcaster import Broadcaster
from stratix.services.chat_service import ChatService
from stratix.services.identity import Identity
from stratix.utils.dependencies import get_broadcaster, get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])
settings = get_settings()


@router.get("", response_model=ConversationPage)
async def list_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.conversations_page_size, ge=1, le=settings.max_page_size),
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    items, total = await service.list_conversations(current_user.user_id, page=page, limit=limit)
    return ConversationPage(
        items=[ConversationPublic.from_document(it, current_user.user_id) for it in items],
        pagination=Pagination.build(page, limit, total),
    )


@router.post("", response_model=ConversationPublic)
async def create_conversation(
    body: CreateConversationRequest,
    response: Response,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    convo, created = await service.create_or_get_conversation(current_user.user_id, body.participant_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return ConversationPublic.from_document(convo, current_user.user_id)


@router.get("/{conversation_id}", response_model=ConversationPublic)
async def get_conversation(
    conversation_id: str,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    convo = await service.get_conversation(conversation_id, current_user.user_id)
    return ConversationPublic.from_document(convo, current_user.user_id)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.messages_page_size, ge=1, le=settings.max_page_size),
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    messages, total = await service.list_messages(conversation_id, current_user.user_id, page=page, limit=limit)
    return MessagePage(
        items=[MessagePublic.from_document(m) for m in messages],
        pagination=Pagination.build(page, limit, total),
    )


@router.put("/{conversation_id}/read", response_model=MarkConversationReadResponse)
async def mark_conversation_read(
    conversation_id: str,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    messages, read_at = await service.mark_conversation_read(conversation_id, current_user.user_id)
    if broadcaster is not None:
        for m in messages:
            await broadcaster.message_read(m["sender_id"], str(m["_id"]), read_at)
    return MarkConversationReadResponse(updated=len(messages), message_ids=[str(m["_id"]) for m in messages])


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    deleted = await service.delete_conversation(conversation_id, current_user.user_id)
    return {"deleted": True, "messagesDeleted": deleted}
