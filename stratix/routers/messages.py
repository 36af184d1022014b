import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from stratix.schemas.chat import MessagePublic, SendMessageRequest, UnreadCount
from stratix.services.broadcaster import Broadcaster
from stratix.services.chat_service import ChatService
from stratix.services.identity import Identity
from stratix.utils.dependencies import get_broadcaster, get_chat_service, get_current_user


router = APIRouter(prefix="/messages", tags=["chat"])
logger = logging.getLogger(__name__)


@router.post("", response_model=MessagePublic, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageRequest,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    message, convo = await service.append_message(
        body.conversation_id, current_user.user_id, body.text, body.attachments
    )
    record = MessagePublic.from_document(message)
    # live participants still see REST writes; skipped without a gateway
    if broadcaster is not None:
        await broadcaster.new_message(record.to_payload(), convo["participants"])
    else:
        logger.debug("No realtime gateway; new-message for %s not broadcast", record.id)
    return record


@router.get("/unread/count", response_model=UnreadCount)
async def unread_count(
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return UnreadCount(unread_count=await service.unread_count(current_user.user_id))


@router.put("/{message_id}/read", response_model=MessagePublic)
async def mark_read(
    message_id: str,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    message, read_at = await service.mark_read(message_id, current_user.user_id)
    if broadcaster is not None:
        await broadcaster.message_read(message["sender_id"], str(message["_id"]), read_at)
    return MessagePublic.from_document(message)
