import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError

from stratix.models.conversation import LastMessageSnapshot
from stratix.repositories.conversation_repository import ConversationRepository
from stratix.repositories.message_repository import MessageRepository
from stratix.services.identity import IdentityResolver
from stratix.utils.errors import Forbidden, InvalidArgument, NotFound, to_object_id

logger = logging.getLogger(__name__)


def _snapshot(message: Dict[str, Any]) -> LastMessageSnapshot:
    return {
        "message_id": str(message["_id"]),
        "text": message["text"],
        "sender_id": message["sender_id"],
        "timestamp": message["created_at"],
    }


class ChatService:
    """Conversation and message store operations shared by REST and the gateway."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        identity: IdentityResolver,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._identity = identity

    async def create_or_get_conversation(self, requester_id: str, participant_id: str) -> Tuple[Dict[str, Any], bool]:
        participant_id = (participant_id or "").strip()
        if not participant_id:
            raise InvalidArgument("Participant ID is required")
        if participant_id == requester_id:
            raise InvalidArgument("Cannot start a conversation with yourself")
        if not await self._identity.exists(participant_id):
            raise NotFound("Participant not found")
        convo, created = await self._conversation_repo.get_or_create([requester_id, participant_id])
        if created:
            logger.info("Conversation %s created between %s and %s", convo["_id"], requester_id, participant_id)
        return convo, created

    async def get_conversation(self, conversation_id: str, requester_id: str) -> Dict[str, Any]:
        """Single conversation detail; repairs a stale last-message snapshot."""
        convo = await self._get_for_participant(conversation_id, requester_id)
        latest = await self._message_repo.get_latest(ObjectId(convo["_id"]))
        current = convo.get("last_message") or {}
        latest_id = str(latest["_id"]) if latest else None
        if current.get("message_id") != latest_id:
            logger.warning("Repairing stale last_message on conversation %s", convo["_id"])
            snapshot = _snapshot(latest) if latest else None
            if await self._conversation_repo.set_last_message(ObjectId(convo["_id"]), snapshot):
                convo["last_message"] = snapshot
                if snapshot:
                    convo["updated_at"] = snapshot["timestamp"]
            else:
                # a concurrent append already stored a newer snapshot
                convo = await self._get_for_participant(conversation_id, requester_id)
        return convo

    async def list_conversations(self, user_id: str, page: int = 1, limit: int = 20) -> Tuple[List[Dict[str, Any]], int]:
        skip = (page - 1) * limit
        items = await self._conversation_repo.list_for_user(user_id, skip=skip, limit=limit)
        total = await self._conversation_repo.count_for_user(user_id)
        return items, total

    async def delete_conversation(self, conversation_id: str, requester_id: str) -> int:
        convo = await self._get_for_participant(conversation_id, requester_id)
        oid = ObjectId(convo["_id"])
        await self._conversation_repo.delete(oid)
        deleted = await self._message_repo.delete_by_conversation(oid)
        logger.info("Conversation %s deleted by %s (%d messages)", convo["_id"], requester_id, deleted)
        return deleted

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: Optional[str],
        attachments: Optional[List[str]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Persist a message and refresh the conversation snapshot.

        Returns ``(message, conversation)``. Nothing is written when validation
        fails.
        """
        convo = await self._get_for_participant(conversation_id, sender_id)
        body = (text or "").strip()
        if not body:
            raise InvalidArgument("Message text is required")
        oid = ObjectId(convo["_id"])
        message = await self._message_repo.save_message(oid, sender_id, body, attachments)
        snapshot = _snapshot(message)
        recipients = [p for p in convo["participants"] if p != sender_id]
        try:
            await self._conversation_repo.update_on_new_message(oid, snapshot, recipients)
        except PyMongoError:
            logger.exception("Snapshot update failed for conversation %s; rebuilding from log", convo["_id"])
            await self.refresh_last_message(convo["_id"])
        convo["last_message"] = snapshot
        convo["updated_at"] = snapshot["timestamp"]
        return message, convo

    async def refresh_last_message(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        """Recompute the denormalized snapshot from the message log."""
        oid = to_object_id(conversation_id, "conversation id")
        latest = await self._message_repo.get_latest(oid)
        snapshot = _snapshot(latest) if latest else None
        try:
            if not await self._conversation_repo.set_last_message(oid, snapshot):
                logger.info("Kept newer last_message on conversation %s", conversation_id)
        except PyMongoError:
            logger.exception("Could not repair last_message on conversation %s", conversation_id)
        return snapshot

    async def mark_read(self, message_id: str, requester_id: str) -> Tuple[Dict[str, Any], datetime]:
        oid = to_object_id(message_id, "message id")
        message = await self._message_repo.get_by_id(oid)
        if not message:
            raise NotFound("Message not found")
        if message["sender_id"] == requester_id:
            raise InvalidArgument("You cannot mark your own message as read")
        convo = await self._conversation_repo.get_by_id(message["conversation_id"])
        if not convo or requester_id not in convo.get("participants", []):
            raise Forbidden("You are not a participant in this conversation")
        read_at, transitioned = await self._message_repo.mark_read(oid)
        if transitioned:
            await self._conversation_repo.decrement_unread(message["conversation_id"], requester_id)
        message["is_read"] = True
        message["read_at"] = read_at
        return message, read_at

    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> Tuple[List[Dict[str, Any]], Optional[datetime]]:
        convo = await self._get_for_participant(conversation_id, reader_id)
        oid = ObjectId(convo["_id"])
        unread = await self._message_repo.get_unread_for_reader(oid, reader_id)
        read_at = None
        if unread:
            read_at = await self._message_repo.mark_many_read([ObjectId(m["_id"]) for m in unread])
        # zero unless messages arrived after the read above
        remaining = await self._message_repo.count_unread([oid], reader_id)
        await self._conversation_repo.reset_unread(oid, reader_id, remaining)
        return unread, read_at

    async def list_messages(self, conversation_id: str, requester_id: str, page: int = 1, limit: int = 50) -> Tuple[List[Dict[str, Any]], int]:
        """One page of messages, oldest first within the page.

        Pages are cut newest-first, so page 1 holds the most recent messages.
        """
        convo = await self._get_for_participant(conversation_id, requester_id)
        oid = ObjectId(convo["_id"])
        skip = (page - 1) * limit
        newest_first = await self._message_repo.get_messages_by_conversation(oid, skip=skip, limit=limit)
        total = await self._message_repo.count_by_conversation(oid)
        return list(reversed(newest_first)), total

    async def unread_count(self, user_id: str) -> int:
        conversation_ids = await self._conversation_repo.ids_for_user(user_id)
        return await self._message_repo.count_unread(conversation_ids, user_id)

    async def is_participant(self, conversation_id: str, user_id: str) -> bool:
        try:
            await self._get_for_participant(conversation_id, user_id)
        except (NotFound, Forbidden, InvalidArgument):
            return False
        return True

    async def _get_for_participant(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(conversation_id, "conversation id")
        convo = await self._conversation_repo.get_by_id(oid)
        if not convo:
            raise NotFound("Conversation not found")
        if user_id not in convo.get("participants", []):
            raise Forbidden("You are not a participant in this conversation")
        return convo
