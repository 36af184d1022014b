"""Persistent-connection gateway.

A connection moves Connecting -> Authenticated -> Active -> Closed. The
credential is read from the handshake, in order: the ``bearer, <token>``
subprotocol pair, the ``Authorization`` header, the ``token`` query parameter.
A rejected handshake gets one ``error`` frame and close code 4401.

Frames are handled one at a time per connection. A handler that has started
a store write runs to completion even when the peer goes away; only the frames
addressed to the gone socket are lost.
"""
import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from fastapi import WebSocket
from pydantic import ValidationError
from redis.exceptions import RedisError

from stratix.schemas import events
from stratix.schemas.chat import MessagePublic
from stratix.schemas.events import (
    ConversationRef,
    MarkReadPayload,
    SendMessageAck,
    SendMessagePayload,
    TypingPayload,
    WsInbound,
)
from stratix.services.broadcaster import Broadcaster
from stratix.services.chat_service import ChatService
from stratix.services.identity import IdentityResolver
from stratix.utils.errors import AuthenticationFailed, ChatError
from stratix.utils.presence import Connection, ConnectionState, PresenceRegistry

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4401
GOING_AWAY_CLOSE_CODE = 1001
BEARER_SUBPROTOCOL = "bearer"

Handler = Callable[[Connection, WsInbound], Awaitable[None]]


def extract_credential(websocket: WebSocket) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(token, subprotocol_to_accept)`` from the handshake."""
    protocols = websocket.scope.get("subprotocols") or []
    if len(protocols) >= 2 and protocols[0].lower() == BEARER_SUBPROTOCOL:
        return protocols[1], protocols[0]
    header = websocket.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header[7:].strip() or None, None
    return websocket.query_params.get("token"), None


class RealtimeGateway:

    def __init__(
        self,
        registry: PresenceRegistry,
        broadcaster: Broadcaster,
        chat: ChatService,
        identity: IdentityResolver,
        presence_ttl_seconds: int = 60,
        presence_heartbeat_seconds: int = 30,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._chat = chat
        self._identity = identity
        self._presence_ttl = presence_ttl_seconds
        self._heartbeat_interval = presence_heartbeat_seconds
        self._heartbeats: Dict[str, asyncio.Task] = {}
        self._handlers: Dict[str, Handler] = {
            events.JOIN_CONVERSATION: self.on_join_conversation,
            events.LEAVE_CONVERSATION: self.on_leave_conversation,
            events.SEND_MESSAGE: self.on_send_message,
            events.TYPING: self.on_typing,
            events.MARK_READ: self.on_mark_read,
        }

    @property
    def registry(self) -> PresenceRegistry:
        return self._registry

    async def serve(self, websocket: WebSocket) -> None:
        conn = Connection(websocket)
        credential, subprotocol = extract_credential(websocket)
        try:
            identity = await self._identity.resolve(credential)
        except AuthenticationFailed as exc:
            logger.info("Rejected realtime connection %s: %s", conn.id, exc.detail)
            await websocket.accept(subprotocol=subprotocol)
            await conn.send_event(events.ERROR, {"message": exc.detail})
            conn.state = ConnectionState.CLOSED
            await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
            return

        conn.authenticate(identity.user_id, identity.user_type)
        await websocket.accept(subprotocol=subprotocol)
        await self.open(conn)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    logger.warning("Dropping binary frame from connection %s", conn.id)
                    continue
                await self.dispatch(conn, raw)
        finally:
            await self.close(conn)

    async def open(self, conn: Connection) -> None:
        """Authenticated -> Active."""
        came_online = self._registry.register_connection(conn.user_id, conn)
        logger.info("User connected: %s (%s)", conn.user_id, conn.id)
        if came_online:
            await self._broadcaster.user_online(conn.user_id)
        if self._broadcaster.bus.enabled:
            task = asyncio.create_task(self._presence_heartbeat(conn.user_id))
            task.add_done_callback(partial(self._heartbeat_done, conn.user_id))
            self._heartbeats[conn.id] = task

    async def close(self, conn: Connection) -> None:
        """Active -> Closed."""
        if conn.user_id is None or conn.state == ConnectionState.CLOSED:
            return
        task = self._heartbeats.pop(conn.id, None)
        if task is not None:
            task.cancel()
        went_offline = self._registry.deregister_connection(conn.user_id, conn)
        logger.info("User disconnected: %s (%s)", conn.user_id, conn.id)
        if went_offline:
            await self._broadcaster.user_offline(conn.user_id)
            try:
                await self._broadcaster.bus.clear_presence(conn.user_id)
            except RedisError:
                logger.warning("Could not clear presence key for %s", conn.user_id)

    async def shutdown(self) -> None:
        for conn in self._registry.all_connections():
            try:
                await conn.websocket.close(code=GOING_AWAY_CLOSE_CODE)
            except RuntimeError:
                logger.debug("Connection %s already closed", conn.id)
            await self.close(conn)

    async def dispatch(self, conn: Connection, raw: str) -> None:
        try:
            frame = WsInbound.model_validate_json(raw)
        except ValidationError:
            logger.warning("Dropping malformed frame from connection %s", conn.id)
            return
        handler = self._handlers.get(frame.event)
        if handler is None:
            logger.info("Dropping unknown event %r from connection %s", frame.event, conn.id)
            return
        try:
            await handler(conn, frame)
        except Exception:
            logger.exception("Error handling %s for user %s", frame.event, conn.user_id)

    async def on_join_conversation(self, conn: Connection, frame: WsInbound) -> None:
        conversation_id = self._conversation_ref(frame.data)
        if not conversation_id:
            return
        if not await self._chat.is_participant(conversation_id, conn.user_id):
            logger.info("User %s may not join conversation %s", conn.user_id, conversation_id)
            return
        self._registry.join_conversation_group(conn, conversation_id)
        logger.debug("User %s joined conversation %s", conn.user_id, conversation_id)

    async def on_leave_conversation(self, conn: Connection, frame: WsInbound) -> None:
        conversation_id = self._conversation_ref(frame.data)
        if conversation_id:
            self._registry.leave_conversation_group(conn, conversation_id)
            logger.debug("User %s left conversation %s", conn.user_id, conversation_id)

    async def on_send_message(self, conn: Connection, frame: WsInbound) -> None:
        try:
            payload = SendMessagePayload.model_validate(frame.data or {})
            message, convo = await self._chat.append_message(
                payload.conversation_id, conn.user_id, payload.text, payload.attachments
            )
        except ValidationError:
            ack = SendMessageAck(success=False, error="Conversation ID and message text are required")
        except ChatError as exc:
            ack = SendMessageAck(success=False, error=exc.detail)
        except Exception:
            logger.exception("Error sending message for user %s", conn.user_id)
            ack = SendMessageAck(success=False, error="Failed to send message")
        else:
            record = MessagePublic.from_document(message).to_payload()
            await self._broadcaster.new_message(record, convo["participants"])
            ack = SendMessageAck(success=True, message=record)
            logger.info("Message sent in conversation %s by user %s", convo["_id"], conn.user_id)
        if frame.ack is not None:
            await conn.send_event(events.ACK, ack.to_payload(), ack=frame.ack)

    async def on_typing(self, conn: Connection, frame: WsInbound) -> None:
        try:
            payload = TypingPayload.model_validate(frame.data or {})
        except ValidationError:
            return
        if not await self._chat.is_participant(payload.conversation_id, conn.user_id):
            return
        await self._broadcaster.typing(payload.conversation_id, conn.user_id, payload.is_typing, conn.id)

    async def on_mark_read(self, conn: Connection, frame: WsInbound) -> None:
        try:
            payload = MarkReadPayload.model_validate(frame.data or {})
        except ValidationError:
            return
        try:
            message, read_at = await self._chat.mark_read(payload.message_id, conn.user_id)
        except ChatError as exc:
            logger.debug("Ignoring mark-read from %s: %s", conn.user_id, exc.detail)
            return
        await self._broadcaster.message_read(message["sender_id"], str(message["_id"]), read_at)
        logger.info("Message %s marked as read by user %s", payload.message_id, conn.user_id)

    @staticmethod
    def _conversation_ref(data: Any) -> Optional[str]:
        if isinstance(data, str):
            return data.strip() or None
        try:
            return ConversationRef.model_validate(data or {}).conversation_id
        except ValidationError:
            return None

    async def _presence_heartbeat(self, user_id: str) -> None:
        bus = self._broadcaster.bus
        while True:
            try:
                await bus.set_presence(user_id, ttl_seconds=self._presence_ttl)
            except RedisError:
                logger.warning("Presence heartbeat failed for %s", user_id)
            await asyncio.sleep(self._heartbeat_interval)

    @staticmethod
    def _heartbeat_done(user_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Presence heartbeat for %s stopped", user_id, exc_info=exc)
