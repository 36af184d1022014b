"""Fan-out of realtime events to delivery groups.

Both the gateway and the REST handlers publish through here after their writes
have committed. Delivery is at-most-once: nothing is queued or retried, and a
failed publish is logged without failing the caller.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from fastapi.encoders import jsonable_encoder
from redis.exceptions import RedisError

from stratix.schemas import events
from stratix.utils.errors import Unavailable
from stratix.utils.presence import PresenceRegistry, conversation_group, personal_group
from stratix.utils.realtime_bus import REALTIME_CHANNEL, NoopBus

logger = logging.getLogger(__name__)


class Broadcaster:

    def __init__(self, registry: PresenceRegistry, bus=None, channel: str = REALTIME_CHANNEL) -> None:
        self.registry = registry
        self.bus = bus or NoopBus()
        self._channel = channel
        self._subscription = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if not self.bus.enabled:
            return
        self._subscription = await self.bus.subscribe(self._channel, self._on_bus_message)
        self._task = asyncio.create_task(self._subscription.run())
        logger.info("Realtime fan-out subscribed to %s", self._channel)

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.cancel()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._subscription = None
        self._task = None

    async def emit(
        self,
        groups: Optional[Iterable[str]],
        event: str,
        data: Any,
        exclude_connection: Optional[str] = None,
        exclude_user: Optional[str] = None,
    ) -> None:
        """Deliver ``event`` to the union of ``groups``; raises Unavailable if the bus is down."""
        group_list = list(groups) if groups is not None else None
        if not self.bus.enabled:
            await self.registry.deliver(group_list, event, data, exclude_connection, exclude_user)
            return
        envelope = {
            "groups": group_list,
            "event": event,
            "data": jsonable_encoder(data),
            "exclude_connection": exclude_connection,
            "exclude_user": exclude_user,
        }
        try:
            await self.bus.publish(self._channel, json.dumps(envelope))
        except RedisError as exc:
            raise Unavailable("Realtime bus unreachable") from exc

    async def _on_bus_message(self, raw: str) -> None:
        try:
            envelope = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed realtime envelope")
            return
        await self.registry.deliver(
            envelope.get("groups"),
            envelope["event"],
            envelope.get("data"),
            envelope.get("exclude_connection"),
            envelope.get("exclude_user"),
        )

    async def _best_effort(self, groups: Optional[Iterable[str]], event: str, data: Any, **kwargs: Any) -> bool:
        try:
            await self.emit(groups, event, data, **kwargs)
        except Unavailable:
            logger.warning("Broadcast of %s skipped: realtime bus unavailable", event)
            return False
        return True

    async def new_message(self, message: Dict[str, Any], participants: List[str]) -> bool:
        """Conversation group plus every participant's personal group."""
        groups = [conversation_group(message["conversationId"])]
        groups.extend(personal_group(p) for p in participants)
        return await self._best_effort(groups, events.NEW_MESSAGE, message)

    async def message_read(self, sender_id: str, message_id: str, read_at: datetime) -> bool:
        return await self._best_effort(
            [personal_group(sender_id)],
            events.MESSAGE_READ,
            {"messageId": message_id, "readAt": read_at},
        )

    async def typing(self, conversation_id: str, user_id: str, is_typing: bool, exclude_connection: str) -> bool:
        return await self._best_effort(
            [conversation_group(conversation_id)],
            events.TYPING,
            {"userId": user_id, "conversationId": conversation_id, "isTyping": is_typing},
            exclude_connection=exclude_connection,
        )

    async def user_online(self, user_id: str) -> bool:
        return await self._best_effort(None, events.USER_ONLINE, {"userId": user_id}, exclude_user=user_id)

    async def user_offline(self, user_id: str) -> bool:
        return await self._best_effort(None, events.USER_OFFLINE, {"userId": user_id}, exclude_user=user_id)
