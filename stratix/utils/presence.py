"""In-memory presence registry for realtime connections.

Tracks which connection handles serve which user and which delivery groups
each handle has joined. Every connection is subscribed to its user's personal
group; conversation groups are joined explicitly by the client.

State lives for the process lifetime only. Mutations happen on the event loop
(connect, disconnect, join, leave), so no lock is taken. A deployment with
several processes shares events through the realtime bus, but each process
still only knows its own connections.
"""
import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from stratix.schemas.events import WsOutbound

logger = logging.getLogger(__name__)


def personal_group(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_group(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    CLOSED = "closed"


class Connection:
    """One live socket; a user may hold several."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.user_id: Optional[str] = None
        self.user_type: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self.groups: Set[str] = set()

    def authenticate(self, user_id: str, user_type: Optional[str] = None) -> None:
        self.user_id = user_id
        self.user_type = user_type
        self.state = ConnectionState.AUTHENTICATED

    @property
    def is_open(self) -> bool:
        return self.state in (ConnectionState.AUTHENTICATED, ConnectionState.ACTIVE)

    async def send_event(self, event: str, data: Any = None, ack: Any = None) -> bool:
        """Send one frame; a dead socket drops the frame and returns False."""
        if self.state == ConnectionState.CLOSED:
            return False
        frame = WsOutbound(event=event, data=jsonable_encoder(data), ack=ack).to_wire()
        try:
            await self.websocket.send_text(json.dumps(frame))
        except Exception as exc:  # peer is gone
            logger.debug("Dropping %s for connection %s: %s", event, self.id, exc)
            return False
        return True


class PresenceRegistry:

    def __init__(self) -> None:
        self._connections: Dict[str, Set[Connection]] = {}
        self._groups: Dict[str, Set[Connection]] = {}

    def register_connection(self, user_id: str, connection: Connection) -> bool:
        """Add a handle; returns True when the user just came online."""
        handles = self._connections.setdefault(user_id, set())
        came_online = not handles
        handles.add(connection)
        self._join(connection, personal_group(user_id))
        connection.state = ConnectionState.ACTIVE
        return came_online

    def deregister_connection(self, user_id: str, connection: Connection) -> bool:
        """Remove a handle; returns True when the user just went offline."""
        for group in list(connection.groups):
            self._leave(connection, group)
        connection.state = ConnectionState.CLOSED
        handles = self._connections.get(user_id)
        if handles is None:
            return False
        handles.discard(connection)
        if handles:
            return False
        del self._connections[user_id]
        return True

    def join_conversation_group(self, connection: Connection, conversation_id: str) -> None:
        self._join(connection, conversation_group(conversation_id))

    def leave_conversation_group(self, connection: Connection, conversation_id: str) -> None:
        self._leave(connection, conversation_group(conversation_id))

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def online_user_ids(self) -> List[str]:
        return list(self._connections)

    def connections_for(self, user_id: str) -> List[Connection]:
        return list(self._connections.get(user_id, ()))

    def members(self, group: str) -> List[Connection]:
        return list(self._groups.get(group, ()))

    def all_connections(self) -> List[Connection]:
        return [c for handles in self._connections.values() for c in handles]

    async def deliver(
        self,
        groups: Optional[Iterable[str]],
        event: str,
        data: Any,
        exclude_connection: Optional[str] = None,
        exclude_user: Optional[str] = None,
    ) -> int:
        """Send to the union of ``groups`` (everyone when None), once per connection."""
        if groups is None:
            targets = self.all_connections()
        else:
            seen: Dict[str, Connection] = {}
            for group in groups:
                for conn in self._groups.get(group, ()):
                    seen.setdefault(conn.id, conn)
            targets = list(seen.values())
        delivered = 0
        for conn in targets:
            if conn.id == exclude_connection or (exclude_user and conn.user_id == exclude_user):
                continue
            if await conn.send_event(event, data):
                delivered += 1
        return delivered

    def _join(self, connection: Connection, group: str) -> None:
        self._groups.setdefault(group, set()).add(connection)
        connection.groups.add(group)

    def _leave(self, connection: Connection, group: str) -> None:
        members = self._groups.get(group)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._groups[group]
        connection.groups.discard(group)
