"""WebSocket frame and event payload models."""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from stratix.schemas.chat import CamelModel

# client -> server
JOIN_CONVERSATION = "join-conversation"
LEAVE_CONVERSATION = "leave-conversation"
SEND_MESSAGE = "send-message"
TYPING = "typing"
MARK_READ = "mark-read"

# server -> client
NEW_MESSAGE = "new-message"
MESSAGE_READ = "message-read"
USER_ONLINE = "user-online"
USER_OFFLINE = "user-offline"
ERROR = "error"
ACK = "ack"


class WsInbound(BaseModel):
    """Client -> Server frame."""

    event: str
    data: Union[Dict[str, Any], str, None] = None
    ack: Optional[Union[str, int]] = None


class WsOutbound(BaseModel):
    """Server -> Client frame."""

    event: str
    data: Any = None
    ack: Optional[Union[str, int]] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ConversationRef(CamelModel):

    conversation_id: str = Field(min_length=1)


class SendMessagePayload(CamelModel):

    conversation_id: str = Field(min_length=1)
    text: str = ""
    attachments: List[str] = []


class TypingPayload(CamelModel):

    conversation_id: str = Field(min_length=1)
    is_typing: bool = True


class MarkReadPayload(CamelModel):

    message_id: str = Field(min_length=1)


class SendMessageAck(BaseModel):

    success: bool
    message: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
