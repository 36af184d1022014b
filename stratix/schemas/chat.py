from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateConversationRequest(CamelModel):

    participant_id: str = Field(min_length=1)


class SendMessageRequest(CamelModel):

    conversation_id: str = Field(min_length=1)
    text: str
    attachments: List[str] = []


class LastMessage(CamelModel):

    message_id: Optional[str] = None
    text: str
    sender_id: str
    timestamp: datetime


class MessagePublic(CamelModel):
    """Wire shape of a message, shared by REST responses and realtime events."""

    id: str
    conversation_id: str
    sender_id: str
    text: str
    attachments: List[str] = []
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessagePublic":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            text=doc["text"],
            attachments=doc.get("attachments") or [],
            is_read=bool(doc.get("is_read")),
            read_at=doc.get("read_at"),
            created_at=doc["created_at"],
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ConversationPublic(CamelModel):

    id: str
    participants: List[str]
    last_message: Optional[LastMessage] = None
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any], viewer_id: Optional[str] = None) -> "ConversationPublic":
        counts = doc.get("unread_counts") or {}
        return cls(
            id=str(doc["_id"]),
            participants=list(doc.get("participants") or []),
            last_message=doc.get("last_message"),
            unread_count=int(counts.get(viewer_id, 0)) if viewer_id else 0,
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )


class Pagination(BaseModel):

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit if limit else 0)


class ConversationPage(BaseModel):

    items: List[ConversationPublic]
    pagination: Pagination


class MessagePage(BaseModel):

    items: List[MessagePublic]
    pagination: Pagination


class MarkConversationReadResponse(CamelModel):

    updated: int
    message_ids: List[str] = []


class UnreadCount(CamelModel):

    unread_count: int
