from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class LastMessageSnapshot(TypedDict):
    message_id: str
    text: str
    sender_id: str
    timestamp: datetime


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    # sorted participant ids joined by ":"; unique per participant set
    participants_key: str
    last_message: Optional[LastMessageSnapshot]
    # per-user unread counters (user_id -> count)
    unread_counts: Dict[str, int]
    created_at: datetime
    updated_at: datetime
