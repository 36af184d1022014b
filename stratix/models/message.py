from datetime import datetime
from typing import List, Optional, TypedDict

from bson import ObjectId


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: ObjectId
    sender_id: str
    text: str
    attachments: List[str]
    # read receipt
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
