from datetime import datetime
from typing import Literal, Optional, TypedDict


UserType = Literal["brand", "influencer"]


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    name: str
    avatar: Optional[str]
    user_type: UserType
    created_at: datetime
