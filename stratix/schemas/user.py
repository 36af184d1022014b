from typing import Literal, Optional

from pydantic import BaseModel


class TokenPayload(BaseModel):

    sub: str
    exp: int
    userType: Optional[Literal["brand", "influencer"]] = None
