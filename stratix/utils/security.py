from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from stratix.config import get_settings
from stratix.schemas.user import TokenPayload


def create_access_token(user_id: str, user_type: Optional[str] = None, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"sub": user_id, "exp": expire}
    if user_type:
        payload["userType"] = user_type
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenPayload:
    """Decode and validate an access token.

    Raises jwt.InvalidTokenError subclasses on failure.
    """
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["exp", "sub"]},
    )
    return TokenPayload(**payload)
