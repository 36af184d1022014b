import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from pydantic import ValidationError

from stratix.repositories.user_repository import UserRepository
from stratix.utils.errors import AuthenticationFailed
from stratix.utils.security import decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    user_type: Optional[str] = None


class IdentityResolver:
    """Maps a bearer credential to a stable user identity."""

    def __init__(self, user_repo: UserRepository) -> None:
        self._user_repo = user_repo

    async def resolve(self, credential: Optional[str]) -> Identity:
        if not credential:
            raise AuthenticationFailed("Authentication error: No token provided")
        try:
            payload = decode_access_token(credential)
        except (jwt.InvalidTokenError, ValidationError):
            raise AuthenticationFailed("Authentication error: Invalid token")
        user = await self._user_repo.get_user_by_id(payload.sub)
        if not user:
            logger.info("Token subject %s does not resolve to a user", payload.sub)
            raise AuthenticationFailed("Authentication error: User not found")
        return Identity(user_id=user["_id"], user_type=user.get("user_type"))

    async def exists(self, user_id: str) -> bool:
        return await self._user_repo.get_user_by_id(user_id) is not None
