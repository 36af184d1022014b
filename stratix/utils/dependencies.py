from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from stratix.database.connection import mongo_db_dependency
from stratix.repositories.conversation_repository import ConversationRepository
from stratix.repositories.message_repository import MessageRepository
from stratix.repositories.user_repository import UserRepository
from stratix.services.broadcaster import Broadcaster
from stratix.services.chat_service import ChatService
from stratix.services.identity import Identity, IdentityResolver

_bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_resolver(db=Depends(mongo_db_dependency)) -> IdentityResolver:
    return IdentityResolver(UserRepository(db))


def get_chat_service(
    db=Depends(mongo_db_dependency),
    identity: IdentityResolver = Depends(get_identity_resolver),
) -> ChatService:
    return ChatService(MessageRepository(db), ConversationRepository(db), identity)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Identity:
    token = credentials.credentials if credentials else None
    return await resolver.resolve(token)


def get_broadcaster(request: Request) -> Optional[Broadcaster]:
    """The process's broadcaster, or None when no realtime gateway is running."""
    return getattr(request.app.state, "broadcaster", None)
