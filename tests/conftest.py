from types import SimpleNamespace

import pytest
from fakes import AsyncMongoMockDatabase
from httpx import ASGITransport, AsyncClient

from stratix.database import connection
from stratix.main import app
from stratix.repositories.conversation_repository import ConversationRepository
from stratix.repositories.message_repository import MessageRepository
from stratix.repositories.user_repository import UserRepository
from stratix.services.broadcaster import Broadcaster
from stratix.services.chat_service import ChatService
from stratix.services.identity import IdentityResolver
from stratix.services.realtime_gateway import RealtimeGateway
from stratix.utils.presence import PresenceRegistry


@pytest.fixture
async def db():
    database = AsyncMongoMockDatabase()
    await connection.ensure_indexes(database)
    return database


@pytest.fixture
async def users(db):
    repo = UserRepository(db)
    brand = await repo.create_user("brand@example.com", "Acme Brand", "brand")
    influencer = await repo.create_user("creator@example.com", "Casey Creator", "influencer")
    outsider = await repo.create_user("other@example.com", "Olive Other", "influencer")
    return SimpleNamespace(brand=brand, influencer=influencer, outsider=outsider)


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def identity(db):
    return IdentityResolver(UserRepository(db))


@pytest.fixture
def chat(message_repo, conversation_repo, identity):
    return ChatService(message_repo, conversation_repo, identity)


@pytest.fixture
def registry():
    return PresenceRegistry()


@pytest.fixture
def broadcaster(registry):
    return Broadcaster(registry)


@pytest.fixture
def gateway(registry, broadcaster, chat, identity):
    return RealtimeGateway(registry, broadcaster, chat, identity)


@pytest.fixture
def patch_mongo(db, monkeypatch):
    async def _connect():
        connection.set_database(db)
        return db

    async def _close():
        connection.set_database(None)

    monkeypatch.setattr(connection, "connect_to_mongo", _connect)
    monkeypatch.setattr(connection, "close_mongo_connection", _close)
    return db


@pytest.fixture
async def api_client(patch_mongo):
    transport = ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
