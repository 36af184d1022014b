import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stratix.config import get_settings
from stratix.database import connection
from stratix.repositories.conversation_repository import ConversationRepository
from stratix.repositories.message_repository import MessageRepository
from stratix.repositories.user_repository import UserRepository
from stratix.routers.conversations import router as conversations_router
from stratix.routers.messages import router as messages_router
from stratix.routers.presence import router as presence_router
from stratix.routers.realtime import router as realtime_router
from stratix.services.broadcaster import Broadcaster
from stratix.services.chat_service import ChatService
from stratix.services.identity import IdentityResolver
from stratix.services.realtime_gateway import RealtimeGateway
from stratix.utils import realtime_bus
from stratix.utils.errors import ChatError
from stratix.utils.presence import PresenceRegistry

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    db = await connection.connect_to_mongo()

    bus = realtime_bus.create_bus(settings.redis_url)
    broadcaster = Broadcaster(PresenceRegistry(), bus)
    await broadcaster.start()
    identity = IdentityResolver(UserRepository(db))
    chat = ChatService(MessageRepository(db), ConversationRepository(db), identity)
    gateway = RealtimeGateway(
        broadcaster.registry,
        broadcaster,
        chat,
        identity,
        presence_ttl_seconds=settings.presence_ttl_seconds,
        presence_heartbeat_seconds=settings.presence_heartbeat_seconds,
    )
    app.state.broadcaster = broadcaster
    app.state.gateway = gateway
    logger.info("Realtime gateway ready (cross-process fan-out: %s)", bus.enabled)
    try:
        yield
    finally:
        await gateway.shutdown()
        await broadcaster.stop()
        await bus.close()
        app.state.gateway = None
        app.state.broadcaster = None
        await connection.close_mongo_connection()


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChatError, chat_error_handler)

    app.include_router(conversations_router)
    app.include_router(messages_router)
    app.include_router(presence_router)
    app.include_router(realtime_router)

    @app.get("/health")
    async def health():
        db = connection.get_database()
        collections = await db.list_collection_names()
        return {"status": "ok", "collections": collections}

    return app


app = create_app()
