import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from edulink_chat.config import settings
from edulink_chat.database.connection import close_mongo_connection, connect_to_mongo
from edulink_chat.errors import MessagingError
from edulink_chat.repositories.conversation_repository import ConversationRepository
from edulink_chat.repositories.message_repository import MessageRepository
from edulink_chat.routers.conversations import router as conversations_router
from edulink_chat.routers.messages import router as messages_router
from edulink_chat.routers.realtime import router as realtime_router
from edulink_chat.utils.log_config import setup_logging
from edulink_chat.utils.realtime_bus import close_bus, get_bus
from edulink_chat.utils.websocket_manager import RealtimeRelay, manager


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(f"Starting {settings.app_name}")
    db = await connect_to_mongo()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    relay = RealtimeRelay(await get_bus(), manager)
    await relay.start()
    try:
        yield
    finally:
        await relay.stop()
        await close_bus()
        await close_mongo_connection()
        logger.info(f"{settings.app_name} stopped")


app = FastAPI(title="EduLink Messaging", lifespan=lifespan)


@app.exception_handler(MessagingError)
async def messaging_exception_handler(request: Request, exc: MessagingError):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.message} - Path: {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "type": exc.__class__.__name__},
    )


app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(realtime_router)


@app.get("/health")
async def health():
    bus = await get_bus()
    return {"status": "ok", "realtime": "redis" if bus.enabled else "local"}
