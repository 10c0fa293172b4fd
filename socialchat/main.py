from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from socialchat.core.config import Settings, get_settings
from socialchat.core.errors import ChatError
from socialchat.core.logger import configure_logging, get_logger
from socialchat.database.connection import (
    close_mongo_connection,
    connect_to_mongo,
    ensure_indexes,
    get_database,
    use_database,
)
from socialchat.routers.chat import router as chat_router
from socialchat.routers.conversations import router as conversations_router
from socialchat.services.realtime_service import RealtimeChannel
from socialchat.utils.blob_store import LocalBlobStore
from socialchat.utils.realtime_bus import build_bus
from socialchat.utils.websocket_manager import ConnectionManager


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, database=None, bus=None) -> FastAPI:
    """
    Build the application. `database` and `bus` replace the Mongo client and
    the Redis bus derived from settings (tests pass in-memory ones).
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database is None:
            db = await connect_to_mongo(settings)
        else:
            use_database(database)
            db = database
        await ensure_indexes(db)
        await app.state.realtime.start()
        try:
            yield
        finally:
            await app.state.realtime.stop()
            await close_mongo_connection()

    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)
    app.state.settings = settings
    app.state.blob_store = LocalBlobStore(settings)
    app.state.realtime = RealtimeChannel(ConnectionManager(), bus or build_bus(settings.REDIS_URL))
    if database is not None:
        use_database(database)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    app.include_router(conversations_router)
    app.include_router(chat_router)

    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    app.mount(settings.MEDIA_BASE_URL, StaticFiles(directory=settings.UPLOAD_DIR), name="media")

    @app.get("/health")
    async def health():
        try:
            db = get_database()
            await db.command("ping")
            mongodb = "connected"
        except Exception as exc:
            logger.error(f"Health check failed: {exc}")
            return JSONResponse(status_code=503, content={"status": "error", "mongodb": "disconnected"})
        return {"status": "healthy", "mongodb": mongodb}

    return app
