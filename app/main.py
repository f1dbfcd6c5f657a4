from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import time

from .core.config import settings
from .core.cache import cache
from .core.change_feed import change_feed
from .core.database import close_db_connections
from .core.error_handlers import register_exception_handlers
from .core.logging import setup_logging

# Import all routers
from .routers import health
from .routers.messaging import messaging_router, websocket_router

setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting School Messaging API")

    # Initialize cache and realtime bridge
    await cache.connect()
    await change_feed.start()
    logger.info("Cache and change-feed initialized")

    yield

    logger.info("Shutting down School Messaging API")
    await change_feed.stop()
    await cache.disconnect()
    await close_db_connections()
    logger.info("Shutdown complete")

app = FastAPI(
    title="School Messaging API",
    description="Realtime direct and group messaging for multi-tenant schools",
    version=settings.app_version,
    lifespan=lifespan
)

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    logger.info(f"{request.method} {request.url.path} - {process_time:.3f}s")
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)

register_exception_handlers(app)

# Include all routers
app.include_router(health.router)
app.include_router(messaging_router)
app.include_router(websocket_router)

@app.get("/")
async def root():
    return {
        "message": "School Messaging API",
        "version": settings.app_version,
        "features": ["Direct messages", "Group chats", "Chat requests", "Presence", "Typing indicators"],
        "status": "active"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, reload=True)
