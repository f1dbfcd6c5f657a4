# app/routers/messaging/__init__.py
from .messaging_router import router as messaging_router
from .websocket_router import router as websocket_router

__all__ = ["messaging_router", "websocket_router"]
