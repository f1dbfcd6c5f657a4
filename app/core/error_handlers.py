from fastapi import Request
from fastapi.responses import JSONResponse
import logging

from .exceptions import MessagingException, TransportError

logger = logging.getLogger(__name__)

async def messaging_exception_handler(request: Request, exc: MessagingException):
    """Handle domain exceptions raised by the messaging services"""
    if isinstance(exc, TransportError):
        logger.error(f"Transport error: {exc.message} - Path: {request.url.path}")
    else:
        logger.info(f"{exc.__class__.__name__}: {exc.message} - Path: {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.__class__.__name__},
        headers=exc.headers
    )

async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.exception(f"Unexpected error: {str(exc)} - Path: {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "type": "InternalError"}
    )

def register_exception_handlers(app):
    app.add_exception_handler(MessagingException, messaging_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
