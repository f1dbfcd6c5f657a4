"""Health check endpoints."""
from fastapi import APIRouter
import logging

from ..core.cache import cache
from ..core.change_feed import change_feed
from ..core.config import settings
from ..core.database import health_check_db

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

@router.get("/")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": "School Messaging API",
        "version": settings.app_version,
        "environment": settings.environment
    }

@router.get("/db-health")
async def database_health():
    """Database and realtime bridge health"""
    db_healthy = await health_check_db()
    if not db_healthy:
        logger.error("Database health check failed")

    components = {
        "database": "healthy" if db_healthy else "unhealthy",
        "cache": "enabled" if cache.enabled else "disabled",
        "realtime": "bridged" if change_feed.bridged else "local",
    }
    if change_feed.bridged:
        components["realtime_connected"] = change_feed.connected

    return {
        "status": "healthy" if db_healthy else "unhealthy",
        "components": components
    }
