# app/core/config.py
"""Application configuration using Pydantic."""
from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    database_url: str
    # Without Redis the change-feed stays in-process and directory lookups are not cached
    redis_url: Optional[str] = None
    directory_url: str = 'http://localhost:8000/api/v1/directory'
    directory_timeout: float = 10.0

    app_version: str = '1.0.0'
    environment: str = 'development'
    log_level: str = 'info'
    allowed_origins: List[str] = ['*']

    # Messaging
    typing_ttl_seconds: float = 3.0
    presence_heartbeat_seconds: int = 30
    directory_cache_ttl: int = 60
    message_history_limit: int = 200

    # Realtime reconnection back-off
    realtime_reconnect_initial_delay: float = 1.0
    realtime_reconnect_max_delay: float = 30.0

    model_config = {
        'env_file': '.env',
        'extra': 'ignore'
    }

settings = Settings()
