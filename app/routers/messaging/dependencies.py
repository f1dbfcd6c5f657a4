# app/routers/messaging/dependencies.py
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...core.cache import cache
from ...core.change_feed import ChangeFeed, change_feed
from ...core.config import settings
from ...core.database import AsyncSessionLocal
from ...services.chat.participants import HttpParticipantDirectory, Participant, ParticipantDirectory

bearer_scheme = HTTPBearer(auto_error=False)

_directory = HttpParticipantDirectory(
    settings.directory_url,
    cache=cache,
    cache_ttl=settings.directory_cache_ttl,
    timeout=settings.directory_timeout,
)


def get_participant_directory() -> ParticipantDirectory:
    return _directory


def get_change_feed() -> ChangeFeed:
    return change_feed


def get_session_factory():
    """Factory for the short-lived sessions a websocket opens per action"""
    return AsyncSessionLocal


async def get_current_participant(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    directory: ParticipantDirectory = Depends(get_participant_directory),
) -> Participant:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    participant = await directory.resolve_current_participant(credentials.credentials)
    if participant is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return participant
