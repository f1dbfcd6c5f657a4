# app/services/chat/participants.py
"""Role-tagged participants and the directory that resolves them."""
import enum
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict

from ...core.cache import CacheManager
from ...core.exceptions import NotFoundError, TransportError

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: UUID
    role: Role
    tenant_id: UUID


class ParticipantProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: UUID
    role: Role
    display_name: str
    avatar_url: Optional[str] = None


def requires_consent(sender_role: Role, receiver_role: Role) -> bool:
    """Whether a direct message from sender_role to receiver_role needs an accepted chat request."""
    if sender_role in (Role.ADMIN, Role.TEACHER, Role.PARENT):
        return False
    if sender_role == Role.STUDENT:
        return receiver_role == Role.STUDENT
    raise ValueError(f"Unknown role: {sender_role}")


class ParticipantDirectory(ABC):
    """Account and roster lookups owned by the school administration service."""

    @abstractmethod
    async def resolve_current_participant(self, token: str) -> Optional[Participant]:
        """Participant for an access token, or None if the token is not recognised."""

    @abstractmethod
    async def list_participants_in_tenant(self, tenant_id: UUID) -> List[ParticipantProfile]:
        ...

    async def profiles_by_id(self, tenant_id: UUID) -> Dict[UUID, ParticipantProfile]:
        profiles = await self.list_participants_in_tenant(tenant_id)
        return {p.participant_id: p for p in profiles}

    async def get_profile(self, tenant_id: UUID, participant_id: UUID) -> ParticipantProfile:
        profile = (await self.profiles_by_id(tenant_id)).get(participant_id)
        if profile is None:
            raise NotFoundError("Participant", participant_id)
        return profile


class HttpParticipantDirectory(ParticipantDirectory):
    def __init__(
        self,
        base_url: str,
        cache: Optional[CacheManager] = None,
        cache_ttl: int = 60,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.timeout = timeout

    async def _get(self, path: str, headers: Optional[dict] = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.get(f"{self.base_url}{path}", headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Directory request {path} failed: {e}")
            raise TransportError("Participant directory unavailable")

    async def resolve_current_participant(self, token: str) -> Optional[Participant]:
        response = await self._get("/me", headers={"Authorization": f"Bearer {token}"})
        if response.status_code in (401, 403, 404):
            return None
        if response.status_code != 200:
            raise TransportError(f"Participant directory returned {response.status_code}")
        return Participant.model_validate(response.json())

    async def list_participants_in_tenant(self, tenant_id: UUID) -> List[ParticipantProfile]:
        cache_key = f"directory:participants:{tenant_id}"
        if self.cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return [ParticipantProfile.model_validate(row) for row in cached]

        response = await self._get(f"/tenants/{tenant_id}/participants")
        if response.status_code != 200:
            raise TransportError(f"Participant directory returned {response.status_code}")
        profiles = [ParticipantProfile.model_validate(row) for row in response.json()]

        if self.cache:
            await self.cache.set(
                cache_key,
                [p.model_dump(mode="json") for p in profiles],
                expire=self.cache_ttl,
            )
        return profiles
