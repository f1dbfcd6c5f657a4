import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("REDIS_URL", None)

from typing import Dict, List, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.change_feed import ChangeFeed
from app.models import Base
from app.services.chat.participants import Participant, ParticipantDirectory, ParticipantProfile, Role


class FakeDirectory(ParticipantDirectory):
    """In-memory roster; tokens are the participant ids as strings."""

    def __init__(self, tenant_id: UUID):
        self.tenant_id = tenant_id
        self.profiles: Dict[UUID, ParticipantProfile] = {}
        self.tokens: Dict[str, Participant] = {}

    def add(self, role: Role, display_name: str) -> Participant:
        participant = Participant(participant_id=uuid4(), role=role, tenant_id=self.tenant_id)
        self.profiles[participant.participant_id] = ParticipantProfile(
            participant_id=participant.participant_id,
            role=role,
            display_name=display_name,
        )
        self.tokens[str(participant.participant_id)] = participant
        return participant

    async def resolve_current_participant(self, token: str) -> Optional[Participant]:
        return self.tokens.get(token)

    async def list_participants_in_tenant(self, tenant_id: UUID) -> List[ParticipantProfile]:
        if tenant_id != self.tenant_id:
            return []
        return list(self.profiles.values())


class Recorder:
    """Collects frames pushed to a session."""

    def __init__(self):
        self.frames: List[dict] = []

    async def __call__(self, frame: dict):
        self.frames.append(frame)

    def of_type(self, frame_type: str) -> List[dict]:
        return [f for f in self.frames if f["type"] == frame_type]

    def last_conversations(self) -> List[dict]:
        frames = self.of_type("conversations")
        return frames[-1]["conversations"] if frames else []


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def directory(tenant_id):
    return FakeDirectory(tenant_id)


@pytest.fixture
def teacher(directory):
    return directory.add(Role.TEACHER, "Ms. Rao")


@pytest.fixture
def admin(directory):
    return directory.add(Role.ADMIN, "Principal Iyer")


@pytest.fixture
def parent(directory):
    return directory.add(Role.PARENT, "Mr. Das")


@pytest.fixture
def student(directory):
    return directory.add(Role.STUDENT, "Asha")


@pytest.fixture
def other_student(directory):
    return directory.add(Role.STUDENT, "Bilal")


@pytest.fixture
def third_student(directory):
    return directory.add(Role.STUDENT, "Chen")


@pytest.fixture
def profile_of(directory):
    def lookup(participant: Participant) -> ParticipantProfile:
        return directory.profiles[participant.participant_id]
    return lookup


@pytest.fixture
def recorder():
    return Recorder()
