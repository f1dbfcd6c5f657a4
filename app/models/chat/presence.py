# app/models/chat/presence.py
from sqlalchemy import Column, Boolean, DateTime, Uuid
from ..base import Base
from ...utils.time import utcnow


class PresenceRecord(Base):
    """One row per participant, written only by that participant's own sessions."""
    __tablename__ = "user_presence"

    participant_id = Column(Uuid(as_uuid=True), nullable=False, unique=True, index=True)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=False, default=utcnow)
