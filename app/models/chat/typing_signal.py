# app/models/chat/typing_signal.py
from sqlalchemy import Column, Boolean, DateTime, Uuid, Index
from ..base import Base
from ...utils.time import utcnow


class TypingSignal(Base):
    """Ephemeral flag; a true value is stale once typing_ttl_seconds have passed since updated_at."""
    __tablename__ = "typing_indicators"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    # The writer's conversation key: the counterpart id for direct chats, else the group id
    conversation_id = Column(Uuid(as_uuid=True), nullable=False)
    participant_id = Column(Uuid(as_uuid=True), nullable=False)
    is_typing = Column(Boolean, default=False, nullable=False)
    signal_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_typing_unique', 'conversation_id', 'participant_id', unique=True),
    )
