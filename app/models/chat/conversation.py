# app/models/chat/conversation.py
from sqlalchemy import Column, String, Text, DateTime, Uuid, ForeignKey, Index
from sqlalchemy.orm import relationship
from ..base import Base
from ...utils.time import utcnow


class GroupConversation(Base):
    __tablename__ = "group_conversations"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    avatar_url = Column(String(1000), nullable=True)
    created_by = Column(Uuid(as_uuid=True), nullable=False)

    participants = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    conversation_id = Column(Uuid(as_uuid=True), ForeignKey("group_conversations.id"), nullable=False, index=True)
    participant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    role = Column(String(10), nullable=False, default="member")  # 'owner' or 'member'
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_read_at = Column(DateTime(timezone=True), nullable=True)

    conversation = relationship("GroupConversation", back_populates="participants")

    __table_args__ = (
        Index('idx_conversation_participant_unique', 'conversation_id', 'participant_id', unique=True),
    )
