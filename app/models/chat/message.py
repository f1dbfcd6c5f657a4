# app/models/chat/message.py
import enum
from sqlalchemy import Column, String, Text, Boolean, DateTime, Uuid, Index
from ..base import Base
from ...utils.time import utcnow


class MessageType(str, enum.Enum):
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"


class Message(Base):
    """Append-only message log; read_at is the only field that changes after insert."""
    __tablename__ = "messages"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    # Null for group messages, which are addressed to the group's members
    receiver_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    # Set only for group messages; direct messages are keyed by the counterpart
    conversation_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    text = Column(Text, nullable=True)
    message_type = Column(String(10), nullable=False, default=MessageType.TEXT.value)
    attachment_url = Column(String(1000), nullable=True)
    attachment_name = Column(String(255), nullable=True)
    attachment_mime_type = Column(String(255), nullable=True)

    is_group = Column(Boolean, default=False, nullable=False)
    group_name = Column(String(200), nullable=True)

    sent_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    read_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('idx_message_pair_time', 'tenant_id', 'sender_id', 'receiver_id', 'sent_at'),
        Index('idx_message_conversation_time', 'conversation_id', 'sent_at'),
        Index('idx_message_unread', 'receiver_id', 'read_at'),
    )
