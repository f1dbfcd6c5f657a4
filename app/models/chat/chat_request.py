# app/models/chat/chat_request.py
import enum
from sqlalchemy import Column, String, Uuid, Index, text
from ..base import Base


class ChatRequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ChatRequest(Base):
    __tablename__ = "chat_requests"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    receiver_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    status = Column(String(10), nullable=False, default=ChatRequestStatus.PENDING.value)

    # At most one pending request per ordered pair; the reverse direction is checked by the workflow
    __table_args__ = (
        Index(
            'idx_chat_request_pending_pair',
            'tenant_id', 'sender_id', 'receiver_id',
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ChatRequestStatus.PENDING.value
