# app/schemas/messaging_schemas.py
"""Pydantic schemas for messages, presence, typing, chat requests and groups."""
from typing import List, Optional
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.time import as_utc


class AttachmentIn(BaseModel):
    """Descriptor returned by the file upload collaborator."""
    url: str = Field(..., min_length=1, max_length=1000, description="Public file URL")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    mime_type: str = Field(default="application/octet-stream", max_length=255, description="MIME type")


class MessageContent(BaseModel):
    text: Optional[str] = Field(default=None, max_length=5000)
    attachment: Optional[AttachmentIn] = None

    @property
    def is_empty(self) -> bool:
        return not (self.text and self.text.strip()) and self.attachment is None


class SendMessageRequest(MessageContent):
    receiver_id: Optional[UUID] = Field(default=None, description="Counterpart for direct messages")
    conversation_id: Optional[UUID] = Field(default=None, description="Group conversation id")

    @model_validator(mode='after')
    def validate_target(self):
        if self.receiver_id is None and self.conversation_id is None:
            raise ValueError('receiver_id or conversation_id is required')
        return self


class MessageRead(BaseModel):
    message_id: UUID
    tenant_id: UUID
    sender_id: UUID
    receiver_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    text: Optional[str] = None
    message_type: str = "text"
    attachment: Optional[AttachmentIn] = None
    is_group: bool = False
    group_name: Optional[str] = None
    sent_at: datetime
    read_at: Optional[datetime] = None

    @field_validator('sent_at', 'read_at')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @classmethod
    def from_model(cls, message) -> "MessageRead":
        attachment = None
        if message.attachment_url:
            attachment = AttachmentIn(
                url=message.attachment_url,
                name=message.attachment_name or "attachment",
                mime_type=message.attachment_mime_type or "application/octet-stream",
            )
        return cls(
            message_id=message.id,
            tenant_id=message.tenant_id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            conversation_id=message.conversation_id,
            text=message.text,
            message_type=message.message_type,
            attachment=attachment,
            is_group=message.is_group,
            group_name=message.group_name,
            sent_at=message.sent_at,
            read_at=message.read_at,
        )


class PresenceRead(BaseModel):
    participant_id: UUID
    tenant_id: UUID
    is_online: bool
    last_seen: datetime

    @field_validator('last_seen')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @classmethod
    def from_model(cls, record) -> "PresenceRead":
        return cls(
            participant_id=record.participant_id,
            tenant_id=record.tenant_id,
            is_online=record.is_online,
            last_seen=record.last_seen,
        )


class PresenceUpdate(BaseModel):
    is_online: bool = True


class TypingRead(BaseModel):
    tenant_id: UUID
    conversation_id: UUID
    participant_id: UUID
    is_typing: bool
    updated_at: datetime

    @field_validator('updated_at')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @classmethod
    def from_model(cls, signal) -> "TypingRead":
        return cls(
            tenant_id=signal.tenant_id,
            conversation_id=signal.conversation_id,
            participant_id=signal.participant_id,
            is_typing=signal.is_typing,
            updated_at=signal.signal_at,
        )


class ChatRequestCreate(BaseModel):
    receiver_id: UUID


class ChatRequestRead(BaseModel):
    request_id: UUID
    tenant_id: UUID
    sender_id: UUID
    receiver_id: UUID
    status: str
    created_at: Optional[datetime] = None

    @field_validator('created_at')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @classmethod
    def from_model(cls, request) -> "ChatRequestRead":
        return cls(
            request_id=request.id,
            tenant_id=request.tenant_id,
            sender_id=request.sender_id,
            receiver_id=request.receiver_id,
            status=request.status,
            created_at=request.created_at,
        )


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Group name")
    member_ids: List[UUID] = Field(..., description="Participants besides the creator")
    description: Optional[str] = Field(default=None, max_length=1000)


class MembershipRead(BaseModel):
    conversation_id: UUID
    participant_id: UUID
    role: str
    joined_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None

    @field_validator('joined_at', 'last_read_at')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @classmethod
    def from_model(cls, membership) -> "MembershipRead":
        return cls(
            conversation_id=membership.conversation_id,
            participant_id=membership.participant_id,
            role=membership.role,
            joined_at=membership.joined_at,
            last_read_at=membership.last_read_at,
        )


class GroupRead(BaseModel):
    conversation_id: UUID
    tenant_id: UUID
    name: str
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    created_by: UUID
    member_ids: List[UUID] = []

    @classmethod
    def from_model(cls, group) -> "GroupRead":
        return cls(
            conversation_id=group.id,
            tenant_id=group.tenant_id,
            name=group.name,
            description=group.description,
            avatar_url=group.avatar_url,
            created_by=group.created_by,
            member_ids=[p.participant_id for p in group.participants],
        )


class GroupView(BaseModel):
    """A group as seen by one member, including that member's read marker."""
    conversation_id: UUID
    name: str
    avatar_url: Optional[str] = None
    last_read_at: Optional[datetime] = None

    @field_validator('last_read_at')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)


class ConversationSummary(BaseModel):
    key: UUID
    is_group: bool
    display_name: str
    avatar_url: Optional[str] = None
    last_message_id: UUID
    last_message_preview: str
    last_activity: datetime
    unread_count: int = 0
    is_online: bool = False
    is_typing: bool = False


class MessageSearchFilters(BaseModel):
    query: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    message_type: Optional[str] = Field(default=None, pattern="^(text|file|image)$")

    @field_validator('date_from', 'date_to')
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)
