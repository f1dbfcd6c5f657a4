# app/routers/messaging/messaging_router.py
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.change_feed import ChangeFeed
from ...core.config import settings
from ...core.database import get_db
from ...models.chat import ChatRequestStatus
from ...schemas.messaging_schemas import (
    ChatRequestCreate, ChatRequestRead, ConversationSummary, GroupCreate, GroupRead,
    MembershipRead, MessageRead, MessageSearchFilters, PresenceRead, PresenceUpdate,
    SendMessageRequest, TypingRead
)
from ...services.chat.chat_request_service import ChatRequestWorkflow
from ...services.chat.conversation_index import derive_conversations
from ...services.chat.group_service import GroupService
from ...services.chat.message_service import MessageService
from ...services.chat.participants import Participant, ParticipantDirectory
from ...services.chat.presence_service import PresenceService, PresenceTracker
from ...services.chat.typing_service import TypingService, active_typing_keys
from .dependencies import get_change_feed, get_current_participant, get_participant_directory

router = APIRouter(prefix="/api/v1/messaging", tags=["Messaging"])


# MESSAGES

@router.post("/messages", response_model=MessageRead, status_code=201)
async def send_message(
    request: SendMessageRequest,
    participant: Participant = Depends(get_current_participant),
    directory: ParticipantDirectory = Depends(get_participant_directory),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    """Send a direct or group message"""
    if request.conversation_id is None:
        receiver = await directory.get_profile(participant.tenant_id, request.receiver_id)
        await ChatRequestWorkflow(db).ensure_can_message(participant, receiver)

    message = await MessageService(db, feed).send(
        participant, request.receiver_id, request, request.conversation_id
    )
    return MessageRead.from_model(message)


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    participant: Participant = Depends(get_current_participant),
    directory: ParticipantDirectory = Depends(get_participant_directory),
    db: AsyncSession = Depends(get_db)
):
    """Conversation list of the current participant, most recent first"""
    messages = await MessageService(db).list_for_participant(participant)
    groups = await GroupService(db).list_groups_for(participant)

    presence = PresenceTracker()
    presence.load(PresenceRead.from_model(r) for r in await PresenceService(db).list_for_tenant(participant.tenant_id))

    signals = await TypingService(db).list_active(participant.tenant_id, settings.typing_ttl_seconds)
    typing_keys = active_typing_keys(
        (TypingRead.from_model(s) for s in signals),
        participant.participant_id,
        set(groups),
        settings.typing_ttl_seconds,
    )

    return derive_conversations(
        participant.participant_id,
        [MessageRead.from_model(m) for m in messages],
        presence.snapshot(),
        typing_keys,
        await directory.profiles_by_id(participant.tenant_id),
        groups,
    )


@router.get("/conversations/{key}/messages", response_model=List[MessageRead])
async def get_conversation_messages(
    key: UUID,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_db)
):
    """Messages of one conversation, oldest first"""
    messages = await MessageService(db).list_for_conversation(participant, key, limit)
    return [MessageRead.from_model(m) for m in messages]


@router.post("/conversations/{key}/read", response_model=dict)
async def mark_conversation_read(
    key: UUID,
    participant: Participant = Depends(get_current_participant),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    """Mark everything received in a conversation as read"""
    count = await MessageService(db, feed).mark_read(participant, key)
    return {"key": str(key), "marked_read": count}


@router.get("/conversations/{key}/search", response_model=List[MessageRead])
async def search_conversation(
    key: UUID,
    query: Optional[str] = Query(None, max_length=200),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    message_type: Optional[str] = Query(None, pattern="^(text|file|image)$"),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_db)
):
    """Search one conversation by text, date range and message type"""
    filters = MessageSearchFilters(
        query=query, date_from=date_from, date_to=date_to, message_type=message_type
    )
    messages = await MessageService(db).search(participant, key, filters)
    return [MessageRead.from_model(m) for m in messages]


# PRESENCE

@router.get("/presence", response_model=List[PresenceRead])
async def list_presence(
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_db)
):
    records = await PresenceService(db).list_for_tenant(participant.tenant_id)
    return [PresenceRead.from_model(r) for r in records]


@router.post("/presence", response_model=Optional[PresenceRead])
async def update_presence(
    update: PresenceUpdate,
    participant: Participant = Depends(get_current_participant),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    """Publish the current participant's presence; null when the write was dropped"""
    record = await PresenceService(db, feed).publish(participant, update.is_online)
    return PresenceRead.from_model(record) if record else None


# CHAT REQUESTS

@router.get("/can-message/{other_id}", response_model=dict)
async def can_message(
    other_id: UUID,
    participant: Participant = Depends(get_current_participant),
    directory: ParticipantDirectory = Depends(get_participant_directory),
    db: AsyncSession = Depends(get_db)
):
    other = await directory.get_profile(participant.tenant_id, other_id)
    allowed = await ChatRequestWorkflow(db).can_message(participant, other)
    return {"participant_id": str(other_id), "can_message": allowed}


@router.post("/chat-requests", response_model=dict, status_code=201)
async def create_chat_request(
    request: ChatRequestCreate,
    participant: Participant = Depends(get_current_participant),
    directory: ParticipantDirectory = Depends(get_participant_directory),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    """Ask another student for consent to message them"""
    receiver = await directory.get_profile(participant.tenant_id, request.receiver_id)
    chat_request = await ChatRequestWorkflow(db, feed).request(participant, receiver)
    return {
        "can_message": chat_request is None,
        "request": ChatRequestRead.from_model(chat_request).model_dump(mode="json") if chat_request else None,
    }


@router.get("/chat-requests", response_model=List[ChatRequestRead])
async def list_chat_requests(
    status: Optional[ChatRequestStatus] = Query(None),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_db)
):
    requests = await ChatRequestWorkflow(db).list_requests(participant, status)
    return [ChatRequestRead.from_model(r) for r in requests]


@router.post("/chat-requests/{request_id}/accept", response_model=ChatRequestRead)
async def accept_chat_request(
    request_id: UUID,
    participant: Participant = Depends(get_current_participant),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    chat_request = await ChatRequestWorkflow(db, feed).accept(participant, request_id)
    return ChatRequestRead.from_model(chat_request)


@router.post("/chat-requests/{request_id}/reject", response_model=ChatRequestRead)
async def reject_chat_request(
    request_id: UUID,
    participant: Participant = Depends(get_current_participant),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    chat_request = await ChatRequestWorkflow(db, feed).reject(participant, request_id)
    return ChatRequestRead.from_model(chat_request)


# GROUPS

@router.post("/groups", response_model=GroupRead, status_code=201)
async def create_group(
    request: GroupCreate,
    participant: Participant = Depends(get_current_participant),
    directory: ParticipantDirectory = Depends(get_participant_directory),
    feed: ChangeFeed = Depends(get_change_feed),
    db: AsyncSession = Depends(get_db)
):
    """Create a group conversation with at least two other members"""
    group = await GroupService(db, feed).create_group(
        participant, request.name, request.member_ids, directory, request.description
    )
    return GroupRead.from_model(group)


@router.get("/groups/{conversation_id}/members", response_model=List[MembershipRead])
async def list_group_members(
    conversation_id: UUID,
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_db)
):
    members = await GroupService(db).list_members(participant, conversation_id)
    return [MembershipRead.from_model(m) for m in members]
