# app/services/chat/session.py
"""State and actions of one connected participant."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set
from uuid import UUID

from ...core.change_feed import (
    ChangeEvent, ChangeFeed, CHAT_REQUESTS, MEMBERSHIPS, MESSAGES, PRESENCE, TYPING
)
from ...schemas.messaging_schemas import (
    ChatRequestRead, ConversationSummary, GroupView, MembershipRead,
    MessageRead, MessageSearchFilters, PresenceRead, SendMessageRequest, TypingRead
)
from ...utils.time import as_utc
from .chat_request_service import ChatRequestWorkflow
from .conversation_index import MessageLog, derive_conversations
from .dispatcher import RealtimeDispatcher
from .group_service import GroupService
from .message_service import MessageService
from .participants import Participant, ParticipantDirectory, ParticipantProfile
from .presence_service import PresenceService, PresenceTracker
from .typing_service import DEFAULT_TYPING_TTL, TypingBroadcaster, TypingObserver, TypingService

logger = logging.getLogger(__name__)

Push = Callable[[dict], Awaitable[None]]


class MessagingSession:
    """Everything the messaging view of one participant needs.

    ``start`` bulk-loads the participant's messages, the tenant's presence and
    typing rows and groups, marks the participant online and
    subscribes to the change-feed. Every relevant event re-derives the
    conversation list and pushes it through ``push``.
    """

    def __init__(
        self,
        participant: Participant,
        directory: ParticipantDirectory,
        session_factory,
        feed: ChangeFeed,
        push: Push,
        typing_ttl: float = DEFAULT_TYPING_TTL,
    ):
        self.participant = participant
        self.directory = directory
        self.session_factory = session_factory
        self.feed = feed
        self.push = push

        self.log = MessageLog()
        self.presence = PresenceTracker()
        self.typing = TypingObserver(participant.participant_id, typing_ttl, on_change=self._schedule_refresh)
        self.broadcaster = TypingBroadcaster(self._write_typing, typing_ttl)
        self.groups: Dict[UUID, GroupView] = {}
        self.profiles: Dict[UUID, ParticipantProfile] = {}
        self.conversations: List[ConversationSummary] = []

        self.dispatcher = RealtimeDispatcher(feed, participant.tenant_id, self.refresh)
        self.dispatcher.register(MESSAGES, self._on_message)
        self.dispatcher.register(PRESENCE, self._on_presence)
        self.dispatcher.register(TYPING, self._on_typing)
        self.dispatcher.register(CHAT_REQUESTS, self._on_chat_request)
        self.dispatcher.register(MEMBERSHIPS, self._on_membership)

        self._tasks: Set[asyncio.Task] = set()

    @property
    def me(self) -> UUID:
        return self.participant.participant_id

    @property
    def group_ids(self) -> Set[UUID]:
        return set(self.groups)

    async def start(self):
        await self._load()
        await self.set_presence(True)
        await self.dispatcher.start()
        await self.refresh()
        logger.info(f"Messaging session started for {self.me}")

    async def close(self):
        await self.broadcaster.close()
        self.typing.close()
        await self.dispatcher.close()
        for task in list(self._tasks):
            task.cancel()
        await self.set_presence(False)
        logger.info(f"Messaging session closed for {self.me}")

    async def _load(self):
        async with self.session_factory() as db:
            messages = await MessageService(db).list_for_participant(self.participant)
            presence = await PresenceService(db).list_for_tenant(self.participant.tenant_id)
            typing = await TypingService(db).list_active(self.participant.tenant_id, self.typing.ttl)
            self.groups = await GroupService(db).list_groups_for(self.participant)

        self.log.load(MessageRead.from_model(m) for m in messages)
        self.presence.load(PresenceRead.from_model(r) for r in presence)
        self.typing.load((TypingRead.from_model(s) for s in typing), self.group_ids)
        self.profiles = await self.directory.profiles_by_id(self.participant.tenant_id)

    def derive(self) -> List[ConversationSummary]:
        return derive_conversations(
            self.me,
            self.log.messages(),
            self.presence.snapshot(),
            self.typing.typing_keys(),
            self.profiles,
            self.groups,
        )

    async def refresh(self):
        self.conversations = self.derive()
        await self.push({
            "type": "conversations",
            "conversations": [c.model_dump(mode="json") for c in self.conversations],
        })

    def _schedule_refresh(self):
        task = asyncio.ensure_future(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Change-feed handlers; each is an idempotent upsert returning whether anything changed

    def _involves(self, message: MessageRead) -> bool:
        if message.conversation_id is not None:
            return message.conversation_id in self.groups
        return self.me in (message.sender_id, message.receiver_id)

    async def _on_message(self, event: ChangeEvent) -> bool:
        message = MessageRead.model_validate(event.row)
        if not self._involves(message):
            return False
        return self.log.apply(message)

    async def _on_presence(self, event: ChangeEvent) -> bool:
        return self.presence.apply(PresenceRead.model_validate(event.row))

    async def _on_typing(self, event: ChangeEvent) -> bool:
        return self.typing.apply(TypingRead.model_validate(event.row), self.group_ids)

    async def _on_chat_request(self, event: ChangeEvent) -> bool:
        chat_request = ChatRequestRead.model_validate(event.row)
        if self.me not in (chat_request.sender_id, chat_request.receiver_id):
            return False
        await self.push({"type": "chat_request", "request": chat_request.model_dump(mode="json")})
        # Consent changes who may be messaged, not the conversation list
        return False

    async def _on_membership(self, event: ChangeEvent) -> bool:
        membership = MembershipRead.model_validate(event.row)
        if membership.participant_id != self.me:
            return False

        group = self.groups.get(membership.conversation_id)
        if group is None:
            async with self.session_factory() as db:
                groups = await GroupService(db).list_groups_for(self.participant)
            if membership.conversation_id not in groups:
                return False
            self.groups[membership.conversation_id] = groups[membership.conversation_id]
            return True

        marker = as_utc(membership.last_read_at)
        if marker is None or (group.last_read_at is not None and marker <= group.last_read_at):
            return False
        self.groups[membership.conversation_id] = group.model_copy(update={"last_read_at": marker})
        return True

    # Actions of the local participant

    async def _profile(self, participant_id: UUID) -> ParticipantProfile:
        profile = self.profiles.get(participant_id)
        if profile is None:
            profile = await self.directory.get_profile(self.participant.tenant_id, participant_id)
            self.profiles[participant_id] = profile
        return profile

    async def send_message(self, request: SendMessageRequest) -> MessageRead:
        async with self.session_factory() as db:
            if request.conversation_id is None:
                receiver = await self._profile(request.receiver_id)
                await ChatRequestWorkflow(db).ensure_can_message(self.participant, receiver)
            message = await MessageService(db, self.feed).send(
                self.participant, request.receiver_id, request, request.conversation_id
            )
            sent = MessageRead.from_model(message)

        await self.broadcaster.stop(request.conversation_id or request.receiver_id)
        # The feed may already have delivered this row; the log ignores the duplicate
        if self.log.apply(sent):
            await self.refresh()
        return sent

    async def mark_read(self, key: UUID) -> int:
        async with self.session_factory() as db:
            return await MessageService(db, self.feed).mark_read(self.participant, key)

    async def history(self, key: UUID, limit: Optional[int] = None) -> List[MessageRead]:
        async with self.session_factory() as db:
            messages = await MessageService(db).list_for_conversation(self.participant, key, limit)
        history = [MessageRead.from_model(m) for m in messages]
        self.log.load(history)
        return history

    async def search(self, key: UUID, filters: MessageSearchFilters) -> List[MessageRead]:
        async with self.session_factory() as db:
            messages = await MessageService(db).search(self.participant, key, filters)
        return [MessageRead.from_model(m) for m in messages]

    async def keystroke(self, key: UUID):
        await self.broadcaster.keystroke(key)

    async def stop_typing(self, key: UUID):
        await self.broadcaster.stop(key)

    async def heartbeat(self):
        await self.set_presence(True)

    async def set_presence(self, is_online: bool):
        async with self.session_factory() as db:
            await PresenceService(db, self.feed).publish(self.participant, is_online)

    async def _write_typing(self, key: UUID, is_typing: bool):
        async with self.session_factory() as db:
            await TypingService(db, self.feed).set_typing(self.participant, key, is_typing)
