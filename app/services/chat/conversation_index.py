# app/services/chat/conversation_index.py
"""Conversation list derivation.

Nothing here is stored: the list is recomputed from the message log, the
presence snapshot, the active typing keys and the roster every time one of
them changes.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Set
from uuid import UUID

from ...schemas.messaging_schemas import ConversationSummary, GroupView, MessageRead
from .participants import ParticipantProfile

DIRECT_FALLBACK_NAME = "Direct Message"
GROUP_FALLBACK_NAME = "Group chat"


def conversation_key_for(message: MessageRead, viewer_id: UUID) -> UUID:
    """Explicit conversation_id for groups, otherwise whichever party is not the viewer."""
    if message.conversation_id is not None:
        return message.conversation_id
    if message.sender_id == viewer_id:
        return message.receiver_id
    return message.sender_id


def preview_for(message: MessageRead) -> str:
    if message.text:
        return message.text
    if message.attachment is not None:
        return f"Attachment: {message.attachment.name}"
    return ""


def _sort_key(message: MessageRead):
    return (message.sent_at, str(message.message_id))


class MessageLog:
    """Messages keyed by message_id; applying the same row twice is a no-op."""

    def __init__(self):
        self._messages: Dict[UUID, MessageRead] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: UUID) -> bool:
        return message_id in self._messages

    def load(self, messages: Iterable[MessageRead]):
        for message in messages:
            self.apply(message)

    def apply(self, message: MessageRead) -> bool:
        existing = self._messages.get(message.message_id)
        if existing is not None:
            if existing.read_at is not None and message.read_at is None:
                # A late INSERT echo must not undo a read receipt
                message = message.model_copy(update={"read_at": existing.read_at})
            if message == existing:
                return False
        self._messages[message.message_id] = message
        return True

    def get(self, message_id: UUID) -> Optional[MessageRead]:
        return self._messages.get(message_id)

    def messages(self) -> List[MessageRead]:
        return sorted(self._messages.values(), key=_sort_key)

    def for_conversation(self, viewer_id: UUID, key: UUID) -> List[MessageRead]:
        return [m for m in self.messages() if conversation_key_for(m, viewer_id) == key]


def _unique(messages: Iterable[MessageRead]) -> List[MessageRead]:
    log = MessageLog()
    log.load(messages)
    return log.messages()


def derive_conversations(
    viewer_id: UUID,
    messages: Iterable[MessageRead],
    presence: Mapping[UUID, dict],
    typing_keys: Set[UUID],
    profiles: Mapping[UUID, ParticipantProfile],
    groups: Mapping[UUID, GroupView],
) -> List[ConversationSummary]:
    """Ordered conversation list for viewer_id, most recent activity first."""
    threads: Dict[UUID, List[MessageRead]] = defaultdict(list)
    for message in _unique(messages):
        key = conversation_key_for(message, viewer_id)
        if key is not None:
            threads[key].append(message)

    summaries = []
    for key, thread in threads.items():
        last = thread[-1]
        group = groups.get(key)
        is_group = group is not None or last.is_group

        if is_group:
            last_read_at = group.last_read_at if group else None
            unread = sum(
                1 for m in thread
                if m.sender_id != viewer_id and (last_read_at is None or m.sent_at > last_read_at)
            )
            display_name = (group.name if group else None) or last.group_name or GROUP_FALLBACK_NAME
            avatar_url = group.avatar_url if group else None
            is_online = False
        else:
            unread = sum(1 for m in thread if m.receiver_id == viewer_id and m.read_at is None)
            profile = profiles.get(key)
            display_name = profile.display_name if profile else DIRECT_FALLBACK_NAME
            avatar_url = profile.avatar_url if profile else None
            is_online = bool(presence.get(key, {}).get("is_online", False))

        summaries.append(ConversationSummary(
            key=key,
            is_group=is_group,
            display_name=display_name,
            avatar_url=avatar_url,
            last_message_id=last.message_id,
            last_message_preview=preview_for(last),
            last_activity=last.sent_at,
            unread_count=unread,
            is_online=is_online,
            is_typing=key in typing_keys,
        ))

    summaries.sort(key=lambda s: (s.last_activity, str(s.key)), reverse=True)
    return summaries
