# app/services/chat/message_service.py
from datetime import datetime
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select, update, and_, or_, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..base_service import BaseService
from ...core.change_feed import ChangeFeed, ChangeType, MESSAGES
from ...core.exceptions import ValidationError
from ...models.chat import Message, MessageType, ConversationParticipant
from ...schemas.messaging_schemas import AttachmentIn, MessageContent, MessageRead, MessageSearchFilters
from ...utils.time import as_utc, utcnow
from .group_service import GroupService
from .participants import Participant

logger = logging.getLogger(__name__)


def message_type_for(attachment: Optional[AttachmentIn]) -> MessageType:
    if attachment is None:
        return MessageType.TEXT
    if attachment.mime_type.lower().startswith("image/"):
        return MessageType.IMAGE
    return MessageType.FILE


def escape_like(query: str) -> str:
    """Make LIKE wildcards in user input match literally."""
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MessageService(BaseService[Message]):
    """Append-only message log plus read receipts."""

    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        super().__init__(Message, db, feed)
        self.groups = GroupService(db, feed)

    def _conversation_filter(self, viewer: Participant, key: UUID, is_group: bool):
        if is_group:
            return Message.conversation_id == key
        me = viewer.participant_id
        return and_(
            Message.tenant_id == viewer.tenant_id,
            Message.conversation_id.is_(None),
            or_(
                and_(Message.sender_id == me, Message.receiver_id == key),
                and_(Message.sender_id == key, Message.receiver_id == me),
            ),
        )

    async def send(
        self,
        sender: Participant,
        receiver_id: Optional[UUID],
        content: MessageContent,
        conversation_id: Optional[UUID] = None,
    ) -> Message:
        """Append a message. Group messages name the group; direct messages name the receiver."""
        if content.is_empty:
            raise ValidationError("Message needs text or an attachment", field="text")

        group = None
        if conversation_id is not None:
            group = await self.groups.group_for_member(sender, conversation_id)
            if group is None:
                raise ValidationError("Unknown group conversation", field="conversation_id")
        elif receiver_id is None:
            raise ValidationError("receiver_id is required for direct messages", field="receiver_id")
        elif receiver_id == sender.participant_id:
            raise ValidationError("You cannot message yourself", field="receiver_id")

        text = content.text if content.text and content.text.strip() else None
        attachment = content.attachment
        message = Message(
            tenant_id=sender.tenant_id,
            sender_id=sender.participant_id,
            receiver_id=None if group else receiver_id,
            conversation_id=group.id if group else None,
            text=text,
            message_type=message_type_for(attachment).value,
            attachment_url=attachment.url if attachment else None,
            attachment_name=attachment.name if attachment else None,
            attachment_mime_type=attachment.mime_type if attachment else None,
            is_group=group is not None,
            group_name=group.name if group else None,
            sent_at=utcnow(),
        )
        self.db.add(message)
        await self._commit("send message")
        await self._refresh(message)
        logger.info(f"Message {message.id} sent by {sender.participant_id}")

        await self._publish(ChangeType.INSERT, MESSAGES, sender.tenant_id, MessageRead.from_model(message))
        return message

    async def list_for_conversation(
        self,
        viewer: Participant,
        key: UUID,
        limit: Optional[int] = None,
    ) -> List[Message]:
        """Messages of one conversation, oldest first; with a limit, the most recent ones."""
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        group = await self.groups.group_for_member(viewer, key)
        stmt = select(Message).where(self._conversation_filter(viewer, key, group is not None))

        if limit:
            stmt = stmt.order_by(desc(Message.sent_at), desc(Message.id)).limit(limit)
            result = await self._execute(stmt)
            return list(reversed(result.scalars().all()))

        stmt = stmt.order_by(Message.sent_at, Message.id)
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def list_for_participant(self, viewer: Participant) -> List[Message]:
        """Every message the viewer sent, received, or that belongs to one of their groups."""
        group_ids = select(ConversationParticipant.conversation_id).where(
            ConversationParticipant.participant_id == viewer.participant_id
        )
        stmt = select(Message).where(
            and_(
                Message.tenant_id == viewer.tenant_id,
                or_(
                    Message.sender_id == viewer.participant_id,
                    Message.receiver_id == viewer.participant_id,
                    Message.conversation_id.in_(group_ids),
                ),
            )
        ).order_by(Message.sent_at, Message.id)
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, viewer: Participant, key: UUID, up_to: Optional[datetime] = None) -> int:
        """Mark the viewer's unread messages in a conversation as read. Idempotent.

        Direct conversations stamp read_at once on each message addressed to
        the viewer and sent no later than ``up_to``; group conversations move
        the viewer's membership read marker forward. Returns how many messages
        became read.
        """
        up_to = as_utc(up_to) or utcnow()
        group = await self.groups.group_for_member(viewer, key)

        if group is not None:
            count = await self._count_group_unread(viewer, key, up_to)
            await self.groups.advance_read_marker(viewer, key, up_to)
            return count

        stmt = (
            update(Message)
            .where(
                and_(
                    self._conversation_filter(viewer, key, False),
                    Message.receiver_id == viewer.participant_id,
                    Message.read_at.is_(None),
                    Message.sent_at <= up_to,
                )
            )
            .values(read_at=up_to)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        changed = list(result.scalars().all())
        await self._commit("mark messages as read")
        if not changed:
            return 0

        # Only rows this call stamped; a concurrent reader keeps its own read_at
        result = await self._execute(
            select(Message)
            .where(Message.id.in_(changed))
            .order_by(Message.sent_at, Message.id)
            .execution_options(populate_existing=True)
        )
        marked = list(result.scalars().all())
        for message in marked:
            await self._publish(ChangeType.UPDATE, MESSAGES, viewer.tenant_id, MessageRead.from_model(message))
        logger.info(f"{len(marked)} messages from {key} marked read by {viewer.participant_id}")
        return len(marked)

    async def _count_group_unread(self, viewer: Participant, key: UUID, up_to: datetime) -> int:
        membership = await self.groups.get_membership(key, viewer.participant_id)
        conditions = [
            Message.conversation_id == key,
            Message.sender_id != viewer.participant_id,
            Message.sent_at <= up_to,
        ]
        if membership is not None and membership.last_read_at is not None:
            conditions.append(Message.sent_at > membership.last_read_at)
        result = await self._execute(select(func.count()).select_from(Message).where(and_(*conditions)))
        return result.scalar() or 0

    async def search(self, viewer: Participant, key: UUID, filters: MessageSearchFilters) -> List[Message]:
        group = await self.groups.group_for_member(viewer, key)
        stmt = select(Message).where(self._conversation_filter(viewer, key, group is not None))

        if filters.query:
            stmt = stmt.where(Message.text.ilike(f"%{escape_like(filters.query)}%", escape="\\"))
        if filters.date_from:
            stmt = stmt.where(Message.sent_at >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(Message.sent_at <= filters.date_to)
        if filters.message_type:
            stmt = stmt.where(Message.message_type == filters.message_type)

        result = await self._execute(stmt.order_by(Message.sent_at, Message.id))
        return list(result.scalars().all())
