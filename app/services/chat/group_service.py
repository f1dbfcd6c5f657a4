# app/services/chat/group_service.py
from typing import Dict, List, Optional
from uuid import UUID
import logging
import uuid

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..base_service import BaseService
from ...core.change_feed import ChangeFeed, ChangeType, MEMBERSHIPS, MESSAGES
from ...core.exceptions import PermissionDeniedError, ValidationError
from ...models.chat import GroupConversation, ConversationParticipant, Message, MessageType
from ...schemas.messaging_schemas import GroupView, MembershipRead, MessageRead
from ...utils.time import as_utc, utcnow
from .participants import Participant, ParticipantDirectory

logger = logging.getLogger(__name__)

MIN_OTHER_MEMBERS = 2


class GroupService(BaseService[GroupConversation]):
    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        super().__init__(GroupConversation, db, feed)

    async def find_group(self, tenant_id: UUID, conversation_id: UUID) -> Optional[GroupConversation]:
        stmt = select(GroupConversation).where(
            and_(
                GroupConversation.id == conversation_id,
                GroupConversation.tenant_id == tenant_id,
            )
        )
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def get_membership(self, conversation_id: UUID, participant_id: UUID) -> Optional[ConversationParticipant]:
        stmt = select(ConversationParticipant).where(
            and_(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.participant_id == participant_id,
            )
        )
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def group_for_member(self, viewer: Participant, key: UUID) -> Optional[GroupConversation]:
        """The group behind a conversation key, None for direct keys; non-members are refused."""
        group = await self.find_group(viewer.tenant_id, key)
        if group is None:
            return None
        if not any(p.participant_id == viewer.participant_id for p in group.participants):
            raise PermissionDeniedError("You are not a member of this group")
        return group

    async def create_group(
        self,
        creator: Participant,
        name: str,
        member_ids: List[UUID],
        directory: ParticipantDirectory,
        description: Optional[str] = None,
    ) -> GroupConversation:
        """Create a group with its initial members and a seed message announcing it"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Please enter a group name", field="name")

        others = list(dict.fromkeys(m for m in member_ids if m != creator.participant_id))
        if len(others) < MIN_OTHER_MEMBERS:
            raise ValidationError(
                f"Please select at least {MIN_OTHER_MEMBERS} participants", field="member_ids"
            )

        roster = await directory.profiles_by_id(creator.tenant_id)
        unknown = [str(m) for m in others if m not in roster]
        if unknown:
            raise ValidationError(f"Unknown participants: {', '.join(unknown)}", field="member_ids")

        now = utcnow()
        conversation_id = uuid.uuid4()
        memberships = [
            ConversationParticipant(
                conversation_id=conversation_id,
                participant_id=participant_id,
                role="owner" if participant_id == creator.participant_id else "member",
                joined_at=now,
                last_read_at=now if participant_id == creator.participant_id else None,
            )
            for participant_id in [creator.participant_id, *others]
        ]
        group = GroupConversation(
            id=conversation_id,
            tenant_id=creator.tenant_id,
            name=name,
            description=description,
            created_by=creator.participant_id,
            participants=memberships,
        )
        self.db.add(group)

        seed = Message(
            tenant_id=creator.tenant_id,
            sender_id=creator.participant_id,
            conversation_id=group.id,
            text=f'Group "{name}" created',
            message_type=MessageType.TEXT.value,
            is_group=True,
            group_name=name,
            sent_at=now,
        )
        self.db.add(seed)
        await self._commit("create group")
        logger.info(f"Group {group.id} created by {creator.participant_id} with {len(others)} members")

        for membership in memberships:
            await self._publish(ChangeType.INSERT, MEMBERSHIPS, creator.tenant_id, MembershipRead.from_model(membership))
        await self._publish(ChangeType.INSERT, MESSAGES, creator.tenant_id, MessageRead.from_model(seed))
        return group

    async def list_members(self, viewer: Participant, conversation_id: UUID) -> List[ConversationParticipant]:
        group = await self.group_for_member(viewer, conversation_id)
        if group is None:
            raise ValidationError("Unknown group conversation", field="conversation_id")
        return sorted(group.participants, key=lambda p: (p.joined_at, str(p.participant_id)))

    async def list_groups_for(self, participant: Participant) -> Dict[UUID, GroupView]:
        stmt = (
            select(GroupConversation, ConversationParticipant.last_read_at)
            .join(ConversationParticipant, ConversationParticipant.conversation_id == GroupConversation.id)
            .where(
                and_(
                    GroupConversation.tenant_id == participant.tenant_id,
                    ConversationParticipant.participant_id == participant.participant_id,
                )
            )
        )
        result = await self._execute(stmt)
        return {
            group.id: GroupView(
                conversation_id=group.id,
                name=group.name,
                avatar_url=group.avatar_url,
                last_read_at=last_read_at,
            )
            for group, last_read_at in result.all()
        }

    async def advance_read_marker(self, viewer: Participant, conversation_id: UUID, up_to) -> bool:
        """Move the viewer's last_read_at forward; never moves it back."""
        membership = await self.get_membership(conversation_id, viewer.participant_id)
        if membership is None:
            raise PermissionDeniedError("You are not a member of this group")

        current = membership.last_read_at
        if current is not None and as_utc(current) >= up_to:
            return False

        membership.last_read_at = up_to
        await self._commit("mark group as read")
        await self._publish(ChangeType.UPDATE, MEMBERSHIPS, viewer.tenant_id, MembershipRead.from_model(membership))
        return True
