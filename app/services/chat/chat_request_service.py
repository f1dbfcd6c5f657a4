# app/services/chat/chat_request_service.py
from typing import List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy import select, update, and_, or_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..base_service import BaseService
from ...core.change_feed import ChangeFeed, ChangeType, CHAT_REQUESTS
from ...core.exceptions import (
    DuplicateRequestError, InvalidStateError, NotFoundError,
    PermissionDeniedError, ValidationError
)
from ...models.chat import ChatRequest, ChatRequestStatus
from ...schemas.messaging_schemas import ChatRequestRead
from .participants import Participant, ParticipantProfile, requires_consent

logger = logging.getLogger(__name__)

Counterpart = Union[Participant, ParticipantProfile]


class ChatRequestWorkflow(BaseService[ChatRequest]):
    """Consent handshake gating student-to-student direct messages.

    ``None -> pending -> accepted | rejected``; terminal states are final.
    Only the receiver moves a request out of ``pending``.
    """

    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        super().__init__(ChatRequest, db, feed)

    def _pair_filter(self, tenant_id: UUID, a: UUID, b: UUID):
        return and_(
            ChatRequest.tenant_id == tenant_id,
            or_(
                and_(ChatRequest.sender_id == a, ChatRequest.receiver_id == b),
                and_(ChatRequest.sender_id == b, ChatRequest.receiver_id == a),
            ),
        )

    async def _find_for_pair(self, tenant_id: UUID, a: UUID, b: UUID, status: ChatRequestStatus) -> Optional[ChatRequest]:
        stmt = select(ChatRequest).where(
            and_(
                self._pair_filter(tenant_id, a, b),
                ChatRequest.status == status.value,
            )
        ).order_by(desc(ChatRequest.created_at)).limit(1)
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def can_message(self, sender: Participant, other: Counterpart) -> bool:
        if not requires_consent(sender.role, other.role):
            return True
        accepted = await self._find_for_pair(
            sender.tenant_id, sender.participant_id, other.participant_id, ChatRequestStatus.ACCEPTED
        )
        return accepted is not None

    async def ensure_can_message(self, sender: Participant, other: Counterpart):
        """Gate applied by callers before a direct message reaches the message store."""
        if not await self.can_message(sender, other):
            raise PermissionDeniedError("A chat request must be accepted before you can message this student")

    async def request(self, sender: Participant, receiver: Counterpart) -> Optional[ChatRequest]:
        """Ask receiver for consent. Returns None when messaging is already allowed."""
        if receiver.participant_id == sender.participant_id:
            raise ValidationError("You cannot send a chat request to yourself", field="receiver_id")

        if await self.can_message(sender, receiver):
            return None

        pending = await self._find_for_pair(
            sender.tenant_id, sender.participant_id, receiver.participant_id, ChatRequestStatus.PENDING
        )
        if pending is not None:
            if pending.sender_id == sender.participant_id:
                raise DuplicateRequestError("Chat request already sent")
            raise DuplicateRequestError("This student has already sent you a chat request")

        chat_request = ChatRequest(
            tenant_id=sender.tenant_id,
            sender_id=sender.participant_id,
            receiver_id=receiver.participant_id,
            status=ChatRequestStatus.PENDING.value,
        )
        self.db.add(chat_request)
        try:
            await self._commit("create chat request")
        except IntegrityError:
            # Lost a race with an identical request from another session
            logger.info(f"Concurrent chat request {sender.participant_id} -> {receiver.participant_id}")
            raise DuplicateRequestError("Chat request already sent")
        await self._refresh(chat_request)
        logger.info(f"Chat request {chat_request.id} sent {sender.participant_id} -> {receiver.participant_id}")

        await self._publish(ChangeType.INSERT, CHAT_REQUESTS, sender.tenant_id, ChatRequestRead.from_model(chat_request))
        return chat_request

    async def accept(self, actor: Participant, request_id: UUID) -> ChatRequest:
        return await self._transition(actor, request_id, ChatRequestStatus.ACCEPTED)

    async def reject(self, actor: Participant, request_id: UUID) -> ChatRequest:
        return await self._transition(actor, request_id, ChatRequestStatus.REJECTED)

    async def _transition(self, actor: Participant, request_id: UUID, target: ChatRequestStatus) -> ChatRequest:
        chat_request = await self.get(request_id)
        if chat_request is None or chat_request.tenant_id != actor.tenant_id:
            raise NotFoundError("Chat request", request_id)
        if chat_request.receiver_id != actor.participant_id:
            raise PermissionDeniedError("Only the receiver can respond to a chat request")
        if not chat_request.is_pending:
            logger.warning(f"Chat request {request_id} is {chat_request.status}, cannot mark {target.value}")
            raise InvalidStateError(f"Chat request is already {chat_request.status}")

        stmt = (
            update(ChatRequest)
            .where(and_(ChatRequest.id == request_id, ChatRequest.status == ChatRequestStatus.PENDING.value))
            .values(status=target.value)
        )
        result = await self._execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            logger.warning(f"Chat request {request_id} changed state concurrently")
            raise InvalidStateError("Chat request is no longer pending")

        await self._commit(f"mark chat request {target.value}")
        await self._refresh(chat_request)
        logger.info(f"Chat request {request_id} {target.value} by {actor.participant_id}")

        await self._publish(ChangeType.UPDATE, CHAT_REQUESTS, actor.tenant_id, ChatRequestRead.from_model(chat_request))
        return chat_request

    async def list_requests(
        self,
        participant: Participant,
        status: Optional[ChatRequestStatus] = None,
    ) -> List[ChatRequest]:
        """Incoming and outgoing requests, newest first"""
        stmt = select(ChatRequest).where(
            and_(
                ChatRequest.tenant_id == participant.tenant_id,
                or_(
                    ChatRequest.sender_id == participant.participant_id,
                    ChatRequest.receiver_id == participant.participant_id,
                ),
            )
        )
        if status is not None:
            stmt = stmt.where(ChatRequest.status == status.value)
        result = await self._execute(stmt.order_by(desc(ChatRequest.created_at)))
        return list(result.scalars().all())
