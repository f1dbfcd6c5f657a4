# app/services/chat/typing_service.py
"""Typing indicators: store writes, the local debounce state machine and the remote view."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..base_service import BaseService
from ...core.change_feed import ChangeFeed, ChangeType, TYPING
from ...core.exceptions import TransportError
from ...models.chat import TypingSignal
from ...schemas.messaging_schemas import TypingRead
from ...utils.time import utcnow
from .participants import Participant

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TTL = 3.0


class TypingService(BaseService[TypingSignal]):
    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        super().__init__(TypingSignal, db, feed)

    async def set_typing(self, participant: Participant, conversation_key: UUID, is_typing: bool) -> Optional[TypingSignal]:
        """Upsert the participant's signal for one conversation. Failures are logged and dropped."""
        try:
            result = await self._execute(
                select(TypingSignal).where(
                    and_(
                        TypingSignal.conversation_id == conversation_key,
                        TypingSignal.participant_id == participant.participant_id,
                    )
                )
            )
            signal = result.scalar_one_or_none()
            change_type = ChangeType.UPDATE
            if signal is None:
                signal = TypingSignal(
                    tenant_id=participant.tenant_id,
                    conversation_id=conversation_key,
                    participant_id=participant.participant_id,
                )
                self.db.add(signal)
                change_type = ChangeType.INSERT

            signal.is_typing = is_typing
            signal.signal_at = utcnow()
            await self._commit("publish typing signal")
        except (TransportError, IntegrityError) as e:
            logger.warning(f"Typing signal from {participant.participant_id} dropped: {e}")
            return None

        await self._publish(change_type, TYPING, participant.tenant_id, TypingRead.from_model(signal))
        return signal

    async def list_active(self, tenant_id: UUID, ttl: float = DEFAULT_TYPING_TTL) -> List[TypingSignal]:
        since = utcnow() - timedelta(seconds=ttl)
        stmt = select(TypingSignal).where(
            and_(
                TypingSignal.tenant_id == tenant_id,
                TypingSignal.is_typing.is_(True),
                TypingSignal.signal_at >= since,
            )
        )
        result = await self._execute(stmt)
        return list(result.scalars().all())


def viewer_key(signal: TypingRead, viewer_id: UUID, group_ids: Set[UUID]) -> Optional[UUID]:
    """Translate the writer's conversation key into the viewer's.

    A direct-chat signal is stored under the writer's counterpart, i.e. the
    viewer, and the viewer files it under the writer. Group signals keep the
    group id. Anything else is not addressed to this viewer.
    """
    if signal.participant_id == viewer_id:
        return None
    if signal.conversation_id == viewer_id:
        return signal.participant_id
    if signal.conversation_id in group_ids:
        return signal.conversation_id
    return None


def signal_expiry(signal: TypingRead, now: datetime, ttl: float) -> datetime:
    # A sender clock running ahead must not stretch the window past the local ttl
    return min(signal.updated_at, now) + timedelta(seconds=ttl)


def active_typing_keys(
    signals: Iterable[TypingRead],
    viewer_id: UUID,
    group_ids: Set[UUID],
    ttl: float = DEFAULT_TYPING_TTL,
    now: Optional[datetime] = None,
) -> Set[UUID]:
    now = now or utcnow()
    keys = set()
    for signal in signals:
        key = viewer_key(signal, viewer_id, group_ids)
        if key is not None and signal.is_typing and signal_expiry(signal, now, ttl) > now:
            keys.add(key)
    return keys


TypingWriter = Callable[[UUID, bool], Awaitable[None]]


class TypingBroadcaster:
    """Idle -> Typing -> Idle per conversation for the local participant.

    The first keystroke writes ``is_typing=true`` and arms a timer; later
    keystrokes only re-arm it. When the timer fires the state returns to Idle
    and ``false`` is written.
    """

    def __init__(self, writer: TypingWriter, ttl: float = DEFAULT_TYPING_TTL):
        self._writer = writer
        self.ttl = ttl
        self._timers: Dict[UUID, asyncio.TimerHandle] = {}
        self._pending: Set[asyncio.Task] = set()

    def is_typing(self, conversation_key: UUID) -> bool:
        return conversation_key in self._timers

    async def keystroke(self, conversation_key: UUID):
        loop = asyncio.get_running_loop()
        timer = self._timers.pop(conversation_key, None)
        self._timers[conversation_key] = loop.call_later(self.ttl, self._expire, conversation_key)
        if timer is not None:
            timer.cancel()
            return
        await self._writer(conversation_key, True)

    async def stop(self, conversation_key: UUID):
        timer = self._timers.pop(conversation_key, None)
        if timer is None:
            return
        timer.cancel()
        await self._writer(conversation_key, False)

    async def close(self):
        for conversation_key in list(self._timers):
            await self.stop(conversation_key)
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _expire(self, conversation_key: UUID):
        self._timers.pop(conversation_key, None)
        task = asyncio.ensure_future(self._writer(conversation_key, False))
        self._pending.add(task)
        task.add_done_callback(self._write_done)

    def _write_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Typing stop signal failed: {task.exception()}")


class TypingObserver:
    """Remote typing indicators as seen by one viewer.

    Every ``true`` signal expires locally after ``ttl`` seconds whether or not
    the matching ``false`` ever arrives; ``on_change`` fires when a timer
    clears an indicator.
    """

    def __init__(
        self,
        viewer_id: UUID,
        ttl: float = DEFAULT_TYPING_TTL,
        on_change: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.viewer_id = viewer_id
        self.ttl = ttl
        self.on_change = on_change
        self.clock = clock
        # {(conversation_key, participant_id): expires_at}
        self._expiry: Dict[Tuple[UUID, UUID], datetime] = {}
        self._timers: Dict[Tuple[UUID, UUID], asyncio.TimerHandle] = {}

    def load(self, signals: Iterable[TypingRead], group_ids: Set[UUID]):
        for signal in signals:
            self.apply(signal, group_ids)

    def apply(self, signal: TypingRead, group_ids: Set[UUID]) -> bool:
        key = viewer_key(signal, self.viewer_id, group_ids)
        if key is None:
            return False
        slot = (key, signal.participant_id)

        now = self.clock()
        if not signal.is_typing:
            return self._clear(slot)

        expires_at = signal_expiry(signal, now, self.ttl)
        if expires_at <= now:
            return self._clear(slot)

        was_typing = self._is_live(slot, now)
        self._expiry[slot] = expires_at
        self._arm(slot, (expires_at - now).total_seconds())
        return not was_typing

    def is_typing(self, conversation_key: UUID) -> bool:
        now = self.clock()
        return any(
            key == conversation_key and expires_at > now
            for (key, _), expires_at in self._expiry.items()
        )

    def typing_keys(self) -> Set[UUID]:
        now = self.clock()
        return {key for (key, _), expires_at in self._expiry.items() if expires_at > now}

    def typists(self, conversation_key: UUID) -> List[UUID]:
        now = self.clock()
        return sorted(
            (pid for (key, pid), expires_at in self._expiry.items() if key == conversation_key and expires_at > now),
            key=str,
        )

    def close(self):
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _is_live(self, slot, now: datetime) -> bool:
        expires_at = self._expiry.get(slot)
        return expires_at is not None and expires_at > now

    def _arm(self, slot, delay: float):
        timer = self._timers.pop(slot, None)
        if timer is not None:
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[slot] = loop.call_later(delay, self._expire, slot)

    def _expire(self, slot):
        self._timers.pop(slot, None)
        if self._expiry.pop(slot, None) is not None and self.on_change is not None:
            self.on_change()

    def _clear(self, slot) -> bool:
        timer = self._timers.pop(slot, None)
        if timer is not None:
            timer.cancel()
        return self._expiry.pop(slot, None) is not None
