# app/core/change_feed.py
"""Row change notifications for messages, presence, typing and chat requests."""
import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple
from uuid import UUID

import redis.asyncio as redis
from pydantic import BaseModel

from .config import settings

logger = logging.getLogger(__name__)

MESSAGES = "messages"
PRESENCE = "presence"
TYPING = "typing"
CHAT_REQUESTS = "chat_requests"
MEMBERSHIPS = "conversation_participants"

CHANNEL_PREFIX = "realtime"


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class ChangeEvent(BaseModel):
    type: ChangeType
    table: str
    tenant_id: UUID
    row: Dict[str, Any]

    @property
    def channel(self) -> str:
        return f"{CHANNEL_PREFIX}:{self.tenant_id}:{self.table}"


EventCallback = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    def __init__(self, feed: "ChangeFeed", key: Tuple[str, str], callback: EventCallback):
        self.feed = feed
        self.key = key
        self.callback = callback
        self.active = True

    def close(self):
        if self.active:
            self.feed._unsubscribe(self)
            self.active = False


class ChangeFeed:
    """In-process fan-out of change events, bridged through Redis pub/sub when configured.

    With Redis every published event goes out on ``realtime:<tenant>:<table>``
    and comes back through the listener task, so each process delivers an
    event to its local subscribers exactly once. Without Redis, publish
    delivers directly to local subscribers.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
    ):
        self.redis_url = redis_url
        self.reconnect_initial_delay = reconnect_initial_delay
        self.reconnect_max_delay = reconnect_max_delay
        # {(tenant_id, table): {subscriptions}}
        self.subscriptions: Dict[Tuple[str, str], Set[Subscription]] = {}
        self._redis: Optional[redis.Redis] = None
        self._listener: Optional[asyncio.Task] = None
        self.connected = False

    @property
    def bridged(self) -> bool:
        return bool(self.redis_url)

    def subscribe(self, table: str, tenant_id: UUID, callback: EventCallback) -> Subscription:
        key = (str(tenant_id), table)
        subscription = Subscription(self, key, callback)
        self.subscriptions.setdefault(key, set()).add(subscription)
        logger.debug(f"Subscribed to {table} for tenant {tenant_id}")
        return subscription

    def _unsubscribe(self, subscription: Subscription):
        subscribers = self.subscriptions.get(subscription.key)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self.subscriptions[subscription.key]

    def subscriber_count(self, table: str, tenant_id: UUID) -> int:
        return len(self.subscriptions.get((str(tenant_id), table), ()))

    async def publish(self, event: ChangeEvent):
        if not self.bridged:
            await self.dispatch(event)
            return

        try:
            if self._redis is None:
                self._redis = redis.from_url(self.redis_url, decode_responses=True)
            await self._redis.publish(event.channel, event.model_dump_json())
        except (redis.RedisError, OSError) as e:
            # Other processes miss this event until their next reload; local subscribers still get it
            logger.error(f"Failed to publish {event.type.value} on {event.channel}: {e}")
            await self.dispatch(event)

    async def dispatch(self, event: ChangeEvent):
        """Deliver an event to local subscribers; a failing subscriber never affects the others."""
        subscribers = list(self.subscriptions.get((str(event.tenant_id), event.table), ()))
        for subscription in subscribers:
            try:
                await subscription.callback(event)
            except Exception as e:
                logger.exception(f"Subscriber for {event.channel} failed: {e}")

    async def start(self):
        if self.bridged and self._listener is None:
            self._listener = asyncio.create_task(self._listen())
            logger.info("Realtime change-feed bridged through Redis")

    async def stop(self):
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self.connected = False

    async def _listen(self):
        delay = self.reconnect_initial_delay
        while True:
            client = redis.from_url(self.redis_url, decode_responses=True)
            pubsub = client.pubsub()
            try:
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}:*")
                self.connected = True
                delay = self.reconnect_initial_delay
                logger.info("Realtime listener connected")
                async for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    try:
                        event = ChangeEvent.model_validate_json(message["data"])
                    except ValueError as e:
                        logger.warning(f"Dropping malformed change event on {message.get('channel')}: {e}")
                        continue
                    await self.dispatch(event)
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Realtime listener lost connection, retrying in {delay:.1f}s: {e}")
            finally:
                self.connected = False
                await pubsub.aclose()
                await client.aclose()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.reconnect_max_delay)

# Global change-feed instance
change_feed = ChangeFeed(
    settings.redis_url,
    reconnect_initial_delay=settings.realtime_reconnect_initial_delay,
    reconnect_max_delay=settings.realtime_reconnect_max_delay,
)
