# app/services/chat/dispatcher.py
import logging
from typing import Awaitable, Callable, Dict, List
from uuid import UUID

from ...core.change_feed import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[bool]]


class RealtimeDispatcher:
    """Routes change events for one tenant to one handler per table.

    Handlers upsert by id and return whether local state changed; any change
    triggers ``on_change`` once. A failing handler is logged and the last
    derived state keeps being served.
    """

    def __init__(self, feed: ChangeFeed, tenant_id: UUID, on_change: Callable[[], Awaitable[None]]):
        self.feed = feed
        self.tenant_id = tenant_id
        self.on_change = on_change
        self.handlers: Dict[str, EventHandler] = {}
        self.subscriptions: List[Subscription] = []

    def register(self, table: str, handler: EventHandler):
        self.handlers[table] = handler

    @property
    def started(self) -> bool:
        return bool(self.subscriptions)

    async def start(self):
        if self.started:
            return
        for table in self.handlers:
            self.subscriptions.append(self.feed.subscribe(table, self.tenant_id, self.handle))
        logger.debug(f"Dispatcher for tenant {self.tenant_id} listening on {list(self.handlers)}")

    async def handle(self, event: ChangeEvent):
        handler = self.handlers.get(event.table)
        if handler is None:
            return
        try:
            changed = await handler(event)
        except Exception as e:
            logger.exception(f"Failed to apply {event.type.value} on {event.table}: {e}")
            return
        if changed:
            await self.on_change()

    async def close(self):
        for subscription in self.subscriptions:
            subscription.close()
        self.subscriptions = []
