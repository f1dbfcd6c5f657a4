# app/services/base_service.py
"""Base service with common store operations."""
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from pydantic import BaseModel
from typing import Type, Any, Optional, TypeVar, Generic
from uuid import UUID

from ..core.exceptions import TransportError
from ..core.change_feed import ChangeFeed, ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

# Define generic type
T = TypeVar('T')

class BaseService(Generic[T]):
    def __init__(self, model: Type[T], db: AsyncSession, feed: Optional[ChangeFeed] = None):
        self.model = model
        self.db = db
        self.feed = feed

    async def _execute(self, stmt):
        """Run a statement, mapping backend failures to TransportError."""
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"{self.model.__name__} query failed: {e}")
            await self.db.rollback()
            raise TransportError(f"Could not reach the {self.model.__tablename__} store")

    async def _commit(self, action: str):
        """Commit; IntegrityError is re-raised for callers that map constraint conflicts."""
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}")
            await self.db.rollback()
            raise TransportError(f"Failed to {action}")

    async def _refresh(self, obj):
        try:
            await self.db.refresh(obj)
        except SQLAlchemyError as e:
            logger.error(f"Failed to reload {self.model.__name__}: {e}")
            raise TransportError(f"Could not reach the {self.model.__tablename__} store")

    async def _publish(self, change_type: ChangeType, table: str, tenant_id: UUID, row: BaseModel):
        if self.feed is None:
            return
        await self.feed.publish(ChangeEvent(
            type=change_type,
            table=table,
            tenant_id=tenant_id,
            row=row.model_dump(mode="json"),
        ))

    async def get(self, id: Any) -> Optional[T]:
        stmt = select(self.model).where(self.model.id == id)
        result = await self._execute(stmt)
        return result.scalar_one_or_none()
