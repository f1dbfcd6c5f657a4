# app/services/chat/presence_service.py
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..base_service import BaseService
from ...core.change_feed import ChangeFeed, ChangeType, PRESENCE
from ...core.exceptions import TransportError
from ...models.chat import PresenceRecord
from ...schemas.messaging_schemas import PresenceRead
from ...utils.time import utcnow
from .participants import Participant

logger = logging.getLogger(__name__)


class PresenceService(BaseService[PresenceRecord]):
    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        super().__init__(PresenceRecord, db, feed)

    async def publish(self, participant: Participant, is_online: bool) -> Optional[PresenceRecord]:
        """Upsert the participant's own presence row. Best effort: failures are logged and dropped."""
        try:
            result = await self._execute(
                select(PresenceRecord).where(PresenceRecord.participant_id == participant.participant_id)
            )
            record = result.scalar_one_or_none()
            change_type = ChangeType.UPDATE
            if record is None:
                record = PresenceRecord(
                    participant_id=participant.participant_id,
                    tenant_id=participant.tenant_id,
                )
                self.db.add(record)
                change_type = ChangeType.INSERT

            record.is_online = is_online
            record.last_seen = utcnow()
            await self._commit("publish presence")
        except (TransportError, IntegrityError) as e:
            logger.warning(f"Presence update for {participant.participant_id} dropped: {e}")
            return None

        await self._publish(change_type, PRESENCE, participant.tenant_id, PresenceRead.from_model(record))
        return record

    async def list_for_tenant(self, tenant_id: UUID) -> List[PresenceRecord]:
        result = await self._execute(select(PresenceRecord).where(PresenceRecord.tenant_id == tenant_id))
        return list(result.scalars().all())


class PresenceTracker:
    """Latest known presence per participant, rebuilt from a bulk load plus applied deltas."""

    def __init__(self):
        self._records: Dict[UUID, PresenceRead] = {}

    def load(self, records: Iterable[PresenceRead]):
        for record in records:
            self.apply(record)

    def apply(self, record: PresenceRead) -> bool:
        """Last writer wins on last_seen; replaying an event changes nothing."""
        current = self._records.get(record.participant_id)
        if current is not None:
            if record.last_seen < current.last_seen or record == current:
                return False
        self._records[record.participant_id] = record
        return True

    def is_online(self, participant_id: UUID) -> bool:
        record = self._records.get(participant_id)
        return bool(record and record.is_online)

    def online_ids(self) -> Set[UUID]:
        return {pid for pid, record in self._records.items() if record.is_online}

    def snapshot(self) -> Dict[UUID, dict]:
        return {
            pid: {"is_online": record.is_online, "last_seen": record.last_seen}
            for pid, record in self._records.items()
        }
