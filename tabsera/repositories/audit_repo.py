from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from tabsera.models.audit import AuditAction, AuditEntry
from tabsera.models.base import utcnow
from tabsera.models.settlement import Settlement
from tabsera.repositories.counter_repo import CounterRepository


class AuditRepository:
    """
    Append-only settlement audit trail.

    Entries are keyed by (settlement_id, sequence); there is deliberately no
    update or delete method.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["settlement_audit"]
        self.counters = CounterRepository(db)

    async def append(
        self,
        settlement: Settlement,
        action: AuditAction,
        actor: str,
        note: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> AuditEntry:
        sequence = await self.counters.next_value(f"audit:{settlement.id}")
        entry = AuditEntry(
            settlement_id=settlement.id,
            sequence=sequence,
            center_id=settlement.center_id,
            period_start=settlement.period_start,
            period_end=settlement.period_end,
            action=action,
            actor=actor,
            timestamp=timestamp or utcnow(),
            note=note
        )
        await self.collection.insert_one(entry.to_document())
        return entry

    async def list_for_settlement(self, settlement_id: str) -> List[AuditEntry]:
        if not ObjectId.is_valid(str(settlement_id)):
            return []
        docs = await self.collection.find(
            {"settlement_id": ObjectId(str(settlement_id))}
        ).sort("sequence", 1).to_list(None)
        return [AuditEntry(**doc) for doc in docs]
