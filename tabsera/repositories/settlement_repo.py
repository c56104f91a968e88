"""
SettlementRepository - Persists settlements.

The unique index on (center_id, period_start, period_end) is what keeps
generation idempotent under concurrency: a duplicate insert for an existing
key collapses into a read of the row that won.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from tabsera.models.base import utcnow
from tabsera.models.settlement import Settlement, SettlementStatus
from tabsera.repositories.counter_repo import CounterRepository
from tabsera.utils.settlement_math import start_of_day

# Recomputed on live periods; frozen once the settlement is final
MONETARY_FIELDS = (
    "gross_revenue",
    "tabsera_amount",
    "center_amount",
    "collected_amount",
    "pending_amount",
    "collection_rate_pct",
    "students_enrolled",
    "payment_count",
    "tracks",
    "exchange_rate_snapshot",
    "contract_id",
    "contract_version",
    "tabsera_share_pct",
    "center_share_pct",
    "currency",
    "due_date",
    "generated_at",
)


class SettlementRepository:
    """Repository for settlement records."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["settlements"]
        self.counters = CounterRepository(db)

    async def insert_if_absent(self, settlement: Settlement) -> Tuple[Settlement, bool]:
        """
        Insert a settlement unless one already exists for its key.

        Returns (stored settlement, inserted?).
        """
        try:
            await self.collection.insert_one(settlement.to_document())
        except DuplicateKeyError:
            existing = await self.get_by_key(*settlement.key)
            return existing, False
        return settlement, True

    async def get(self, settlement_id: str) -> Optional[Settlement]:
        if not ObjectId.is_valid(str(settlement_id)):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(str(settlement_id))})
        return Settlement(**doc) if doc else None

    async def get_by_key(
        self, center_id: str, period_start: datetime, period_end: datetime
    ) -> Optional[Settlement]:
        doc = await self.collection.find_one({
            "center_id": center_id,
            "period_start": period_start,
            "period_end": period_end
        })
        return Settlement(**doc) if doc else None

    async def update_figures(self, settlement: Settlement) -> Optional[Settlement]:
        """
        Overwrite the monetary figures of a live (non-final, pending) row.

        Returns None if the stored row became final or left pending in the
        meantime; the caller must then treat the stored row as authoritative.
        """
        document = settlement.to_document()
        updates = {field: document[field] for field in MONETARY_FIELDS}
        updates["is_final"] = settlement.is_final
        updates["updated_at"] = utcnow()

        doc = await self.collection.find_one_and_update(
            {
                "_id": settlement.id,
                "status": SettlementStatus.PENDING.value,
                "is_final": False
            },
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        return Settlement(**doc) if doc else None

    async def transition(
        self,
        settlement_id: ObjectId,
        from_statuses: Iterable[SettlementStatus],
        to_status: SettlementStatus,
        extra: Optional[Dict[str, Any]] = None
    ) -> Optional[Settlement]:
        """
        Conditionally move a settlement to `to_status`.

        Only applies if the stored status is one of `from_statuses`; returns
        None otherwise, so concurrent callers cannot both transition.
        """
        updates = dict(extra or {})
        updates["status"] = to_status.value
        updates["updated_at"] = utcnow()

        doc = await self.collection.find_one_and_update(
            {
                "_id": ObjectId(str(settlement_id)),
                "status": {"$in": [status.value for status in from_statuses]}
            },
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        return Settlement(**doc) if doc else None

    async def list(
        self,
        center_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        status: Optional[SettlementStatus] = None,
        skip: int = 0,
        limit: int = 0
    ) -> List[Settlement]:
        """Filter settlements; newest period first."""
        query: Dict[str, Any] = {}
        if center_id is not None:
            query["center_id"] = center_id
        if period_start is not None:
            query["period_start"] = period_start
        if status is not None:
            query["status"] = SettlementStatus(status).value

        cursor = self.collection.find(query).sort([("period_start", -1), ("center_id", 1)])
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(None)
        return [Settlement(**doc) for doc in docs]

    async def list_past_due(self, now: datetime) -> List[Settlement]:
        """Pending settlements whose due day is over as of `now`."""
        docs = await self.collection.find({
            "status": SettlementStatus.PENDING.value,
            "due_date": {"$lt": start_of_day(now)}
        }).sort("due_date", 1).to_list(None)
        return [Settlement(**doc) for doc in docs]

    async def recent_closed_for_center(self, center_id: str, limit: int) -> List[Settlement]:
        """
        Settlements of a center that count toward an overdue run, most recent
        period first: final rows, plus overdue rows whose finalization failed.
        """
        docs = await self.collection.find({
            "center_id": center_id,
            "$or": [{"is_final": True}, {"status": SettlementStatus.OVERDUE.value}]
        }).sort("period_start", -1).limit(limit).to_list(limit)
        return [Settlement(**doc) for doc in docs]

    async def totals_by_status(self, center_id: str) -> Dict[str, Dict[str, int]]:
        """
        Aggregate a center's settlements per status.

        Returns:
        {
            "pending": {"count": 2, "gross_revenue": ..., "tabsera_amount": ..., "center_amount": ...},
            ...
        }
        """
        rows = await self.collection.aggregate([
            {"$match": {"center_id": center_id}},
            {
                "$group": {
                    "_id": "$status",
                    "count": {"$sum": 1},
                    "gross_revenue": {"$sum": "$gross_revenue"},
                    "tabsera_amount": {"$sum": "$tabsera_amount"},
                    "center_amount": {"$sum": "$center_amount"}
                }
            }
        ]).to_list(None)

        totals = {}
        for row in rows:
            status = row.pop("_id")
            totals[SettlementStatus(status).value] = row
        return totals

    async def next_reference(self, year: int) -> str:
        """Sequential human reference per year, e.g. STL-2026-001."""
        value = await self.counters.next_value(f"settlement-reference:{year}")
        return f"STL-{year}-{value:03d}"

    async def next_invoice_number(self, year: int) -> str:
        """Sequential invoice number per year, e.g. INV-2026-004."""
        value = await self.counters.next_value(f"invoice-number:{year}")
        return f"INV-{year}-{value:03d}"

    async def annotate_open(
        self,
        settlement_id: ObjectId,
        conditions: Optional[Dict[str, Any]] = None,
        set_fields: Optional[Dict[str, Any]] = None,
        inc_fields: Optional[Dict[str, int]] = None
    ) -> Optional[Settlement]:
        """
        Write invoice/reminder details on a final, unpaid settlement.

        Status is never part of the update. Returns None when the row is
        missing, live, paid, or fails `conditions`.
        """
        query = {
            "_id": ObjectId(str(settlement_id)),
            "is_final": True,
            "status": {"$in": [SettlementStatus.PENDING.value, SettlementStatus.OVERDUE.value]},
        }
        query.update(conditions or {})

        update: Dict[str, Any] = {"$set": {**(set_fields or {}), "updated_at": utcnow()}}
        if inc_fields:
            update["$inc"] = inc_fields

        doc = await self.collection.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return Settlement(**doc) if doc else None
