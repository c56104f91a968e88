"""
Operator-facing queues.

- ReviewQueueRepository: centers whose settlement generation failed and
  needs a human (missing contract, missing rate, timeout).
- SuspensionRequestRepository: outbox of ContractSuspensionRequested
  signals consumed by the contract-management collaborator.
"""

from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from tabsera.models.base import utcnow
from tabsera.models.review import ManualReviewItem, SuspensionRequest
from tabsera.utils.errors import SettlementEngineError


class ReviewQueueRepository:
    """Manual-review queue for failed settlement generations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["settlement_review_queue"]

    async def record_failure(self, error: SettlementEngineError) -> ManualReviewItem:
        """
        Queue a failure for review.

        Repeated failures for the same (center, period, error code) bump the
        attempt counter on the open item instead of adding a new one.
        """
        now = utcnow()
        doc = await self.collection.find_one_and_update(
            {
                "center_id": error.center_id,
                "period_start": error.period_start,
                "error_code": error.code,
                "resolved": False
            },
            {
                "$inc": {"attempts": 1},
                "$set": {
                    "message": str(error),
                    "stage": error.stage,
                    "last_seen_at": now,
                    "updated_at": now
                }
            },
            return_document=ReturnDocument.AFTER
        )
        if doc:
            return ManualReviewItem(**doc)

        item = ManualReviewItem(
            center_id=error.center_id,
            period_start=error.period_start,
            period_end=error.period_end,
            stage=error.stage,
            error_code=error.code,
            message=str(error),
            first_seen_at=now,
            last_seen_at=now
        )
        await self.collection.insert_one(item.to_document())
        return item

    async def list_open(self, center_id: Optional[str] = None) -> List[ManualReviewItem]:
        query = {"resolved": False}
        if center_id is not None:
            query["center_id"] = center_id
        docs = await self.collection.find(query).sort("first_seen_at", 1).to_list(None)
        return [ManualReviewItem(**doc) for doc in docs]

    async def resolve(self, item_id: str, actor: str) -> Optional[ManualReviewItem]:
        if not ObjectId.is_valid(item_id):
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": ObjectId(item_id)},
            {"$set": {"resolved": True, "resolved_by": actor, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER
        )
        return ManualReviewItem(**doc) if doc else None

    async def resolve_for_period(self, center_id: str, period_start: datetime, actor: str) -> int:
        """Close every open item of a center/period once generation succeeds."""
        result = await self.collection.update_many(
            {"center_id": center_id, "period_start": period_start, "resolved": False},
            {"$set": {"resolved": True, "resolved_by": actor, "updated_at": utcnow()}}
        )
        return result.modified_count


class SuspensionRequestRepository:
    """Outbox for ContractSuspensionRequested signals."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["suspension_requests"]

    async def record(self, request: SuspensionRequest) -> bool:
        """Store a request; False if one already exists for the same trigger."""
        try:
            await self.collection.insert_one(request.to_document())
        except DuplicateKeyError:
            return False
        return True

    async def list(self, consumed: Optional[bool] = None) -> List[SuspensionRequest]:
        query = {}
        if consumed is not None:
            query["consumed"] = consumed
        docs = await self.collection.find(query).sort("requested_at", 1).to_list(None)
        return [SuspensionRequest(**doc) for doc in docs]

    async def mark_consumed(self, request_id: str) -> Optional[SuspensionRequest]:
        if not ObjectId.is_valid(request_id):
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": ObjectId(request_id)},
            {"$set": {"consumed": True, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER
        )
        return SuspensionRequest(**doc) if doc else None
