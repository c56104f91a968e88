"""
PaymentRepository - Read view over the student payment ledger.

Payments are written by the checkout collaborator and never edited, apart
from the single clearance transition pending → cleared | failed.
"""

from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from tabsera.models.base import utcnow
from tabsera.models.payment import Payment, PaymentStatus


class PaymentRepository:
    """Repository for recorded student payments."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["payments"]

    async def record(self, payment: Payment) -> Payment:
        await self.collection.insert_one(payment.to_document())
        return payment

    async def get(self, payment_id: str) -> Optional[Payment]:
        if not ObjectId.is_valid(payment_id):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(payment_id)})
        return Payment(**doc) if doc else None

    async def list_for_period(
        self,
        center_id: str,
        period_start: datetime,
        period_end: datetime,
        include_failed: bool = False
    ) -> List[Payment]:
        """Payments of a center with paid_at in [period_start, period_end), oldest first."""
        query = {
            "center_id": center_id,
            "paid_at": {"$gte": period_start, "$lt": period_end}
        }
        if not include_failed:
            query["status"] = {"$ne": PaymentStatus.FAILED.value}

        docs = await self.collection.find(query).sort("paid_at", 1).to_list(None)
        return [Payment(**doc) for doc in docs]

    async def record_clearance(
        self,
        payment_id: str,
        status: PaymentStatus,
        cleared_at: Optional[datetime] = None
    ) -> Optional[Payment]:
        """
        Move a pending payment to cleared or failed.

        Returns None if the payment does not exist or was already resolved.
        """
        if status == PaymentStatus.PENDING:
            raise ValueError("clearance must resolve to cleared or failed")
        if not ObjectId.is_valid(payment_id):
            return None

        updates = {"status": status.value, "updated_at": utcnow()}
        if status == PaymentStatus.CLEARED:
            updates["cleared_at"] = cleared_at or utcnow()

        doc = await self.collection.find_one_and_update(
            {"_id": ObjectId(payment_id), "status": PaymentStatus.PENDING.value},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        return Payment(**doc) if doc else None
