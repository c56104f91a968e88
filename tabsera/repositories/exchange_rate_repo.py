from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from tabsera.models.base import utcnow
from tabsera.models.exchange_rate import ExchangeRate


class ExchangeRateRepository:
    """Admin-maintained exchange-rate table keyed by (currency, effective_date)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["exchange_rates"]

    async def upsert(self, rate: ExchangeRate) -> ExchangeRate:
        """Insert a rate, or correct the rate already recorded for that date."""
        doc = rate.to_document()
        doc.pop("_id")
        doc.pop("created_at")
        doc["updated_at"] = utcnow()
        stored = await self.collection.find_one_and_update(
            {"currency": rate.currency, "effective_date": rate.effective_date},
            {
                "$set": doc,
                "$setOnInsert": {"_id": rate.id, "created_at": rate.created_at}
            },
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return ExchangeRate(**stored)

    async def latest(self, currency: str, as_of: datetime) -> Optional[ExchangeRate]:
        """Most recent rate for `currency` effective on or before `as_of`."""
        docs = await self.collection.find({
            "currency": currency,
            "effective_date": {"$lte": as_of}
        }).sort("effective_date", -1).limit(1).to_list(1)
        return ExchangeRate(**docs[0]) if docs else None

    async def history(self, currency: str) -> List[ExchangeRate]:
        docs = await self.collection.find(
            {"currency": currency}
        ).sort("effective_date", -1).to_list(None)
        return [ExchangeRate(**doc) for doc in docs]
