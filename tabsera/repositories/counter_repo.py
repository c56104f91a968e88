from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument


class CounterRepository:
    """Named monotonic counters (audit sequences, settlement references)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["counters"]

    async def next_value(self, name: str) -> int:
        """Atomically increment and return the counter, starting at 1."""
        doc = await self.collection.find_one_and_update(
            {"_id": name},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return doc["value"]
