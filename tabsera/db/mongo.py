import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from tabsera.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URI)
    mongodb.db = mongodb.client[settings.MONGODB_DB]

    # Create indexes
    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.MONGODB_DB)

async def disconnect_from_mongo():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Contracts: active lookup per center
    await db["contracts"].create_index([("center_id", ASCENDING), ("status", ASCENDING)])

    # Payments: period aggregation per center
    await db["payments"].create_index([("center_id", ASCENDING), ("paid_at", ASCENDING)])

    # Exchange rates: one entry per currency per effective date
    await db["exchange_rates"].create_index(
        [("currency", ASCENDING), ("effective_date", DESCENDING)],
        unique=True
    )

    # Settlements: (center, period) is the idempotency and concurrency guard
    await db["settlements"].create_index(
        [("center_id", ASCENDING), ("period_start", ASCENDING), ("period_end", ASCENDING)],
        unique=True
    )
    await db["settlements"].create_index([("status", ASCENDING), ("due_date", ASCENDING)])

    # Audit trail: append-only, ordered per settlement
    await db["settlement_audit"].create_index(
        [("settlement_id", ASCENDING), ("sequence", ASCENDING)],
        unique=True
    )

    # Manual review queue and suspension outbox
    await db["settlement_review_queue"].create_index(
        [("center_id", ASCENDING), ("period_start", ASCENDING), ("error_code", ASCENDING), ("resolved", ASCENDING)]
    )
    await db["suspension_requests"].create_index(
        [("center_id", ASCENDING), ("trigger_settlement_id", ASCENDING)],
        unique=True
    )

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
