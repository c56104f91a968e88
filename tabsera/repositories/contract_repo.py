from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from tabsera.models.base import utcnow
from tabsera.models.contract import Contract, ContractStatus, governing_contract


class ContractRepository:
    """Contract storage. Validation lives in the registry service."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["contracts"]

    async def insert(self, contract: Contract) -> Contract:
        await self.collection.insert_one(contract.to_document())
        return contract

    async def get(self, contract_id: str) -> Optional[Contract]:
        if not ObjectId.is_valid(contract_id):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(contract_id)})
        return Contract(**doc) if doc else None

    async def list_for_center(self, center_id: str) -> List[Contract]:
        """All contracts of a center, newest start first."""
        docs = await self.collection.find(
            {"center_id": center_id}
        ).sort("start_date", -1).to_list(None)
        return [Contract(**doc) for doc in docs]

    async def list_active(self, center_id: Optional[str] = None) -> List[Contract]:
        query = {"status": ContractStatus.ACTIVE.value}
        if center_id is not None:
            query["center_id"] = center_id
        docs = await self.collection.find(query).sort("start_date", -1).to_list(None)
        return [Contract(**doc) for doc in docs]

    async def find_governing(self, center_id: str, day: datetime) -> Optional[Contract]:
        """The active contract of a center that governs `day`."""
        return governing_contract(await self.list_active(center_id), day)

    async def replace(self, contract: Contract, expected_version: int) -> Optional[Contract]:
        """
        Store an edited contract.

        Optimistic: only succeeds if the stored version is still
        `expected_version`. Returns None when someone else edited first.
        """
        contract.updated_at = utcnow()
        result = await self.collection.replace_one(
            {"_id": contract.id, "version": expected_version},
            contract.to_document()
        )
        return contract if result.modified_count == 1 else None
