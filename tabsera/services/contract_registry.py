import logging
from datetime import datetime
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from tabsera.models.contract import Contract, governing_contract
from tabsera.repositories.contract_repo import ContractRepository
from tabsera.utils.contract_validation import validate_contract, validate_no_overlap
from tabsera.utils.errors import ContractInvariantViolation, NoActiveContract
from tabsera.utils.settlement_math import period_last_day

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "tabsera_share_pct",
    "center_share_pct",
    "settlement_frequency",
    "due_day",
    "settlement_currency",
    "start_date",
    "end_date",
    "auto_renew",
    "status",
    "max_consecutive_overdue",
})


class ContractRegistry:
    """
    Validated, versioned contract terms per center.

    The read path is what the settlement engine uses. The write path belongs
    to the contract-admin collaborator; it is here so every write goes
    through the same validation.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.contracts = ContractRepository(db)

    # ===== READ PATH =====

    async def get_active_contract(self, center_id: str, as_of: datetime) -> Contract:
        contract = await self.contracts.find_governing(center_id, as_of)
        if contract is None:
            raise NoActiveContract(
                f"No active contract for center {center_id} on {as_of.date().isoformat()}",
                center_id=center_id,
                stage="contract_lookup"
            )
        return contract

    async def get_contract_for_period(
        self, center_id: str, period_start: datetime, period_end: datetime
    ) -> Contract:
        """The active contract governing every day of [period_start, period_end)."""
        contracts = await self.contracts.list_active(center_id)
        first = governing_contract(contracts, period_start)
        last = governing_contract(contracts, period_last_day(period_end))
        if first is None or last is None or first.id != last.id:
            raise NoActiveContract(
                f"No active contract covers center {center_id} for the whole period",
                center_id=center_id,
                period_start=period_start,
                period_end=period_end,
                stage="contract_lookup"
            )
        return first

    async def get_contract(self, contract_id: str) -> Contract | None:
        return await self.contracts.get(contract_id)

    async def list_contracts(self, center_id: str) -> List[Contract]:
        return await self.contracts.list_for_center(center_id)

    async def list_active_center_ids(self, as_of: datetime) -> List[str]:
        by_center: Dict[str, List[Contract]] = {}
        for contract in await self.contracts.list_active():
            by_center.setdefault(contract.center_id, []).append(contract)
        return sorted(
            center_id for center_id, contracts in by_center.items()
            if governing_contract(contracts, as_of) is not None
        )

    # ===== WRITE PATH =====

    async def create_contract(self, contract: Contract) -> Contract:
        validate_contract(contract)
        validate_no_overlap(contract, await self.contracts.list_for_center(contract.center_id))

        await self.contracts.insert(contract)
        logger.info(
            "Registered contract %s for center %s (%s/%s, %s)",
            contract.id, contract.center_id, contract.tabsera_share_pct,
            contract.center_share_pct, contract.settlement_frequency.value
        )
        return contract

    async def update_contract(self, contract_id: str, changes: Dict[str, Any]) -> Contract | None:
        """
        Apply an edit and bump the version.

        Returns None if the contract does not exist.
        """
        current = await self.contracts.get(contract_id)
        if current is None:
            return None

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise ContractInvariantViolation(field, "is not editable", center_id=current.center_id)

        data = current.model_dump()
        data.update(changes)
        data["version"] = current.version + 1
        try:
            edited = Contract(**data)
        except ValidationError as error:
            first = error.errors()[0]
            field = str(first["loc"][0]) if first["loc"] else "contract"
            raise ContractInvariantViolation(field, first["msg"], center_id=current.center_id) from error

        validate_contract(edited)
        validate_no_overlap(edited, await self.contracts.list_for_center(edited.center_id))

        stored = await self.contracts.replace(edited, expected_version=current.version)
        if stored is None:
            raise ContractInvariantViolation(
                "version",
                f"contract {contract_id} was modified concurrently; reload and retry",
                center_id=current.center_id
            )
        logger.info("Updated contract %s to version %s (%s)", contract_id, stored.version, sorted(changes))
        return stored
