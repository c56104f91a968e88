from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tabsera.models.contract import Contract, ContractStatus, SettlementFrequency


def as_datetime(value: date) -> datetime:
    """Calendar date → midnight naive UTC, the storage form for dates."""
    return datetime(value.year, value.month, value.day)


class ContractCreate(BaseModel):
    """
    Contract write request.

    Invariants (shares summing to 100, due day range, overlaps) are checked
    by the registry so the rejection names the offending field.
    """
    center_id: str
    tabsera_share_pct: int
    center_share_pct: int
    settlement_frequency: SettlementFrequency = SettlementFrequency.MONTHLY
    due_day: int = 15
    settlement_currency: str = "USD"
    start_date: date
    end_date: date
    auto_renew: bool = False
    status: ContractStatus = ContractStatus.PENDING
    max_consecutive_overdue: int = 3

    def to_model(self) -> Contract:
        data = self.model_dump()
        data["settlement_currency"] = self.settlement_currency.upper()
        data["start_date"] = as_datetime(self.start_date)
        data["end_date"] = as_datetime(self.end_date)
        return Contract(**data)


class ContractUpdate(BaseModel):
    tabsera_share_pct: Optional[int] = None
    center_share_pct: Optional[int] = None
    settlement_frequency: Optional[SettlementFrequency] = None
    due_day: Optional[int] = None
    settlement_currency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_renew: Optional[bool] = None
    status: Optional[ContractStatus] = None
    max_consecutive_overdue: Optional[int] = None

    def to_changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True)
        for field in ("start_date", "end_date"):
            if changes.get(field) is not None:
                changes[field] = as_datetime(changes[field])
        if changes.get("settlement_currency"):
            changes["settlement_currency"] = changes["settlement_currency"].upper()
        return changes


class ContractResponse(BaseModel):
    id: str
    center_id: str
    tabsera_share_pct: int
    center_share_pct: int
    settlement_frequency: SettlementFrequency
    due_day: int
    settlement_currency: str
    start_date: datetime
    end_date: datetime
    auto_renew: bool
    status: ContractStatus
    max_consecutive_overdue: int
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_model(cls, contract: Contract) -> "ContractResponse":
        return cls.model_validate(contract.model_dump(mode="json"))
