"""
Contract model - Revenue-share terms agreed with a partner center.

Invariants (enforced by the registry on every write):
- tabsera_share_pct + center_share_pct == 100
- 1 <= due_day <= 31
- At most one active contract covers a center on any given day
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from pydantic import Field

from tabsera.models.base import MongoModel, UTCDateTime


class SettlementFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class ContractStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class Contract(MongoModel):
    center_id: str

    # Revenue share, whole percentages
    tabsera_share_pct: int
    center_share_pct: int

    settlement_frequency: SettlementFrequency = SettlementFrequency.MONTHLY
    due_day: int = 15
    settlement_currency: str = "USD"

    start_date: UTCDateTime
    end_date: UTCDateTime  # inclusive
    auto_renew: bool = False
    status: ContractStatus = ContractStatus.PENDING

    # Consecutive overdue settlements before a suspension is requested
    max_consecutive_overdue: int = Field(default=3)

    version: int = 1

    def covers(self, day: datetime) -> bool:
        """Whether this contract governs revenue earned on `day`."""
        if self.status != ContractStatus.ACTIVE:
            return False
        if day < self.start_date:
            return False
        return self.auto_renew or day.date() <= self.end_date.date()


def governing_contract(contracts: Iterable[Contract], day: datetime) -> Optional[Contract]:
    """
    The contract governing `day`, if any.

    Only the latest-started active contract with start_date <= day is
    considered. Its start ends any earlier auto-renewal for good, so an
    older contract never takes over again once a successor has started.
    """
    started = [
        contract for contract in contracts
        if contract.status == ContractStatus.ACTIVE and contract.start_date <= day
    ]
    if not started:
        return None
    latest = max(started, key=lambda contract: contract.start_date)
    return latest if latest.covers(day) else None
