"""
Settlement model - One center's revenue split for one period.

Design principles:
- Unique per (center_id, period_start, period_end)
- All amounts in integer minor units of `currency`
- Contract terms and exchange rates are snapshotted at generation time
- Status: pending → overdue → paid, or pending → paid

Invariants:
- tabsera_amount + center_amount == gross_revenue
- collected_amount + pending_amount == gross_revenue
- 0 <= collection_rate_pct <= 100
- Once final, monetary fields never change; once paid, only the payment
  details are ever written
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from tabsera.models.base import MongoModel, PyObjectId, RateDecimal, UTCDateTime, utcnow


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


# Closed transition table; anything not listed is illegal
ALLOWED_TRANSITIONS = {
    SettlementStatus.PENDING: frozenset({SettlementStatus.PAID, SettlementStatus.OVERDUE}),
    SettlementStatus.OVERDUE: frozenset({SettlementStatus.PAID}),
    SettlementStatus.PAID: frozenset(),
}


def can_transition(current: SettlementStatus, requested: SettlementStatus) -> bool:
    return SettlementStatus(requested) in ALLOWED_TRANSITIONS[SettlementStatus(current)]


class TrackBreakdown(BaseModel):
    track_id: str
    students: int = 0
    payment_count: int = 0
    gross_revenue: int = 0


class Settlement(MongoModel):
    center_id: str
    period_start: UTCDateTime
    period_end: UTCDateTime  # exclusive
    period_label: str = ""
    reference: Optional[str] = None  # e.g. STL-2026-001

    # Terms snapshot
    contract_id: PyObjectId
    contract_version: int = 1
    tabsera_share_pct: int
    center_share_pct: int
    currency: str

    # Money (minor units)
    gross_revenue: int = 0
    tabsera_amount: int = 0
    center_amount: int = 0
    collected_amount: int = 0
    pending_amount: int = 0
    collection_rate_pct: int = 100

    students_enrolled: int = 0
    payment_count: int = 0
    tracks: List[TrackBreakdown] = []

    status: SettlementStatus = SettlementStatus.PENDING
    is_final: bool = False
    due_date: UTCDateTime
    generated_at: UTCDateTime = Field(default_factory=utcnow)

    # Set by mark-paid
    paid_at: Optional[UTCDateTime] = None
    payment_reference: Optional[str] = None
    payment_method: Optional[str] = None
    payment_note: Optional[str] = None
    paid_by: Optional[str] = None

    # Invoicing and dunning; never changes status
    invoice_number: Optional[str] = None  # e.g. INV-2026-004
    invoice_issued_at: Optional[UTCDateTime] = None
    invoice_sent_at: Optional[UTCDateTime] = None
    invoice_sent_to: Optional[str] = None
    reminder_count: int = 0
    last_reminder_at: Optional[UTCDateTime] = None

    exchange_rate_snapshot: Dict[str, RateDecimal] = {}

    @property
    def key(self) -> Tuple[str, object, object]:
        return self.center_id, self.period_start, self.period_end

    def check_invariants(self) -> None:
        """Raise ValueError if the money figures are inconsistent."""
        if self.tabsera_share_pct + self.center_share_pct != 100:
            raise ValueError(f"{self.center_id} {self.period_label}: shares do not add up to 100")
        if self.tabsera_amount + self.center_amount != self.gross_revenue:
            raise ValueError(f"{self.center_id} {self.period_label}: split does not add up to gross revenue")
        if self.collected_amount + self.pending_amount != self.gross_revenue:
            raise ValueError(f"{self.center_id} {self.period_label}: collected + pending does not add up to gross revenue")
        if not 0 <= self.collection_rate_pct <= 100:
            raise ValueError(f"{self.center_id} {self.period_label}: collection rate {self.collection_rate_pct} out of range")
