from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from tabsera.models.audit import AuditAction, AuditEntry
from tabsera.models.base import UTCDateTime
from tabsera.models.settlement import Settlement, SettlementStatus, TrackBreakdown
from tabsera.services.settlement_batch import BatchReport, CenterFailure


class GenerateRequest(BaseModel):
    center_id: str
    period_start: date
    period_end: date  # exclusive
    actor: Optional[str] = None


class BatchRequest(BaseModel):
    as_of: Optional[UTCDateTime] = None
    center_ids: Optional[List[str]] = None
    actor: Optional[str] = None


class SweepRequest(BaseModel):
    now: Optional[UTCDateTime] = None
    actor: Optional[str] = None


class MarkPaidRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1)
    actor: str = Field(..., min_length=1)
    method: Optional[str] = None  # bank, zaad, evc, check ...
    paid_at: Optional[UTCDateTime] = None
    note: Optional[str] = None


class InvoiceRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    recipient: Optional[str] = None  # contact e-mail or phone; used when sending


class ReminderRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    note: Optional[str] = None


class SettlementResponse(BaseModel):
    id: str
    reference: Optional[str] = None
    center_id: str
    period_start: datetime
    period_end: datetime
    period_label: str
    contract_id: str
    contract_version: int
    tabsera_share_pct: int
    center_share_pct: int
    currency: str
    gross_revenue: int
    tabsera_amount: int
    center_amount: int
    collected_amount: int
    pending_amount: int
    collection_rate_pct: int
    students_enrolled: int
    payment_count: int
    tracks: List[TrackBreakdown] = []
    status: SettlementStatus
    is_final: bool
    due_date: datetime
    generated_at: datetime
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_method: Optional[str] = None
    payment_note: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_issued_at: Optional[datetime] = None
    invoice_sent_at: Optional[datetime] = None
    invoice_sent_to: Optional[str] = None
    reminder_count: int = 0
    last_reminder_at: Optional[datetime] = None
    exchange_rate_snapshot: Dict[str, str] = {}

    @classmethod
    def from_model(cls, settlement: Settlement) -> "SettlementResponse":
        return cls.model_validate(settlement.model_dump(mode="json"))


class AuditEntryResponse(BaseModel):
    settlement_id: str
    sequence: int
    action: AuditAction
    actor: str
    timestamp: datetime
    note: Optional[str] = None

    @classmethod
    def from_model(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls.model_validate(entry.model_dump(mode="json"))


class BatchReportResponse(BaseModel):
    as_of: datetime
    succeeded: int
    settlement_ids: List[str]
    failures: List[CenterFailure]

    @classmethod
    def from_report(cls, report: BatchReport) -> "BatchReportResponse":
        return cls(
            as_of=report.as_of,
            succeeded=report.succeeded,
            settlement_ids=report.settlement_ids,
            failures=report.failures
        )
