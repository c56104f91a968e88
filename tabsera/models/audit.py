from enum import Enum
from typing import Optional

from pydantic import Field

from tabsera.models.base import MongoModel, PyObjectId, UTCDateTime, utcnow


class AuditAction(str, Enum):
    GENERATED = "generated"
    RECOMPUTED = "recomputed"
    FINALIZED = "finalized"
    OVERDUE = "overdue"
    PAID = "paid"
    INVOICE_ISSUED = "invoice_issued"
    INVOICE_SENT = "invoice_sent"
    REMINDER_SENT = "reminder_sent"


class AuditEntry(MongoModel):
    """Append-only record of something that happened to a settlement."""
    settlement_id: PyObjectId
    sequence: int
    center_id: str
    period_start: UTCDateTime
    period_end: UTCDateTime
    action: AuditAction
    actor: str
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    note: Optional[str] = None
