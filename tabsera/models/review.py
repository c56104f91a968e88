from typing import List, Optional

from pydantic import Field

from tabsera.models.base import MongoModel, PyObjectId, UTCDateTime, utcnow


class ManualReviewItem(MongoModel):
    """A center whose settlement could not be generated and needs an operator."""
    center_id: str
    period_start: Optional[UTCDateTime] = None
    period_end: Optional[UTCDateTime] = None
    stage: Optional[str] = None
    error_code: str
    message: str
    attempts: int = 1
    first_seen_at: UTCDateTime = Field(default_factory=utcnow)
    last_seen_at: UTCDateTime = Field(default_factory=utcnow)
    resolved: bool = False
    resolved_by: Optional[str] = None


class SuspensionRequest(MongoModel):
    """
    ContractSuspensionRequested signal.

    Written to an outbox for the contract-management collaborator; the
    engine itself never changes a contract's status.
    """
    center_id: str
    contract_id: PyObjectId
    consecutive_overdue: int
    threshold: int
    trigger_settlement_id: PyObjectId
    settlement_ids: List[PyObjectId] = []
    requested_at: UTCDateTime = Field(default_factory=utcnow)
    consumed: bool = False
