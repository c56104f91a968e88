from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tabsera.models.review import ManualReviewItem, SuspensionRequest


class ResolveRequest(BaseModel):
    actor: str = Field(..., min_length=1)


class ReviewItemResponse(BaseModel):
    id: str
    center_id: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    stage: Optional[str] = None
    error_code: str
    message: str
    attempts: int
    first_seen_at: datetime
    last_seen_at: datetime
    resolved: bool

    @classmethod
    def from_model(cls, item: ManualReviewItem) -> "ReviewItemResponse":
        return cls.model_validate(item.model_dump(mode="json"))


class SuspensionRequestResponse(BaseModel):
    id: str
    center_id: str
    contract_id: str
    consecutive_overdue: int
    threshold: int
    trigger_settlement_id: str
    settlement_ids: List[str]
    requested_at: datetime
    consumed: bool

    @classmethod
    def from_model(cls, request: SuspensionRequest) -> "SuspensionRequestResponse":
        return cls.model_validate(request.model_dump(mode="json"))
