from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from tabsera.models.base import UTCDateTime
from tabsera.models.payment import Payment, PaymentStatus


class PaymentCreate(BaseModel):
    """A payment event from the checkout collaborator."""
    student_id: str
    center_id: str
    track_id: str
    amount: int = Field(..., gt=0)  # minor units
    currency: str = Field(..., min_length=3, max_length=3)
    paid_at: datetime
    method: str
    status: PaymentStatus = PaymentStatus.PENDING
    cleared_at: Optional[UTCDateTime] = None
    reference: Optional[str] = None

    def to_model(self) -> Payment:
        data = self.model_dump()
        data["currency"] = self.currency.upper()
        if self.status == PaymentStatus.CLEARED and self.cleared_at is None:
            data["cleared_at"] = self.paid_at
        return Payment(**data)


class PaymentClearRequest(BaseModel):
    status: Literal["cleared", "failed"]
    cleared_at: Optional[UTCDateTime] = None


class PaymentResponse(BaseModel):
    id: str
    student_id: str
    center_id: str
    track_id: str
    amount: int
    currency: str
    paid_at: datetime
    method: str
    status: PaymentStatus
    cleared_at: Optional[datetime] = None
    reference: Optional[str] = None

    @classmethod
    def from_model(cls, payment: Payment) -> "PaymentResponse":
        return cls.model_validate(payment.model_dump(mode="json"))
