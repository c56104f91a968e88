from enum import Enum
from typing import Optional

from tabsera.models.base import MongoModel, UTCDateTime


class PaymentStatus(str, Enum):
    PENDING = "pending"   # recorded, awaiting confirmation (e.g. mobile money)
    CLEARED = "cleared"
    FAILED = "failed"


class Payment(MongoModel):
    """A student payment as recorded by the checkout collaborator."""
    student_id: str
    center_id: str
    track_id: str
    amount: int  # minor units of `currency`
    currency: str
    paid_at: UTCDateTime
    method: str
    status: PaymentStatus = PaymentStatus.PENDING
    cleared_at: Optional[UTCDateTime] = None
    reference: Optional[str] = None

    @property
    def is_cleared(self) -> bool:
        return self.status == PaymentStatus.CLEARED
