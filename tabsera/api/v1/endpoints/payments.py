from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from tabsera.db.mongo import get_db
from tabsera.models.base import as_naive_utc
from tabsera.models.payment import PaymentStatus
from tabsera.repositories.payment_repo import PaymentRepository
from tabsera.schemas.payment import PaymentClearRequest, PaymentCreate, PaymentResponse

router = APIRouter()


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(payload: PaymentCreate, db = Depends(get_db)):
    """Record a student payment (checkout collaborator)."""
    payment = await PaymentRepository(db).record(payload.to_model())
    return PaymentResponse.from_model(payment)


@router.post("/{payment_id}/clear", response_model=PaymentResponse)
async def clear_payment(payment_id: str, payload: PaymentClearRequest, db = Depends(get_db)):
    """Resolve a pending payment to cleared or failed."""
    repo = PaymentRepository(db)
    payment = await repo.record_clearance(payment_id, PaymentStatus(payload.status), payload.cleared_at)
    if not payment:
        existing = await repo.get(payment_id)
        if not existing:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Payment is already {existing.status.value}"
        )
    return PaymentResponse.from_model(payment)


@router.get("", response_model=List[PaymentResponse])
async def list_payments(center_id: str, start: datetime, end: datetime, db = Depends(get_db)):
    """Payments of a center with paid_at in [start, end), failed ones included."""
    payments = await PaymentRepository(db).list_for_period(
        center_id, as_naive_utc(start), as_naive_utc(end), include_failed=True
    )
    return [PaymentResponse.from_model(payment) for payment in payments]
