from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from tabsera.db.mongo import get_db
from tabsera.models.base import utcnow
from tabsera.repositories.exchange_rate_repo import ExchangeRateRepository
from tabsera.schemas.contract import as_datetime
from tabsera.schemas.exchange_rate import ExchangeRateCreate, ExchangeRateResponse

router = APIRouter()


@router.post("", response_model=ExchangeRateResponse, status_code=status.HTTP_201_CREATED)
async def record_rate(payload: ExchangeRateCreate, db = Depends(get_db)):
    """Record (or correct) the rate effective from a date."""
    rate = await ExchangeRateRepository(db).upsert(payload.to_model())
    return ExchangeRateResponse.from_model(rate)


@router.get("/{currency}", response_model=ExchangeRateResponse)
async def get_rate(currency: str, as_of: Optional[date] = None, db = Depends(get_db)):
    """Rate in force for a currency on a given day (default today)."""
    day = as_datetime(as_of) if as_of else utcnow()
    rate = await ExchangeRateRepository(db).latest(currency.upper(), day)
    if not rate:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No rate for {currency.upper()} on or before {day.date().isoformat()}"
        )
    return ExchangeRateResponse.from_model(rate)


@router.get("/{currency}/history", response_model=List[ExchangeRateResponse])
async def rate_history(currency: str, db = Depends(get_db)):
    rates = await ExchangeRateRepository(db).history(currency.upper())
    return [ExchangeRateResponse.from_model(rate) for rate in rates]
