from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from tabsera.models.exchange_rate import ExchangeRate
from tabsera.schemas.contract import as_datetime


class ExchangeRateCreate(BaseModel):
    currency: str = Field(..., min_length=3, max_length=3)
    rate_per_base: Decimal = Field(..., gt=0)
    effective_date: date

    def to_model(self) -> ExchangeRate:
        return ExchangeRate(
            currency=self.currency.upper(),
            rate_per_base=self.rate_per_base,
            effective_date=as_datetime(self.effective_date)
        )


class ExchangeRateResponse(BaseModel):
    id: str
    currency: str
    rate_per_base: str
    effective_date: datetime

    @classmethod
    def from_model(cls, rate: ExchangeRate) -> "ExchangeRateResponse":
        return cls.model_validate(rate.model_dump(mode="json"))
