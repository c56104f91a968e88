import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from tabsera.core.config import settings
from tabsera.repositories.exchange_rate_repo import ExchangeRateRepository
from tabsera.utils.errors import RateUnavailable
from tabsera.utils.settlement_math import convert_minor_units

logger = logging.getLogger(__name__)


class ConvertedAmount(BaseModel):
    amount: int
    currency: str
    rates: Dict[str, Decimal]


def convert_with_rates(amount: int, from_currency: str, to_currency: str, rates: Dict[str, Decimal]) -> int:
    """Convert using an already-resolved rate snapshot."""
    if from_currency == to_currency:
        return amount
    return convert_minor_units(amount, rates[from_currency], rates[to_currency])


class CurrencyNormalizer:
    """Converts amounts between currencies using point-in-time rates."""

    def __init__(self, db: AsyncIOMotorDatabase, base_currency: Optional[str] = None):
        self.rates = ExchangeRateRepository(db)
        self.base_currency = (base_currency or settings.BASE_CURRENCY).upper()

    async def rate_for(self, currency: str, as_of: datetime) -> Decimal:
        """Units of `currency` per base unit, effective on `as_of`."""
        if currency == self.base_currency:
            return Decimal(1)
        rate = await self.rates.latest(currency, as_of)
        if rate is None:
            logger.warning("Missing exchange rate for %s as of %s", currency, as_of.date().isoformat())
            raise RateUnavailable(currency, as_of)
        return rate.rate_per_base

    async def snapshot(self, currencies: Iterable[str], as_of: datetime) -> Dict[str, Decimal]:
        """Resolve every rate needed for a calculation up front."""
        return {currency: await self.rate_for(currency, as_of) for currency in sorted(set(currencies))}

    async def convert(
        self, amount: int, from_currency: str, to_currency: str, as_of: datetime
    ) -> ConvertedAmount:
        if from_currency == to_currency:
            return ConvertedAmount(amount=amount, currency=to_currency, rates={})
        rates = await self.snapshot([from_currency, to_currency], as_of)
        return ConvertedAmount(
            amount=convert_with_rates(amount, from_currency, to_currency, rates),
            currency=to_currency,
            rates=rates
        )
