from tabsera.models.base import MongoModel, RateDecimal, UTCDateTime


class ExchangeRate(MongoModel):
    """Units of `currency` per one unit of the base currency, from `effective_date`."""
    currency: str
    rate_per_base: RateDecimal
    effective_date: UTCDateTime
