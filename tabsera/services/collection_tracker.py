"""
CollectionTracker - Advisory collection figures, recomputed on demand.

Nothing here writes a settlement. Frozen settlements keep the figures they
were finalized with; payments that clear afterwards only show up in the
collection report.
"""

from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from tabsera.core.config import settings
from tabsera.models.base import utcnow
from tabsera.models.settlement import Settlement
from tabsera.repositories.settlement_repo import SettlementRepository
from tabsera.services.settlement_generator import SettlementGenerator, rate_date_for, tally_payments
from tabsera.utils.errors import SettlementNotFound
from tabsera.utils.settlement_math import collection_figures, period_bounds


class CollectionProjection(BaseModel):
    center_id: str
    period_start: datetime
    period_end: datetime
    period_label: str
    currency: str
    gross_revenue: int
    collected_amount: int
    pending_amount: int
    collection_rate_pct: int
    below_target: bool
    as_of: datetime


class CollectionReport(BaseModel):
    settlement_id: str
    reference: Optional[str] = None
    center_id: str
    currency: str
    frozen_gross_revenue: int
    frozen_collected_amount: int
    frozen_pending_amount: int
    frozen_collection_rate_pct: int
    live_gross_revenue: int
    live_collected_amount: int
    live_pending_amount: int
    live_collection_rate_pct: int
    late_collected_amount: int
    late_recorded_amount: int
    as_of: datetime


class CollectionTracker:
    def __init__(self, db: AsyncIOMotorDatabase, target_pct: Optional[int] = None):
        self.generator = SettlementGenerator(db)
        self.settlements = SettlementRepository(db)
        self.target_pct = settings.LOW_COLLECTION_THRESHOLD_PCT if target_pct is None else target_pct

    async def project(
        self,
        center_id: str,
        period_start: datetime,
        period_end: datetime,
        now: Optional[datetime] = None
    ) -> CollectionProjection:
        now = now or utcnow()
        settlement = await self.generator.compute(center_id, period_start, period_end, now=now)
        return CollectionProjection(
            center_id=center_id,
            period_start=period_start,
            period_end=period_end,
            period_label=settlement.period_label,
            currency=settlement.currency,
            gross_revenue=settlement.gross_revenue,
            collected_amount=settlement.collected_amount,
            pending_amount=settlement.pending_amount,
            collection_rate_pct=settlement.collection_rate_pct,
            below_target=settlement.collection_rate_pct < self.target_pct,
            as_of=now
        )

    async def current_period(self, center_id: str, now: Optional[datetime] = None) -> CollectionProjection:
        """Projection for the contract period containing `now`."""
        now = now or utcnow()
        contract = await self.generator.registry.get_active_contract(center_id, now)
        period_start, period_end = period_bounds(contract.settlement_frequency, now)
        return await self.project(center_id, period_start, period_end, now=now)

    async def collection_report(self, settlement_id: str, now: Optional[datetime] = None) -> CollectionReport:
        """Compare a settlement's frozen figures with the live ledger."""
        now = now or utcnow()
        settlement = await self.settlements.get(settlement_id)
        if settlement is None:
            raise SettlementNotFound(f"Settlement {settlement_id} not found", stage="collection_report")

        live_collected, live_pending, live_rate, live_gross = await self._live_figures(settlement, now)
        return CollectionReport(
            settlement_id=str(settlement.id),
            reference=settlement.reference,
            center_id=settlement.center_id,
            currency=settlement.currency,
            frozen_gross_revenue=settlement.gross_revenue,
            frozen_collected_amount=settlement.collected_amount,
            frozen_pending_amount=settlement.pending_amount,
            frozen_collection_rate_pct=settlement.collection_rate_pct,
            live_gross_revenue=live_gross,
            live_collected_amount=live_collected,
            live_pending_amount=live_pending,
            live_collection_rate_pct=live_rate,
            late_collected_amount=max(0, live_collected - settlement.collected_amount),
            late_recorded_amount=max(0, live_gross - settlement.gross_revenue),
            as_of=now
        )

    async def _live_figures(self, settlement: Settlement, now: datetime):
        payments = await self.generator.payments.list_for_period(
            settlement.center_id, settlement.period_start, settlement.period_end
        )
        # Reuse the frozen rates; only fetch rates for currencies seen since
        rates = dict(settlement.exchange_rate_snapshot)
        missing = {payment.currency for payment in payments} - set(rates) - {settlement.currency}
        if missing:
            rates.update(await self.generator.currency.snapshot(
                missing, rate_date_for(settlement.period_end, now)
            ))
        tally = tally_payments(payments, settlement.currency, rates)
        collected, pending, rate = collection_figures(tally.gross_revenue, tally.collected_amount)
        return collected, pending, rate, tally.gross_revenue
