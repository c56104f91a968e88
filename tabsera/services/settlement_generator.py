"""
SettlementGenerator - Closes a (center, period) into a Settlement.

Core algorithm:
1. Resolve the active contract covering the whole period
2. Read the center's payments with paid_at in [period_start, period_end)
3. Convert each payment to the settlement currency and sum gross revenue
4. Split gross between operator and center (remainder to the center)
5. Derive collected / pending / collection rate from cleared payments
6. Compute the due date from the contract's due day
7. Persist as pending and append a "generated" audit entry

Generation is idempotent per key. A row produced while the period is still
open is a live projection and may be recomputed; the first generation after
the period has ended freezes it.
"""

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from tabsera.core.config import settings
from tabsera.models.audit import AuditAction
from tabsera.models.base import utcnow
from tabsera.models.contract import Contract
from tabsera.models.payment import Payment, PaymentStatus
from tabsera.models.settlement import Settlement, SettlementStatus, TrackBreakdown
from tabsera.repositories.audit_repo import AuditRepository
from tabsera.repositories.payment_repo import PaymentRepository
from tabsera.repositories.review_repo import ReviewQueueRepository
from tabsera.repositories.settlement_repo import SettlementRepository
from tabsera.services.contract_registry import ContractRegistry
from tabsera.services.currency import CurrencyNormalizer, convert_with_rates
from tabsera.utils.errors import InvalidSettlementPeriod, SettlementEngineError
from tabsera.utils.settlement_math import (
    collection_figures,
    due_date_for,
    is_aligned_period,
    period_label,
    period_last_day,
    split_revenue,
)

logger = logging.getLogger(__name__)


class PaymentTally(BaseModel):
    """Payments of one period, converted and summed in the settlement currency."""
    gross_revenue: int = 0
    collected_amount: int = 0
    payment_count: int = 0
    students_enrolled: int = 0
    tracks: List[TrackBreakdown] = []


def tally_payments(payments: List[Payment], currency: str, rates: Dict[str, Decimal]) -> PaymentTally:
    """
    Convert and sum payments. Failed payments never count.

    Each payment is converted individually so that collected and gross are
    built from the same rounded figures and collected never exceeds gross.
    """
    gross = 0
    collected = 0
    count = 0
    students: Set[str] = set()
    track_students: Dict[str, Set[str]] = defaultdict(set)
    track_gross: Dict[str, int] = defaultdict(int)
    track_count: Dict[str, int] = defaultdict(int)

    for payment in payments:
        if payment.status == PaymentStatus.FAILED:
            continue
        amount = convert_with_rates(payment.amount, payment.currency, currency, rates)
        gross += amount
        if payment.is_cleared:
            collected += amount
        count += 1
        students.add(payment.student_id)
        track_students[payment.track_id].add(payment.student_id)
        track_gross[payment.track_id] += amount
        track_count[payment.track_id] += 1

    tracks = [
        TrackBreakdown(
            track_id=track_id,
            students=len(track_students[track_id]),
            payment_count=track_count[track_id],
            gross_revenue=track_gross[track_id]
        )
        for track_id in sorted(track_gross)
    ]
    return PaymentTally(
        gross_revenue=gross,
        collected_amount=collected,
        payment_count=count,
        students_enrolled=len(students),
        tracks=tracks
    )


def rate_date_for(period_end: datetime, now: datetime) -> datetime:
    """Rates are read as of the period's last day, or now for an open period."""
    return min(period_last_day(period_end), now)


class SettlementGenerator:
    """Period closer: turns a center's payments into a Settlement."""

    def __init__(self, db: AsyncIOMotorDatabase, base_currency: Optional[str] = None):
        self.registry = ContractRegistry(db)
        self.payments = PaymentRepository(db)
        self.currency = CurrencyNormalizer(db, base_currency)
        self.settlements = SettlementRepository(db)
        self.audit = AuditRepository(db)
        self.review_queue = ReviewQueueRepository(db)

    async def generate(
        self,
        center_id: str,
        period_start: datetime,
        period_end: datetime,
        actor: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Settlement:
        """
        Generate (or return) the settlement for one center and period.

        Raises NoActiveContract, RateUnavailable or InvalidSettlementPeriod,
        with center/period/stage context filled in.
        """
        actor = actor or settings.SYSTEM_ACTOR
        now = now or utcnow()
        context = {"center_id": center_id, "period_start": period_start, "period_end": period_end}

        existing = await self.settlements.get_by_key(center_id, period_start, period_end)
        if existing is not None and (existing.is_final or existing.status != SettlementStatus.PENDING):
            return existing

        try:
            computed = await self.compute(center_id, period_start, period_end, now=now)
        except SettlementEngineError as error:
            raise error.with_context(**context)

        if existing is None:
            return await self._insert(computed, actor, now)
        return await self._refresh(existing, computed, actor, now)

    async def compute(
        self,
        center_id: str,
        period_start: datetime,
        period_end: datetime,
        now: Optional[datetime] = None
    ) -> Settlement:
        """Build the settlement for a period without persisting anything."""
        now = now or utcnow()
        if period_end <= period_start:
            raise InvalidSettlementPeriod(
                "period_end must be after period_start",
                center_id=center_id,
                period_start=period_start,
                period_end=period_end,
                stage="period_validation"
            )

        contract = await self.registry.get_contract_for_period(center_id, period_start, period_end)
        if not is_aligned_period(contract.settlement_frequency, period_start, period_end):
            raise InvalidSettlementPeriod(
                f"Period is not a {contract.settlement_frequency.value} period of the contract",
                center_id=center_id,
                period_start=period_start,
                period_end=period_end,
                stage="period_validation"
            )

        payments = await self.payments.list_for_period(center_id, period_start, period_end)
        currency = contract.settlement_currency
        rates = await self.currency.snapshot(
            [currency] + [payment.currency for payment in payments],
            rate_date_for(period_end, now)
        )
        tally = tally_payments(payments, currency, rates)
        return self.build(contract, period_start, period_end, tally, rates, now)

    @staticmethod
    def build(
        contract: Contract,
        period_start: datetime,
        period_end: datetime,
        tally: PaymentTally,
        rates: Dict[str, Decimal],
        now: datetime
    ) -> Settlement:
        tabsera_amount, center_amount = split_revenue(tally.gross_revenue, contract.tabsera_share_pct)
        collected, pending, rate = collection_figures(tally.gross_revenue, tally.collected_amount)

        settlement = Settlement(
            center_id=contract.center_id,
            period_start=period_start,
            period_end=period_end,
            period_label=period_label(contract.settlement_frequency, period_start),
            contract_id=contract.id,
            contract_version=contract.version,
            tabsera_share_pct=contract.tabsera_share_pct,
            center_share_pct=contract.center_share_pct,
            currency=contract.settlement_currency,
            gross_revenue=tally.gross_revenue,
            tabsera_amount=tabsera_amount,
            center_amount=center_amount,
            collected_amount=collected,
            pending_amount=pending,
            collection_rate_pct=rate,
            students_enrolled=tally.students_enrolled,
            payment_count=tally.payment_count,
            tracks=tally.tracks,
            status=SettlementStatus.PENDING,
            is_final=now >= period_end,
            due_date=due_date_for(period_end, contract.due_day),
            generated_at=now,
            exchange_rate_snapshot=rates,
            created_at=now,
            updated_at=now
        )
        settlement.check_invariants()
        return settlement

    # ===== PRIVATE HELPERS =====

    async def _insert(self, settlement: Settlement, actor: str, now: datetime) -> Settlement:
        settlement.reference = await self.settlements.next_reference(settlement.period_start.year)
        stored, inserted = await self.settlements.insert_if_absent(settlement)
        if not inserted:
            # Lost the race to a concurrent generate for the same key
            logger.info(
                "Settlement for center %s period %s already generated as %s",
                settlement.center_id, settlement.period_label, stored.reference
            )
            return stored

        await self.audit.append(stored, AuditAction.GENERATED, actor, timestamp=now)
        await self.review_queue.resolve_for_period(stored.center_id, stored.period_start, actor)
        logger.info(
            "Generated %s for center %s %s: gross=%s %s tabsera=%s center=%s collection=%s%% final=%s",
            stored.reference, stored.center_id, stored.period_label, stored.gross_revenue,
            stored.currency, stored.tabsera_amount, stored.center_amount,
            stored.collection_rate_pct, stored.is_final
        )
        return stored

    async def _refresh(self, existing: Settlement, computed: Settlement, actor: str, now: datetime) -> Settlement:
        computed.id = existing.id
        computed.reference = existing.reference
        computed.created_at = existing.created_at

        updated = await self.settlements.update_figures(computed)
        if updated is None:
            # Finalized or transitioned concurrently; the stored row wins
            return await self.settlements.get_by_key(*existing.key)

        action = AuditAction.FINALIZED if updated.is_final else AuditAction.RECOMPUTED
        await self.audit.append(updated, action, actor, timestamp=now)
        if updated.is_final:
            await self.review_queue.resolve_for_period(updated.center_id, updated.period_start, actor)
        logger.info(
            "%s %s for center %s: gross=%s collected=%s",
            action.value.capitalize(), updated.reference, updated.center_id,
            updated.gross_revenue, updated.collected_amount
        )
        return updated
