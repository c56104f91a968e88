"""
SettlementBatch - Scheduled period close across all centers.

Each center is an independent unit of work: centers share no mutable state,
so they run concurrently (bounded by a semaphore) and each is bounded by a
timeout. A failure aborts only that center; it is logged, queued for manual
review and reported, while every other center completes. Re-running a batch
is safe because generation is idempotent.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from tabsera.core.config import settings
from tabsera.models.base import utcnow
from tabsera.models.settlement import Settlement
from tabsera.repositories.review_repo import ReviewQueueRepository
from tabsera.services.settlement_generator import SettlementGenerator
from tabsera.utils.errors import CenterTimeout, SettlementEngineError
from tabsera.utils.settlement_math import last_closed_period, start_of_day

logger = logging.getLogger(__name__)


class CenterFailure(BaseModel):
    center_id: str
    code: str
    message: str
    stage: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class BatchReport(BaseModel):
    as_of: datetime
    settlement_ids: List[str] = []
    failures: List[CenterFailure] = []

    @property
    def succeeded(self) -> int:
        return len(self.settlement_ids)


class SettlementBatch:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        concurrency: Optional[int] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.generator = SettlementGenerator(db)
        self.review_queue = ReviewQueueRepository(db)
        self.concurrency = concurrency or settings.BATCH_CONCURRENCY
        self.timeout_seconds = timeout_seconds or settings.CENTER_TIMEOUT_SECONDS

    async def run(
        self,
        as_of: Optional[datetime] = None,
        center_ids: Optional[List[str]] = None,
        actor: Optional[str] = None
    ) -> BatchReport:
        """Close the most recent finished period of every (or each given) center."""
        as_of = as_of or utcnow()
        actor = actor or settings.SYSTEM_ACTOR
        if center_ids is None:
            center_ids = await self.generator.registry.list_active_center_ids(self._lookup_day(as_of))

        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(center_id: str):
            async with semaphore:
                return await self._run_center(center_id, as_of, actor)

        results = await asyncio.gather(*(worker(center_id) for center_id in center_ids))

        report = BatchReport(as_of=as_of)
        for result in results:
            if isinstance(result, Settlement):
                report.settlement_ids.append(str(result.id))
            else:
                report.failures.append(result)

        logger.info(
            "Settlement batch as of %s: %s generated, %s failed",
            as_of.isoformat(), report.succeeded, len(report.failures)
        )
        return report

    async def close_center(self, center_id: str, as_of: datetime, actor: str) -> Settlement:
        contract = await self.generator.registry.get_active_contract(center_id, self._lookup_day(as_of))
        period_start, period_end = last_closed_period(contract.settlement_frequency, as_of)
        return await self.generator.generate(center_id, period_start, period_end, actor=actor, now=as_of)

    # ===== PRIVATE HELPERS =====

    @staticmethod
    def _lookup_day(as_of: datetime) -> datetime:
        # The last day that belongs to a closed period
        return start_of_day(as_of) - timedelta(days=1)

    async def _run_center(self, center_id: str, as_of: datetime, actor: str):
        try:
            return await asyncio.wait_for(self.close_center(center_id, as_of, actor), self.timeout_seconds)
        except asyncio.TimeoutError:
            error = CenterTimeout(
                f"Settlement generation exceeded {self.timeout_seconds}s",
                center_id=center_id,
                stage="generation"
            )
        except SettlementEngineError as exc:
            error = exc.with_context(center_id=center_id)
        except Exception as exc:
            logger.exception("Unexpected failure closing center %s", center_id)
            error = SettlementEngineError(
                f"{type(exc).__name__}: {exc}", center_id=center_id, stage="generation"
            )

        logger.error("Settlement for center %s failed: %s", center_id, error)
        await self.review_queue.record_failure(error)
        return CenterFailure(
            center_id=center_id,
            code=error.code,
            message=str(error),
            stage=error.stage,
            period_start=error.period_start,
            period_end=error.period_end
        )
