import csv
import io
from datetime import datetime
from typing import Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from tabsera.models.audit import AuditEntry
from tabsera.models.settlement import Settlement, SettlementStatus
from tabsera.repositories.audit_repo import AuditRepository
from tabsera.repositories.settlement_repo import SettlementRepository
from tabsera.utils.errors import SettlementNotFound

EXPORT_FIELDS = [
    "center",
    "period",
    "gross",
    "tabseraAmount",
    "centerAmount",
    "collectionRatePct",
    "status",
    "dueDate",
]


class CenterSettlementSummary(BaseModel):
    """Lifetime figures for one center (minor units)."""
    center_id: str
    total_settlements: int = 0
    total_gross: int = 0
    total_tabsera: int = 0
    total_center: int = 0
    settled_amount: int = 0      # operator share of paid settlements
    outstanding_amount: int = 0  # operator share of pending + overdue
    overdue_count: int = 0
    average_gross: int = 0


def export_row(settlement: Settlement) -> dict:
    return {
        "center": settlement.center_id,
        "period": f"{settlement.period_start.date().isoformat()}/{settlement.period_end.date().isoformat()}",
        "gross": settlement.gross_revenue,
        "tabseraAmount": settlement.tabsera_amount,
        "centerAmount": settlement.center_amount,
        "collectionRatePct": settlement.collection_rate_pct,
        "status": SettlementStatus(settlement.status).value,
        "dueDate": settlement.due_date.date().isoformat(),
    }


def settlements_to_csv(settlements: Iterable[Settlement]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for settlement in settlements:
        writer.writerow(export_row(settlement))
    return buffer.getvalue()


class SettlementQueryService:
    """Read side exposed to dashboards and the contract collaborator."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.settlements = SettlementRepository(db)
        self.audit = AuditRepository(db)

    async def get(self, settlement_id: str) -> Settlement:
        settlement = await self.settlements.get(settlement_id)
        if settlement is None:
            raise SettlementNotFound(f"Settlement {settlement_id} not found", stage="query")
        return settlement

    async def list_settlements(
        self,
        center_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        status: Optional[SettlementStatus] = None,
        skip: int = 0,
        limit: int = 0
    ) -> List[Settlement]:
        return await self.settlements.list(
            center_id=center_id, period_start=period_start, status=status, skip=skip, limit=limit
        )

    async def list_overdue(self, center_id: Optional[str] = None) -> List[Settlement]:
        return await self.settlements.list(center_id=center_id, status=SettlementStatus.OVERDUE)

    async def audit_trail(self, settlement_id: str) -> List[AuditEntry]:
        await self.get(settlement_id)
        return await self.audit.list_for_settlement(settlement_id)

    async def export_csv(
        self,
        center_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        status: Optional[SettlementStatus] = None
    ) -> str:
        settlements = await self.list_settlements(center_id=center_id, period_start=period_start, status=status)
        return settlements_to_csv(settlements)

    async def center_summary(self, center_id: str) -> CenterSettlementSummary:
        totals = await self.settlements.totals_by_status(center_id)
        summary = CenterSettlementSummary(center_id=center_id)

        for status, row in totals.items():
            summary.total_settlements += row["count"]
            summary.total_gross += row["gross_revenue"]
            summary.total_tabsera += row["tabsera_amount"]
            summary.total_center += row["center_amount"]
            if status == SettlementStatus.PAID.value:
                summary.settled_amount += row["tabsera_amount"]
            else:
                summary.outstanding_amount += row["tabsera_amount"]
            if status == SettlementStatus.OVERDUE.value:
                summary.overdue_count = row["count"]

        if summary.total_settlements:
            summary.average_gross = summary.total_gross // summary.total_settlements
        return summary
