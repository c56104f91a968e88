from datetime import datetime

import pytest

from tabsera.models.settlement import SettlementStatus
from tabsera.services.settlement_generator import SettlementGenerator
from tabsera.services.settlement_query import EXPORT_FIELDS, SettlementQueryService
from tabsera.services.settlement_state import SettlementStateMachine
from tabsera.utils.errors import SettlementNotFound

JAN = (datetime(2026, 1, 1), datetime(2026, 2, 1))
FEB = (datetime(2026, 2, 1), datetime(2026, 3, 1))


@pytest.fixture
def two_months(test_db, january_center, make_payment):
    async def generate():
        await make_payment(100000, datetime(2026, 2, 10), student_id="student-4")
        generator = SettlementGenerator(test_db)
        january = await generator.generate("center-c", *JAN, now=datetime(2026, 3, 2))
        february = await generator.generate("center-c", *FEB, now=datetime(2026, 3, 2))
        return january, february
    return generate


@pytest.mark.asyncio
async def test_export_csv(test_db, january_center):
    await SettlementGenerator(test_db).generate("center-c", *JAN, now=datetime(2026, 2, 3))
    content = await SettlementQueryService(test_db).export_csv(center_id="center-c")

    lines = content.splitlines()
    assert lines[0] == ",".join(EXPORT_FIELDS)
    assert lines[1] == "center-c,2026-01-01/2026-02-01,490000,245000,245000,87,pending,2026-02-15"


@pytest.mark.asyncio
async def test_list_filters(test_db, two_months):
    january, february = await two_months()
    service = SettlementQueryService(test_db)

    all_rows = await service.list_settlements(center_id="center-c")
    assert [row.id for row in all_rows] == [february.id, january.id]

    by_period = await service.list_settlements(period_start=datetime(2026, 1, 1))
    assert [row.id for row in by_period] == [january.id]

    await SettlementStateMachine(test_db).sweep_overdue(now=datetime(2026, 2, 20))
    overdue = await service.list_overdue()
    assert [row.id for row in overdue] == [january.id]
    assert await service.list_settlements(status=SettlementStatus.PAID) == []


@pytest.mark.asyncio
async def test_center_summary(test_db, two_months):
    january, february = await two_months()
    machine = SettlementStateMachine(test_db)
    await machine.mark_paid(str(january.id), "BANK-1", "ops")
    await machine.sweep_overdue(now=datetime(2026, 3, 16))

    summary = await SettlementQueryService(test_db).center_summary("center-c")
    assert summary.total_settlements == 2
    assert summary.total_gross == 590000
    assert summary.total_tabsera == 295000
    assert summary.settled_amount == 245000
    assert summary.outstanding_amount == 50000
    assert summary.overdue_count == 1
    assert summary.average_gross == 295000


@pytest.mark.asyncio
async def test_empty_summary(test_db):
    summary = await SettlementQueryService(test_db).center_summary("center-x")
    assert summary.total_settlements == 0
    assert summary.average_gross == 0


@pytest.mark.asyncio
async def test_audit_trail_for_unknown_settlement(test_db):
    with pytest.raises(SettlementNotFound):
        await SettlementQueryService(test_db).audit_trail("507f1f77bcf86cd799439011")
