import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from tabsera.models.audit import AuditAction
from tabsera.models.contract import SettlementFrequency
from tabsera.models.payment import Payment, PaymentStatus
from tabsera.models.settlement import SettlementStatus
from tabsera.repositories.audit_repo import AuditRepository
from tabsera.services.settlement_generator import SettlementGenerator, rate_date_for, tally_payments
from tabsera.utils.errors import InvalidSettlementPeriod, NoActiveContract, RateUnavailable

JAN = (datetime(2026, 1, 1), datetime(2026, 2, 1))
AFTER_JANUARY = datetime(2026, 2, 3, 9, 0)


async def audit_actions(db, settlement):
    entries = await AuditRepository(db).list_for_settlement(str(settlement.id))
    return [entry.action for entry in entries]


@pytest.mark.asyncio
async def test_january_settlement(test_db, january_center):
    settlement = await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)

    assert settlement.gross_revenue == 490000
    assert settlement.tabsera_amount == 245000
    assert settlement.center_amount == 245000
    assert settlement.collected_amount == 426000
    assert settlement.pending_amount == 64000
    assert settlement.collection_rate_pct == 87
    assert settlement.due_date == datetime(2026, 2, 15)
    assert settlement.status == SettlementStatus.PENDING
    assert settlement.is_final
    assert settlement.period_label == "January 2026"
    assert settlement.reference == "STL-2026-001"
    assert settlement.contract_id == january_center.id
    assert settlement.students_enrolled == 3
    assert settlement.payment_count == 3
    assert [(track.track_id, track.students, track.gross_revenue) for track in settlement.tracks] == [
        ("math", 2, 264000),
        ("science", 1, 226000),
    ]
    assert settlement.exchange_rate_snapshot == {"USD": Decimal(1)}
    assert await audit_actions(test_db, settlement) == [AuditAction.GENERATED]


@pytest.mark.asyncio
async def test_generate_is_idempotent(test_db, january_center):
    generator = SettlementGenerator(test_db)
    first = await generator.generate("center-c", *JAN, now=AFTER_JANUARY)
    second = await generator.generate("center-c", *JAN, now=datetime(2026, 2, 4))

    assert second.id == first.id
    assert second.reference == first.reference
    assert second.generated_at == first.generated_at
    assert second.gross_revenue == first.gross_revenue
    assert await test_db["settlements"].count_documents({}) == 1
    assert await audit_actions(test_db, first) == [AuditAction.GENERATED]


@pytest.mark.asyncio
async def test_concurrent_generate_keeps_one_row(test_db, january_center):
    first, second = await asyncio.gather(
        SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY),
        SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY),
    )

    assert first.id == second.id
    assert first.reference == second.reference
    assert await test_db["settlements"].count_documents({}) == 1
    assert await audit_actions(test_db, first) == [AuditAction.GENERATED]


@pytest.mark.asyncio
async def test_final_settlement_ignores_late_payments(test_db, january_center, make_payment):
    generator = SettlementGenerator(test_db)
    first = await generator.generate("center-c", *JAN, now=AFTER_JANUARY)

    # Backdated into January after the close
    await make_payment(10000, datetime(2026, 1, 30), student_id="student-9")
    again = await generator.generate("center-c", *JAN, now=datetime(2026, 2, 10))

    assert again.gross_revenue == first.gross_revenue == 490000


@pytest.mark.asyncio
async def test_live_period_is_recomputed_then_finalized(test_db, make_contract, make_payment):
    await make_contract()
    generator = SettlementGenerator(test_db)
    await make_payment(1000, datetime(2026, 1, 5))

    live = await generator.generate("center-c", *JAN, now=datetime(2026, 1, 20))
    assert not live.is_final
    assert live.gross_revenue == 1000

    await make_payment(2000, datetime(2026, 1, 22), status=PaymentStatus.PENDING, student_id="student-2")
    recomputed = await generator.generate("center-c", *JAN, now=datetime(2026, 1, 25))
    assert recomputed.id == live.id
    assert recomputed.gross_revenue == 3000
    assert recomputed.reference == live.reference
    assert not recomputed.is_final

    final = await generator.generate("center-c", *JAN, now=datetime(2026, 2, 1))
    assert final.is_final
    assert final.collection_rate_pct == 33

    assert await audit_actions(test_db, live) == [
        AuditAction.GENERATED,
        AuditAction.RECOMPUTED,
        AuditAction.FINALIZED,
    ]


@pytest.mark.asyncio
async def test_odd_remainder_goes_to_center(test_db, make_contract, make_payment):
    await make_contract(tabsera_share_pct=33, center_share_pct=67)
    await make_payment(101, datetime(2026, 1, 9))

    settlement = await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)
    assert (settlement.tabsera_amount, settlement.center_amount) == (33, 68)


@pytest.mark.asyncio
async def test_empty_period(test_db, make_contract):
    await make_contract()
    settlement = await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)

    assert settlement.gross_revenue == 0
    assert settlement.collection_rate_pct == 100
    assert settlement.tracks == []


@pytest.mark.asyncio
async def test_failed_payments_and_boundaries(test_db, make_contract, make_payment):
    await make_contract()
    await make_payment(100, datetime(2026, 1, 1, 0, 0))
    await make_payment(200, datetime(2026, 2, 1, 0, 0))
    await make_payment(400, datetime(2026, 1, 15), status=PaymentStatus.FAILED)

    settlement = await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)
    assert settlement.gross_revenue == 100
    assert settlement.payment_count == 1


@pytest.mark.asyncio
async def test_payments_converted_to_settlement_currency(test_db, make_contract, make_payment, make_rate):
    await make_contract()
    await make_rate("SOS", "570", datetime(2025, 12, 1))
    await make_payment(10000, datetime(2026, 1, 3))
    await make_payment(5700000, datetime(2026, 1, 4), currency="SOS", student_id="student-2")

    settlement = await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)
    assert settlement.gross_revenue == 20000
    assert settlement.exchange_rate_snapshot == {"SOS": Decimal("570"), "USD": Decimal(1)}


@pytest.mark.asyncio
async def test_rate_read_as_of_period_end(test_db, make_contract, make_payment, make_rate):
    await make_contract()
    await make_rate("SOS", "570", datetime(2025, 12, 1))
    await make_rate("SOS", "600", datetime(2026, 2, 1))
    await make_payment(5700000, datetime(2026, 1, 4), currency="SOS")

    settlement = await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)
    assert settlement.gross_revenue == 10000


@pytest.mark.asyncio
async def test_rate_correction_does_not_touch_final_settlement(test_db, make_contract, make_payment, make_rate):
    await make_contract()
    await make_rate("SOS", "570", datetime(2026, 1, 1))
    await make_payment(5700000, datetime(2026, 1, 4), currency="SOS")
    generator = SettlementGenerator(test_db)
    settlement = await generator.generate("center-c", *JAN, now=AFTER_JANUARY)

    await make_rate("SOS", "600", datetime(2026, 1, 1))
    again = await generator.generate("center-c", *JAN, now=datetime(2026, 2, 10))

    assert again.gross_revenue == settlement.gross_revenue == 10000
    assert again.exchange_rate_snapshot["SOS"] == Decimal("570")


@pytest.mark.asyncio
async def test_missing_contract_currency_rate(test_db, make_contract, make_payment):
    await make_contract(settlement_currency="SOS")
    await make_payment(10000, datetime(2026, 1, 3))

    with pytest.raises(RateUnavailable) as exc_info:
        await SettlementGenerator(test_db).generate("center-c", *JAN, now=AFTER_JANUARY)
    error = exc_info.value
    assert error.currency == "SOS"
    assert error.center_id == "center-c"
    assert error.period_start == datetime(2026, 1, 1)
    assert await test_db["settlements"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_no_contract(test_db):
    with pytest.raises(NoActiveContract) as exc_info:
        await SettlementGenerator(test_db).generate("center-x", *JAN, now=AFTER_JANUARY)
    assert exc_info.value.code == "no_active_contract"
    assert exc_info.value.period_end == datetime(2026, 2, 1)


@pytest.mark.asyncio
async def test_period_must_match_contract_frequency(test_db, make_contract):
    await make_contract(settlement_frequency=SettlementFrequency.QUARTERLY)
    generator = SettlementGenerator(test_db)

    with pytest.raises(InvalidSettlementPeriod):
        await generator.generate("center-c", *JAN, now=AFTER_JANUARY)

    quarter = await generator.generate(
        "center-c", datetime(2026, 1, 1), datetime(2026, 4, 1), now=datetime(2026, 4, 2)
    )
    assert quarter.period_label == "Q1 2026"
    assert quarter.due_date == datetime(2026, 4, 15)


@pytest.mark.asyncio
async def test_reversed_period_rejected(test_db, make_contract):
    await make_contract()
    with pytest.raises(InvalidSettlementPeriod) as exc_info:
        await SettlementGenerator(test_db).generate("center-c", datetime(2026, 2, 1), datetime(2026, 1, 1))
    assert exc_info.value.stage == "period_validation"


def test_tally_skips_failed_and_counts_distinct_students():
    payments = [
        Payment(student_id="s1", center_id="c", track_id="t1", amount=100, currency="USD",
                paid_at=datetime(2026, 1, 1), method="evc", status=PaymentStatus.CLEARED),
        Payment(student_id="s1", center_id="c", track_id="t2", amount=50, currency="USD",
                paid_at=datetime(2026, 1, 2), method="evc", status=PaymentStatus.PENDING),
        Payment(student_id="s2", center_id="c", track_id="t1", amount=70, currency="USD",
                paid_at=datetime(2026, 1, 3), method="evc", status=PaymentStatus.FAILED),
    ]
    tally = tally_payments(payments, "USD", {"USD": Decimal(1)})

    assert tally.gross_revenue == 150
    assert tally.collected_amount == 100
    assert tally.students_enrolled == 1
    assert [track.track_id for track in tally.tracks] == ["t1", "t2"]


def test_rate_date_for_open_period_is_now():
    assert rate_date_for(datetime(2026, 2, 1), datetime(2026, 1, 20, 8, 0)) == datetime(2026, 1, 20, 8, 0)
    assert rate_date_for(datetime(2026, 2, 1), datetime(2026, 3, 1)) == datetime(2026, 1, 31)
