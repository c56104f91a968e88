from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from tabsera.db.mongo import create_indexes, get_db
from tabsera.main import app
from tabsera.models.contract import Contract, ContractStatus, SettlementFrequency
from tabsera.models.exchange_rate import ExchangeRate
from tabsera.models.payment import Payment, PaymentStatus
from tabsera.repositories.contract_repo import ContractRepository
from tabsera.repositories.exchange_rate_repo import ExchangeRateRepository
from tabsera.repositories.payment_repo import PaymentRepository


@pytest_asyncio.fixture
async def test_db():
    """Fresh in-memory database per test, with the production indexes."""
    client = AsyncMongoMockClient()
    db = client[f"tabsera_test_{uuid4().hex}"]
    await create_indexes(db)
    yield db


@pytest_asyncio.fixture
async def client(test_db):
    """HTTP client against the app, wired to the test database."""
    app.dependency_overrides[get_db] = lambda: test_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
            yield http_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_contract(test_db):
    """Store an active 50/50 monthly USD contract; keyword overrides apply."""
    async def create(center_id: str = "center-c", **overrides) -> Contract:
        data = {
            "center_id": center_id,
            "tabsera_share_pct": 50,
            "center_share_pct": 50,
            "settlement_frequency": SettlementFrequency.MONTHLY,
            "due_day": 15,
            "settlement_currency": "USD",
            "start_date": datetime(2025, 1, 1),
            "end_date": datetime(2026, 12, 31),
            "status": ContractStatus.ACTIVE,
        }
        data.update(overrides)
        return await ContractRepository(test_db).insert(Contract(**data))
    return create


@pytest.fixture
def make_payment(test_db):
    async def record(
        amount: int,
        paid_at: datetime,
        center_id: str = "center-c",
        status: PaymentStatus = PaymentStatus.CLEARED,
        currency: str = "USD",
        student_id: str = "student-1",
        track_id: str = "math",
    ) -> Payment:
        payment = Payment(
            student_id=student_id,
            center_id=center_id,
            track_id=track_id,
            amount=amount,
            currency=currency,
            paid_at=paid_at,
            method="zaad",
            status=status,
            cleared_at=paid_at if status == PaymentStatus.CLEARED else None,
        )
        return await PaymentRepository(test_db).record(payment)
    return record


@pytest.fixture
def make_rate(test_db):
    async def upsert(currency: str, rate_per_base: str, effective_date: datetime) -> ExchangeRate:
        rate = ExchangeRate(
            currency=currency,
            rate_per_base=Decimal(rate_per_base),
            effective_date=effective_date,
        )
        return await ExchangeRateRepository(test_db).upsert(rate)
    return upsert


@pytest_asyncio.fixture
async def january_center(make_contract, make_payment):
    """
    Center C: 50/50 monthly USD contract due on the 15th, with January
    payments of $4,900 of which $4,260 cleared and $640 still pending.
    """
    contract = await make_contract()
    await make_payment(200000, datetime(2026, 1, 5, 10, 0), student_id="student-1", track_id="math")
    await make_payment(226000, datetime(2026, 1, 12, 14, 30), student_id="student-2", track_id="science")
    await make_payment(
        64000, datetime(2026, 1, 28, 9, 15),
        status=PaymentStatus.PENDING, student_id="student-3", track_id="math"
    )
    return contract
