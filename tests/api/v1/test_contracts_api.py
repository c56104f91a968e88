import pytest

CONTRACT = {
    "center_id": "center-c",
    "tabsera_share_pct": 50,
    "center_share_pct": 50,
    "settlement_frequency": "monthly",
    "due_day": 15,
    "settlement_currency": "usd",
    "start_date": "2026-01-01",
    "end_date": "2026-12-31",
    "status": "active",
}


@pytest.mark.asyncio
async def test_create_contract(client):
    response = await client.post("/api/v1/contracts", json=CONTRACT)

    assert response.status_code == 201
    data = response.json()
    assert data["settlement_currency"] == "USD"
    assert data["version"] == 1
    assert data["start_date"] == "2026-01-01T00:00:00"


@pytest.mark.asyncio
async def test_create_contract_rejects_bad_split(client):
    response = await client.post("/api/v1/contracts", json={**CONTRACT, "center_share_pct": 51})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "contract_invariant_violation"
    assert detail["field"] == "tabsera_share_pct"


@pytest.mark.asyncio
async def test_create_contract_rejects_overlap(client):
    assert (await client.post("/api/v1/contracts", json=CONTRACT)).status_code == 201
    response = await client.post("/api/v1/contracts", json={**CONTRACT, "start_date": "2026-06-01"})

    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "start_date"


@pytest.mark.asyncio
async def test_active_contract_lookup(client):
    await client.post("/api/v1/contracts", json=CONTRACT)

    found = await client.get("/api/v1/contracts/active/center-c", params={"as_of": "2026-03-01"})
    assert found.status_code == 200
    assert found.json()["center_id"] == "center-c"

    missing = await client.get("/api/v1/contracts/active/center-c", params={"as_of": "2027-03-01"})
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "no_active_contract"


@pytest.mark.asyncio
async def test_update_contract(client):
    created = (await client.post("/api/v1/contracts", json=CONTRACT)).json()

    response = await client.patch(f"/api/v1/contracts/{created['id']}", json={"due_day": 10})
    assert response.status_code == 200
    assert response.json()["due_day"] == 10
    assert response.json()["version"] == 2

    rejected = await client.patch(f"/api/v1/contracts/{created['id']}", json={"due_day": 0})
    assert rejected.status_code == 422
    assert rejected.json()["detail"]["field"] == "due_day"


@pytest.mark.asyncio
async def test_update_contract_with_null_field(client):
    created = (await client.post("/api/v1/contracts", json=CONTRACT)).json()

    response = await client.patch(f"/api/v1/contracts/{created['id']}", json={"due_day": None})
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "due_day"

    unchanged = await client.get(f"/api/v1/contracts/{created['id']}")
    assert unchanged.json()["version"] == 1


@pytest.mark.asyncio
async def test_contract_not_found(client):
    response = await client.get("/api/v1/contracts/507f1f77bcf86cd799439011")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_contracts(client):
    await client.post("/api/v1/contracts", json=CONTRACT)
    await client.post("/api/v1/contracts", json={**CONTRACT, "center_id": "center-d"})

    response = await client.get("/api/v1/contracts", params={"center_id": "center-d"})
    assert [contract["center_id"] for contract in response.json()] == ["center-d"]
