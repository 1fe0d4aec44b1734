"""Credits API endpoint tests."""

import pytest

from vidgenie.services.credits.ledger import CreditsLedger

AUTH = {"Authorization": "Bearer user-1"}
CRON = {"Authorization": "Bearer cron-secret"}


@pytest.mark.asyncio
async def test_balance_provisions_account_on_first_call(client):
    response = await client.get("/api/credits/balance", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == "user-1"
    assert body["balance"] == 10
    assert body["plan_id"] == "free"
    assert body["month_to_date_usage"] == 0
    assert [t["type"] for t in body["recent_transactions"]] == ["bonus"]


@pytest.mark.asyncio
async def test_balance_requires_bearer_token(client):
    assert (await client.get("/api/credits/balance")).status_code == 401
    assert (
        await client.get("/api/credits/balance", headers={"Authorization": "Basic abc"})
    ).status_code == 401
    assert (
        await client.get("/api/credits/balance", headers={"Authorization": "Bearer invalid"})
    ).status_code == 401


@pytest.mark.asyncio
async def test_check_reports_affordability(client, create_account):
    await create_account("user-1", balance=4)

    image = await client.post("/api/credits/check", json={"kind": "IMAGE"}, headers=AUTH)
    video = await client.post(
        "/api/credits/check", json={"kind": "IMAGE_THEN_VIDEO"}, headers=AUTH
    )

    assert image.json() == {"kind": "IMAGE", "sufficient": True, "balance": 4, "required": 2}
    assert video.json()["sufficient"] is False


@pytest.mark.asyncio
async def test_check_rejects_unknown_kind(client):
    response = await client.post("/api/credits/check", json={"kind": "AUDIO"}, headers=AUTH)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_costs_are_public(client):
    response = await client.get("/api/credits/costs")

    assert response.status_code == 200
    assert response.json() == {"costs": {"IMAGE": 2, "IMAGE_THEN_VIDEO": 5}}


@pytest.mark.asyncio
async def test_reset_monthly_requires_cron_secret(client):
    assert (await client.post("/api/credits/reset-monthly")).status_code == 401
    assert (
        await client.post(
            "/api/credits/reset-monthly", headers={"Authorization": "Bearer wrong"}
        )
    ).status_code == 401


@pytest.mark.asyncio
async def test_reset_monthly_unconfigured_secret(client):
    client.app.state.settings.cron_secret_token = ""

    response = await client.post("/api/credits/reset-monthly", headers=CRON)

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_reset_monthly_resets_accounts(client, create_account, uow_factory):
    await create_account("user-1", balance=3, plan_id="free")
    await create_account("user-2", balance=3, plan_id="starter")

    dry = await client.post("/api/credits/reset-monthly?dry_run=true", headers=CRON)
    assert dry.json()["dry_run"] is True
    async with await uow_factory() as uow:
        assert await uow.credit_accounts.get_balance("user-1") == 3

    response = await client.post("/api/credits/reset-monthly", headers=CRON)

    assert response.status_code == 200
    assert response.json() == {
        "processed": 2,
        "skipped": 0,
        "total_credits_granted": (100 - 3) + (1000 - 3),
        "dry_run": False,
    }
    ledger: CreditsLedger = client.app.state.ledger
    async with await uow_factory() as uow:
        assert (await ledger.audit(uow, "user-1")).consistent
        assert await uow.credit_accounts.get_balance("user-2") == 1000
