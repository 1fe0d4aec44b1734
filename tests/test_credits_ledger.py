"""Credits ledger tests.

Every balance change must be paired with a ledger entry, so the ledger sum always
equals the balance. Charges never overdraw, even when issued concurrently.
"""

import asyncio

import pytest

from vidgenie.models.credit_ledger import LedgerEntryType
from vidgenie.models.generation_job import JobKind
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.exceptions import InsufficientCredits, NotFoundError, ValidationError


async def _audit(uow_factory, ledger, user_id):
    async with await uow_factory() as uow:
        return await ledger.audit(uow, user_id)


class TestAccountProvisioning:
    @pytest.mark.asyncio
    async def test_ensure_account_grants_default_credits_once(self, uow_factory, ledger):
        async with await uow_factory() as uow:
            account = await ledger.ensure_account(uow, "new-user")
        assert account.balance == 10

        async with await uow_factory() as uow:
            again = await ledger.ensure_account(uow, "new-user")
            entries = await uow.ledger.list_recent("new-user")

        assert again.balance == 10
        assert len(entries) == 1
        assert entries[0].type == LedgerEntryType.BONUS
        assert (await _audit(uow_factory, ledger, "new-user")).consistent


class TestReserveAndCharge:
    @pytest.mark.asyncio
    async def test_charge_decrements_and_records_reservation(
        self, uow_factory, ledger, create_account
    ):
        await create_account("payer", balance=10)

        async with await uow_factory() as uow:
            entry = await ledger.reserve_and_charge(uow, "payer", 4, description="test charge")

        assert entry.amount == -4
        assert entry.type == LedgerEntryType.RESERVATION
        assert entry.balance_after == 6

        audit = await _audit(uow_factory, ledger, "payer")
        assert audit.balance == 6
        assert audit.consistent

    @pytest.mark.asyncio
    async def test_insufficient_balance_changes_nothing(self, uow_factory, ledger, create_account):
        await create_account("poor", balance=3)

        with pytest.raises(InsufficientCredits) as exc_info:
            async with await uow_factory() as uow:
                await ledger.reserve_and_charge(uow, "poor", 5, description="too expensive")

        assert exc_info.value.balance == 3
        assert exc_info.value.required == 5

        async with await uow_factory() as uow:
            entries = await uow.ledger.list_recent("poor")
        assert [e.type for e in entries] == [LedgerEntryType.BONUS]
        assert (await _audit(uow_factory, ledger, "poor")).balance == 3

    @pytest.mark.asyncio
    async def test_missing_account_reads_as_zero(self, uow_factory, ledger):
        with pytest.raises(InsufficientCredits) as exc_info:
            async with await uow_factory() as uow:
                await ledger.reserve_and_charge(uow, "ghost", 1, description="charge")
        assert exc_info.value.balance == 0

    @pytest.mark.asyncio
    async def test_negative_cost_rejected(self, uow_factory, ledger, create_account):
        await create_account("payer", balance=10)
        with pytest.raises(ValidationError):
            async with await uow_factory() as uow:
                await ledger.reserve_and_charge(uow, "payer", -1, description="bad")

    @pytest.mark.asyncio
    async def test_concurrent_charges_never_overdraw(self, uow_factory, ledger, create_account):
        """Two charges racing for a balance that covers one: exactly one succeeds."""
        await create_account("racer", balance=5)

        async def charge():
            async with await uow_factory() as uow:
                return await ledger.reserve_and_charge(uow, "racer", 5, description="race")

        results = await asyncio.gather(charge(), charge(), return_exceptions=True)

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, InsufficientCredits)]
        assert len(successes) == 1
        assert len(failures) == 1

        audit = await _audit(uow_factory, ledger, "racer")
        assert audit.balance == 0
        assert audit.consistent


class TestCredits:
    @pytest.mark.asyncio
    async def test_refund_restores_balance(self, uow_factory, ledger, create_account):
        await create_account("refundee", balance=10)
        async with await uow_factory() as uow:
            await ledger.reserve_and_charge(uow, "refundee", 5, description="charge")
        async with await uow_factory() as uow:
            entry = await ledger.refund(uow, "refundee", 5, description="refund")

        assert entry.type == LedgerEntryType.REFUND
        assert entry.balance_after == 10
        assert (await _audit(uow_factory, ledger, "refundee")).consistent

    @pytest.mark.asyncio
    async def test_refund_without_account_raises(self, uow_factory, ledger):
        with pytest.raises(NotFoundError):
            async with await uow_factory() as uow:
                await ledger.refund(uow, "ghost", 5, description="refund")

    @pytest.mark.asyncio
    async def test_add_credits_only_records_grants(self, uow_factory, ledger, create_account):
        await create_account("buyer", balance=0)

        async with await uow_factory() as uow:
            entry = await ledger.add_credits(uow, "buyer", 50, description="Top-up")
        assert entry.type == LedgerEntryType.PURCHASE
        assert entry.balance_after == 50

        with pytest.raises(ValidationError):
            async with await uow_factory() as uow:
                await ledger.add_credits(
                    uow, "buyer", 50, description="nope", entry_type=LedgerEntryType.REFUND
                )
        with pytest.raises(ValidationError):
            async with await uow_factory() as uow:
                await ledger.add_credits(uow, "buyer", 0, description="zero")


class TestMonthlyReset:
    @pytest.mark.asyncio
    async def test_reset_records_delta(self, uow_factory, ledger, create_account):
        await create_account("monthly", balance=10)
        async with await uow_factory() as uow:
            await ledger.reserve_and_charge(uow, "monthly", 7, description="spent")

        async with await uow_factory() as uow:
            entry = await ledger.monthly_reset(uow, "monthly", 100)

        assert entry.type == LedgerEntryType.MONTHLY_RESET
        assert entry.amount == 97
        assert entry.balance_after == 100
        audit = await _audit(uow_factory, ledger, "monthly")
        assert audit.balance == 100
        assert audit.consistent

    @pytest.mark.asyncio
    async def test_reset_can_lower_balance(self, uow_factory, ledger, create_account):
        await create_account("hoarder", balance=500)
        async with await uow_factory() as uow:
            entry = await ledger.monthly_reset(uow, "hoarder", 100)
        assert entry.amount == -400
        assert (await _audit(uow_factory, ledger, "hoarder")).consistent

    @pytest.mark.asyncio
    async def test_bulk_reset_uses_plan_allowance(self, uow_factory, ledger, create_account):
        await create_account("free-user", balance=3, plan_id="free")
        await create_account("pro-user", balance=3, plan_id="pro")
        await create_account("legacy-user", balance=3, plan_id="legacy")

        async with await uow_factory() as uow:
            result = await ledger.reset_monthly_credits(uow)

        assert result.processed == 2
        assert result.total_credits_granted == (100 - 3) + (5000 - 3)
        async with await uow_factory() as uow:
            assert await uow.credit_accounts.get_balance("free-user") == 100
            assert await uow.credit_accounts.get_balance("pro-user") == 5000
            assert await uow.credit_accounts.get_balance("legacy-user") == 3

    @pytest.mark.asyncio
    async def test_bulk_reset_reports_net_change(self, uow_factory, ledger, create_account):
        await create_account("settled", balance=100, plan_id="free")
        await create_account("hoarder", balance=150, plan_id="free")
        await create_account("spender", balance=20, plan_id="free")

        async with await uow_factory() as uow:
            result = await ledger.reset_monthly_credits(uow)

        assert result.processed == 2
        assert result.skipped == 1
        assert result.total_credits_granted == -50 + 80
        async with await uow_factory() as uow:
            entries = await uow.ledger.list_recent("settled")
        assert [e.type for e in entries] == [LedgerEntryType.BONUS]

    @pytest.mark.asyncio
    async def test_bulk_reset_dry_run_changes_nothing(self, uow_factory, ledger, create_account):
        await create_account("free-user", balance=3, plan_id="free")

        async with await uow_factory() as uow:
            result = await ledger.reset_monthly_credits(uow, dry_run=True)

        assert result.processed == 1
        async with await uow_factory() as uow:
            assert await uow.credit_accounts.get_balance("free-user") == 3


class TestQueries:
    @pytest.mark.asyncio
    async def test_check_balance_is_read_only(self, uow_factory, ledger, create_account):
        await create_account("checker", balance=4)

        async with await uow_factory() as uow:
            result = await ledger.check_balance(uow, "checker", 5)

        assert result.sufficient is False
        assert result.balance == 4
        assert result.required == 5

    @pytest.mark.asyncio
    async def test_get_balance_reports_month_to_date_usage(
        self, uow_factory, ledger, create_account
    ):
        await create_account("dash", balance=10)
        async with await uow_factory() as uow:
            await ledger.reserve_and_charge(uow, "dash", 5, description="one")
        async with await uow_factory() as uow:
            await ledger.reserve_and_charge(uow, "dash", 2, description="two")
        async with await uow_factory() as uow:
            await ledger.refund(uow, "dash", 2, description="refund two")

        async with await uow_factory() as uow:
            summary = await ledger.get_balance(uow, "dash")

        assert summary.balance == 5
        assert summary.plan_id == "free"
        assert summary.month_to_date_usage == 7
        assert len(summary.recent_entries) == 4

    @pytest.mark.asyncio
    async def test_get_balance_unknown_user(self, uow_factory, ledger):
        with pytest.raises(NotFoundError):
            async with await uow_factory() as uow:
                await ledger.get_balance(uow, "ghost")

    def test_estimate_cost_by_kind(self, settings):
        ledger = CreditsLedger(settings)
        assert ledger.estimate_cost(JobKind.IMAGE) == 2
        assert ledger.estimate_cost(JobKind.IMAGE_THEN_VIDEO) == 5
        assert ledger.pricing.all_costs() == {"IMAGE": 2, "IMAGE_THEN_VIDEO": 5}
