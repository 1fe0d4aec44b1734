"""Credits ledger: balance changes paired with append-only ledger entries.

Every method takes the caller's UnitOfWork, so a balance change and its ledger
entry always commit (or roll back) together with whatever else the caller wrote
in the same transaction.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

import structlog

from vidgenie.core.config import Settings
from vidgenie.core.timezone import utcnow
from vidgenie.models.credit_account import CreditAccount
from vidgenie.models.credit_ledger import CreditLedgerEntry, LedgerEntryType
from vidgenie.models.generation_job import JobKind
from vidgenie.services.credits.pricing import PricingTable
from vidgenie.services.exceptions import InsufficientCredits, NotFoundError, ValidationError
from vidgenie.uow import UnitOfWork

logger = structlog.get_logger()


@dataclass
class BalanceCheck:
    """Result of a read-only affordability check."""

    sufficient: bool
    balance: int
    required: int


@dataclass
class BalanceSummary:
    """Balance view for the dashboard."""

    user_id: str
    balance: int
    plan_id: str
    month_to_date_usage: int
    recent_entries: list[CreditLedgerEntry] = field(default_factory=list)


@dataclass
class AuditResult:
    """Balance versus ledger sum for one user."""

    user_id: str
    balance: int
    ledger_sum: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


@dataclass
class MonthlyResetResult:
    """Outcome of a bulk monthly reset."""

    processed: int = 0
    skipped: int = 0
    total_credits_granted: int = 0


class CreditsLedger:
    """Atomic balance tracking with an audit trail."""

    def __init__(self, settings: Settings, pricing: PricingTable | None = None):
        self.settings = settings
        self.pricing = pricing or PricingTable(settings)

    async def ensure_account(
        self, uow: UnitOfWork, user_id: str, plan_id: str = "free"
    ) -> CreditAccount:
        """Return the user's account, provisioning it with the signup grant if missing.

        The grant is recorded as a bonus entry so the ledger sums to the balance
        from the first row on.
        """
        account = await uow.credit_accounts.get(user_id)
        if account is not None:
            return account

        grant = self.settings.default_credits
        account = await uow.credit_accounts.add(
            CreditAccount(user_id=user_id, balance=grant, plan_id=plan_id)
        )
        await uow.ledger.add(
            CreditLedgerEntry(
                user_id=user_id,
                amount=grant,
                type=LedgerEntryType.BONUS,
                description="Welcome credits",
                balance_after=grant,
            )
        )
        logger.info("credits.account_created", user_id=user_id, balance=grant, plan_id=plan_id)
        return account

    async def check_balance(self, uow: UnitOfWork, user_id: str, cost: int) -> BalanceCheck:
        """Read-only affordability check. Missing accounts read as zero."""
        balance = await uow.credit_accounts.get_balance(user_id) or 0
        return BalanceCheck(sufficient=balance >= cost, balance=balance, required=cost)

    async def reserve_and_charge(
        self,
        uow: UnitOfWork,
        user_id: str,
        cost: int,
        description: str,
        job_id: UUID | None = None,
    ) -> CreditLedgerEntry:
        """Decrement the balance by cost and append a reservation entry.

        The decrement is a single conditional UPDATE issued before any read, so
        two concurrent charges against a balance that covers only one of them
        cannot both succeed.

        Raises:
            ValidationError: If cost is negative
            InsufficientCredits: If the account is missing or the balance is below cost
        """
        if cost < 0:
            raise ValidationError("Cost must be non-negative")

        charged = await uow.credit_accounts.decrement_if_sufficient(user_id, cost)
        if not charged:
            balance = await uow.credit_accounts.get_balance(user_id) or 0
            logger.info(
                "credits.insufficient", user_id=user_id, balance=balance, required=cost
            )
            raise InsufficientCredits(balance=balance, required=cost)

        balance_after = await uow.credit_accounts.get_balance(user_id)
        entry = await uow.ledger.add(
            CreditLedgerEntry(
                user_id=user_id,
                amount=-cost,
                type=LedgerEntryType.RESERVATION,
                description=description,
                job_id=job_id,
                balance_after=balance_after or 0,
            )
        )
        logger.info(
            "credits.charged",
            user_id=user_id,
            amount=cost,
            balance_after=balance_after,
            job_id=str(job_id) if job_id else None,
        )
        return entry

    async def refund(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: int,
        description: str,
        job_id: UUID | None = None,
    ) -> CreditLedgerEntry:
        """Increment the balance and append a refund entry.

        Not idempotent on its own: callers gate it behind a conditional status
        transition in the same transaction.

        Raises:
            NotFoundError: If the user has no account
        """
        return await self._credit(uow, user_id, amount, LedgerEntryType.REFUND, description, job_id)

    async def add_credits(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: int,
        description: str,
        entry_type: LedgerEntryType = LedgerEntryType.PURCHASE,
    ) -> CreditLedgerEntry:
        """Grant credits from a purchase or bonus."""
        if entry_type not in (LedgerEntryType.PURCHASE, LedgerEntryType.BONUS):
            raise ValidationError(f"add_credits does not record {entry_type.value} entries")
        return await self._credit(uow, user_id, amount, entry_type, description, None)

    async def _credit(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: int,
        entry_type: LedgerEntryType,
        description: str,
        job_id: UUID | None,
    ) -> CreditLedgerEntry:
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        if not await uow.credit_accounts.increment(user_id, amount):
            raise NotFoundError(f"No credit account for user {user_id}")

        balance_after = await uow.credit_accounts.get_balance(user_id)
        entry = await uow.ledger.add(
            CreditLedgerEntry(
                user_id=user_id,
                amount=amount,
                type=entry_type,
                description=description,
                job_id=job_id,
                balance_after=balance_after or 0,
            )
        )
        logger.info(
            f"credits.{entry_type.value}",
            user_id=user_id,
            amount=amount,
            balance_after=balance_after,
            job_id=str(job_id) if job_id else None,
        )
        return entry

    async def monthly_reset(
        self, uow: UnitOfWork, user_id: str, new_balance: int
    ) -> CreditLedgerEntry:
        """Set the balance to new_balance, recording the delta as a monthly_reset entry.

        Raises:
            NotFoundError: If the user has no account
        """
        if new_balance < 0:
            raise ValidationError("Balance cannot be negative")

        previous = await uow.credit_accounts.set_balance(user_id, new_balance)
        if previous is None:
            raise NotFoundError(f"No credit account for user {user_id}")

        entry = await uow.ledger.add(
            CreditLedgerEntry(
                user_id=user_id,
                amount=new_balance - previous,
                type=LedgerEntryType.MONTHLY_RESET,
                description=f"Monthly credit reset to {new_balance}",
                balance_after=new_balance,
            )
        )
        logger.info(
            "credits.monthly_reset",
            user_id=user_id,
            previous_balance=previous,
            new_balance=new_balance,
        )
        return entry

    async def reset_monthly_credits(
        self, uow: UnitOfWork, dry_run: bool = False
    ) -> MonthlyResetResult:
        """Reset every account on a known plan to that plan's allowance.

        Accounts already at their allowance are skipped so no zero-amount
        entries are written. total_credits_granted is the net balance change.
        """
        result = MonthlyResetResult()
        accounts = await uow.credit_accounts.list_by_plans(self.pricing.plans)

        for account in accounts:
            allowance = self.pricing.plan_credits(account.plan_id)
            if allowance is None or allowance == account.balance:
                result.skipped += 1
                continue

            if dry_run:
                logger.info(
                    "credits.monthly_reset.dry_run",
                    user_id=account.user_id,
                    plan_id=account.plan_id,
                    current_balance=account.balance,
                    new_balance=allowance,
                )
                delta = allowance - account.balance
            else:
                entry = await self.monthly_reset(uow, account.user_id, allowance)
                delta = entry.amount

            result.processed += 1
            result.total_credits_granted += delta

        logger.info(
            "credits.monthly_reset.completed",
            processed=result.processed,
            skipped=result.skipped,
            total_credits_granted=result.total_credits_granted,
            dry_run=dry_run,
        )
        return result

    def estimate_cost(self, kind: JobKind) -> int:
        return self.pricing.cost_for(kind)

    async def get_balance(
        self, uow: UnitOfWork, user_id: str, recent_limit: int = 10
    ) -> BalanceSummary:
        """Balance, plan, month-to-date usage and the latest ledger entries."""
        account = await uow.credit_accounts.get(user_id)
        if account is None:
            raise NotFoundError(f"No credit account for user {user_id}")

        now = utcnow()
        month_start = datetime(now.year, now.month, 1)
        usage = await uow.ledger.sum_spent_since(user_id, month_start)
        recent = await uow.ledger.list_recent(user_id, limit=recent_limit)

        return BalanceSummary(
            user_id=user_id,
            balance=account.balance,
            plan_id=account.plan_id,
            month_to_date_usage=usage,
            recent_entries=recent,
        )

    async def audit(self, uow: UnitOfWork, user_id: str) -> AuditResult:
        """Compare the denormalized balance with the ledger sum."""
        balance = await uow.credit_accounts.get_balance(user_id)
        if balance is None:
            raise NotFoundError(f"No credit account for user {user_id}")

        ledger_sum = await uow.ledger.sum_for_user(user_id)
        result = AuditResult(user_id=user_id, balance=balance, ledger_sum=ledger_sum)
        if not result.consistent:
            logger.error(
                "credits.audit_mismatch",
                user_id=user_id,
                balance=balance,
                ledger_sum=ledger_sum,
            )
        return result
