"""CreditAccount repository for vidgenie.

Balance mutations are single UPDATE statements so concurrent requests from the
same user cannot lose updates or overdraw.
"""

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vidgenie.core.timezone import utcnow
from vidgenie.models.credit_account import CreditAccount


class CreditAccountRepository:
    """Repository for CreditAccount entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, user_id: str) -> CreditAccount | None:
        """Retrieve a user's account with a fresh balance."""
        result = await self.session.execute(
            select(CreditAccount)
            .where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, account: CreditAccount) -> CreditAccount:
        """Persist a new account."""
        self.session.add(account)
        await self.session.flush()
        return account

    async def decrement_if_sufficient(self, user_id: str, amount: int) -> bool:
        """Atomically subtract amount only if the balance covers it.

        Query:
            UPDATE credit_accounts
            SET balance = balance - :amount
            WHERE user_id = :user_id AND balance >= :amount

        Returns:
            True if the balance was decremented, False if missing or insufficient
        """
        result = await self.session.execute(
            update(CreditAccount)
            .where(
                CreditAccount.user_id == user_id,  # type: ignore[arg-type]
                CreditAccount.balance >= amount,  # type: ignore[arg-type]
            )
            .values(balance=CreditAccount.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def increment(self, user_id: str, amount: int) -> bool:
        """Atomically add amount to the balance.

        Returns:
            True if the account exists and was updated
        """
        result = await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
            .values(balance=CreditAccount.balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def set_balance(self, user_id: str, new_balance: int) -> int | None:
        """Overwrite the balance and return the previous one.

        The row is locked with FOR UPDATE (no-op on SQLite) so the delta recorded
        by the caller matches what was replaced.

        Returns:
            Previous balance, or None if the account does not exist
        """
        result = await self.session.execute(
            select(CreditAccount.balance)
            .where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
            .with_for_update()
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            return None

        await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
            .values(balance=new_balance, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return previous

    async def get_balance(self, user_id: str) -> int | None:
        """Read only the balance column."""
        result = await self.session.execute(
            select(CreditAccount.balance).where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_plans(self, plan_ids: list[str]) -> list[CreditAccount]:
        """Retrieve all accounts on one of the given plans (case-insensitive)."""
        result = await self.session.execute(
            select(CreditAccount)
            .where(func.lower(CreditAccount.plan_id).in_([p.lower() for p in plan_ids]))
            .order_by(CreditAccount.user_id)
        )
        return list(result.scalars().all())
