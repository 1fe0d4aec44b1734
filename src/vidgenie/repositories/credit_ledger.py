"""CreditLedger repository for vidgenie.

Ledger rows are append-only: there is no update or delete method here.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vidgenie.models.credit_ledger import CreditLedgerEntry, LedgerEntryType


class CreditLedgerRepository:
    """Repository for CreditLedgerEntry entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, entry: CreditLedgerEntry) -> CreditLedgerEntry:
        """Append a ledger entry."""
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_recent(self, user_id: str, limit: int = 10) -> list[CreditLedgerEntry]:
        """Retrieve the newest entries for a user."""
        result = await self.session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.user_id == user_id)  # type: ignore[arg-type]
            .order_by(CreditLedgerEntry.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_job(self, job_id: UUID) -> list[CreditLedgerEntry]:
        """Retrieve every entry linked to a job, oldest first."""
        result = await self.session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.job_id == job_id)  # type: ignore[arg-type]
            .order_by(CreditLedgerEntry.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def sum_for_user(self, user_id: str) -> int:
        """Sum of all signed amounts for a user (should equal the account balance)."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(CreditLedgerEntry.amount), 0)).where(
                CreditLedgerEntry.user_id == user_id  # type: ignore[arg-type]
            )
        )
        return int(result.scalar() or 0)

    async def sum_spent_since(self, user_id: str, since: datetime) -> int:
        """Absolute value of charges since a point in time (month-to-date usage)."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(CreditLedgerEntry.amount), 0)).where(
                CreditLedgerEntry.user_id == user_id,  # type: ignore[arg-type]
                CreditLedgerEntry.created_at >= since,  # type: ignore[arg-type]
                CreditLedgerEntry.type.in_(  # type: ignore[attr-defined]
                    [LedgerEntryType.RESERVATION, LedgerEntryType.GENERATION]
                ),
            )
        )
        return abs(int(result.scalar() or 0))
