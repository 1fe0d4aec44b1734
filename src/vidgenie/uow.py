"""Unit of Work pattern for vidgenie.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidgenie.repositories.asset import AssetRepository
from vidgenie.repositories.credit_account import CreditAccountRepository
from vidgenie.repositories.credit_ledger import CreditLedgerRepository
from vidgenie.repositories.generation_job import GenerationJobRepository
from vidgenie.repositories.webhook_record import WebhookRecordRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            charged = await uow.credit_accounts.decrement_if_sufficient(user_id, cost)
            await uow.jobs.add(job)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        # Instantiate all repositories with the session
        self.jobs = GenerationJobRepository(session)
        self.credit_accounts = CreditAccountRepository(session)
        self.ledger = CreditLedgerRepository(session)
        self.webhook_records = WebhookRecordRepository(session)
        self.assets = AssetRepository(session)

    async def __aenter__(self):
        """Enter async context manager.

        Returns:
            self: UnitOfWork instance with all repositories available
        """
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager with automatic commit/rollback.

        The session is closed either way so its connection goes back to the pool.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        # Return False to re-raise the exception (if any)
        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url, pool_size=50)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.jobs.add(job)
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
