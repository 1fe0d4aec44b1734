"""GenerationJob repository for vidgenie.

Provides data access methods for GenerationJob entities. All status changes go
through transition(), a compare-and-set UPDATE keyed on the expected prior status.
"""

from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vidgenie.core.timezone import utcnow
from vidgenie.models.generation_job import GenerationJob, JobStatus, check_transition


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Conditional updates serialize per-job transitions at the storage layer, so a
    webhook and a concurrent user action in another process cannot both win.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by id, bypassing any stale copy in the identity map."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_owner(self, job_id: UUID, user_id: str) -> GenerationJob | None:
        """Retrieve job by id scoped to its owning user.

        Returns:
            GenerationJob if it exists and belongs to user_id, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.user_id == user_id,  # type: ignore[arg-type]
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_job_id(self, provider_job_id: str) -> GenerationJob | None:
        """Retrieve job by the provider-assigned id used to correlate webhooks."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.provider_job_id == provider_job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_for_owner(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[GenerationJob]:
        """Retrieve a user's jobs, newest first."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def transition(
        self,
        job_id: UUID,
        expected: Iterable[JobStatus],
        new_status: JobStatus,
        **values: Any,
    ) -> bool:
        """Atomically move a job to new_status if its current status is in expected.

        The WHERE clause carries the precondition, so the check and the write are a
        single statement; there is no read-then-write window.

        Args:
            job_id: Job to update
            expected: Statuses the job must currently be in
            new_status: Target status
            **values: Extra columns to set in the same statement

        Returns:
            True if this writer won, False if the precondition no longer held

        Raises:
            InvalidStateTransition: If new_status is not an edge from every expected status
        """
        expected = list(expected)
        for current in expected:
            check_transition(current, new_status)

        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.status.in_(expected),  # type: ignore[attr-defined]
            )
            .values(status=new_status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def update_if_status(
        self, job_id: UUID, expected: Iterable[JobStatus], **values: Any
    ) -> bool:
        """Update non-status columns only while the job is in one of the expected statuses."""
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.status.in_(list(expected)),  # type: ignore[attr-defined]
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def list_stuck(
        self, statuses: Iterable[JobStatus], updated_before: datetime, limit: int = 50
    ) -> list[GenerationJob]:
        """Retrieve jobs sitting in one of statuses since before updated_before, oldest first."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(
                GenerationJob.status.in_(list(statuses)),  # type: ignore[attr-defined]
                GenerationJob.updated_at < updated_before,  # type: ignore[arg-type]
            )
            .order_by(GenerationJob.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
