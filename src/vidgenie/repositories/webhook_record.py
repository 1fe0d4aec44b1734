"""WebhookRecord repository for vidgenie.

Records are insert-only apart from a late job_id link; forensic replay reads
them back by provider job id.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidgenie.models.webhook_record import WebhookRecord


class WebhookRecordRepository:
    """Repository for WebhookRecord entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, record: WebhookRecord) -> WebhookRecord:
        """Persist an inbound webhook."""
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_by_id(self, record_id: UUID) -> WebhookRecord | None:
        result = await self.session.execute(
            select(WebhookRecord).where(WebhookRecord.id == record_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_for_provider_job(self, provider_job_id: str) -> list[WebhookRecord]:
        """Retrieve all callbacks for a provider job id in arrival order."""
        result = await self.session.execute(
            select(WebhookRecord)
            .where(WebhookRecord.provider_job_id == provider_job_id)  # type: ignore[arg-type]
            .order_by(WebhookRecord.received_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def link_unmatched(self, provider_job_id: str, job_id: UUID) -> list[WebhookRecord]:
        """Attach callbacks that arrived before the job knew its provider id.

        Returns:
            The newly linked records in arrival order
        """
        records = [
            record
            for record in await self.list_for_provider_job(provider_job_id)
            if record.job_id is None
        ]
        for record in records:
            record.job_id = job_id
            self.session.add(record)
        await self.session.flush()
        return records
