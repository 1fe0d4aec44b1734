"""Asset repository for vidgenie."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidgenie.models.asset import Asset


class AssetRepository:
    """Repository for Asset entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, asset: Asset) -> Asset:
        """Persist a new asset."""
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def get_by_id(self, asset_id: UUID) -> Asset | None:
        result = await self.session.execute(select(Asset).where(Asset.id == asset_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def list_for_job(self, job_id: UUID) -> list[Asset]:
        """Retrieve the assets a job produced."""
        result = await self.session.execute(
            select(Asset)
            .where(Asset.job_id == job_id)  # type: ignore[arg-type]
            .order_by(Asset.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
