"""Repository for published artifact records."""

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import PublishedArtifact


class PublishedArtifactRepository:
    """Tracks rendered files pushed to the external asset store."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def add(
        self,
        certificate_id: str,
        format: str,
        asset_id: str,
        url: str,
    ) -> PublishedArtifact:
        artifact = PublishedArtifact(
            certificate_id=certificate_id,
            format=format,
            asset_id=asset_id,
            url=url,
        )
        self.db.add(artifact)
        await self.db.flush()
        return artifact

    async def list_for_certificate(
        self, certificate_id: str
    ) -> Sequence[PublishedArtifact]:
        result = await self.db.execute(
            select(PublishedArtifact)
            .where(PublishedArtifact.certificate_id == certificate_id)
            .order_by(PublishedArtifact.created_at)
        )
        return result.scalars().all()
