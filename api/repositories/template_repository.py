"""Repository for certificate template operations."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import CertificateTemplate
from repositories.utils import log_slow_query


class TemplateRepository:
    """Repository for certificate template CRUD operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @log_slow_query("get_template_by_id")
    async def get_by_id(self, template_id: str) -> CertificateTemplate | None:
        result = await self.db.execute(
            select(CertificateTemplate).where(CertificateTemplate.id == template_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        name: str,
        definition: dict,
        description: str = "",
    ) -> CertificateTemplate:
        """Create a template.

        Calls flush() but does NOT commit; the caller is responsible for
        transaction management.
        """
        template = CertificateTemplate(
            name=name,
            description=description,
            definition=definition,
        )
        self.db.add(template)
        await self.db.flush()
        return template
