"""Repository layer for database operations.

Repositories encapsulate all database queries, keeping routes and services
focused on their own concerns. This separation provides:
- Single source of truth for database operations
- Easier testing (repositories can be mocked)
- Reusable queries across multiple endpoints
"""

from repositories.artifact_repository import PublishedArtifactRepository
from repositories.certificate_repository import CertificateRepository
from repositories.template_repository import TemplateRepository
from repositories.utils import log_slow_query

__all__ = [
    "CertificateRepository",
    "PublishedArtifactRepository",
    "TemplateRepository",
    "log_slow_query",
]
