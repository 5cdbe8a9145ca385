"""In-memory TTL caching utilities.

Provides TTL-based caching for resolved render jobs (snapshot -> layout ->
markup). Issued snapshots never change, so the only staleness is the record
status; revocation invalidates the entry explicitly.

Note: Cache is per-worker/replica, not shared across instances.
"""

from typing import TYPE_CHECKING

from cachetools import TTLCache

from core.config import get_settings

if TYPE_CHECKING:
    from services.certificates_service import RenderJob

DEFAULT_MAX_SIZE = 1000

# Render job cache: keyed by certificate id
_render_cache: TTLCache[str, "RenderJob"] = TTLCache(
    maxsize=DEFAULT_MAX_SIZE,
    ttl=get_settings().render_cache_ttl_seconds,
)


def get_cached_render_job(certificate_id: str) -> "RenderJob | None":
    return _render_cache.get(certificate_id)


def set_cached_render_job(certificate_id: str, job: "RenderJob") -> None:
    _render_cache[certificate_id] = job


def invalidate_render_job(certificate_id: str) -> None:
    """Call after operations that change what a certificate renders to
    (revocation, purge)."""
    _render_cache.pop(certificate_id, None)


def clear_all_caches() -> None:
    """For testing."""
    _render_cache.clear()
