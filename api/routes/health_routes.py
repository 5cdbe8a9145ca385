"""Health check endpoints."""

from fastapi import APIRouter, Request

from core.database import check_db_connection
from core.ratelimit import limiter
from schemas import DetailedHealthResponse, HealthResponse

SERVICE_NAME = "certificate-render-api"

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", service=SERVICE_NAME)


@router.get("/health/detailed", response_model=DetailedHealthResponse)
@limiter.limit("30/minute")
async def health_detailed(request: Request) -> DetailedHealthResponse:
    """Detailed health check with component status.

    Returns status of:
    - database: Can execute queries
    - render_engine: The headless browser is connected

    The browser starts lazily, so ``render_engine`` is false until the first
    export. Only the database decides the overall status; exports still
    succeed (degraded) without a browser.

    Always returns 200 - check individual component statuses for health.
    """
    try:
        await check_db_connection(request.app.state.engine)
        database_ok = True
    except Exception:
        database_ok = False

    driver = request.app.state.render_driver
    render_ok = bool(getattr(driver, "is_connected", False))

    return DetailedHealthResponse(
        status="healthy" if database_ok else "unhealthy",
        service=SERVICE_NAME,
        database=database_ok,
        render_engine=render_ok,
    )
