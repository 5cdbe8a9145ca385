"""FastAPI application for the certificate rendering service."""

import asyncio
import logging
from contextlib import asynccontextmanager

import fastapi
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.config import get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import configure_logging
from core.ratelimit import limiter, rate_limit_exceeded_handler
from rendering.capture import BrowserRenderDriver
from routes import certificates_router, health_router, templates_router
from services.asset_publisher import create_asset_publisher
from services.certificates_service import CertificateResolver
from services.export_service import CertificateExporter

configure_logging()
logger = logging.getLogger(__name__)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled exceptions."""
    logger.exception(
        "unhandled.exception",
        extra={
            "exc_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def validation_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handler for request validation errors."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(status_code=500, content={"detail": "Unexpected error"})

    logger.warning(
        "request.validation_error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_count": len(exc.errors()),
        },
    )
    return JSONResponse(
        status_code=422,
        content={"detail": _jsonable_errors(exc)},
    )


def _jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry the raw ValueError from a model validator
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


def build_render_driver() -> BrowserRenderDriver:
    settings = get_settings()
    return BrowserRenderDriver(
        oversampling=settings.render_oversampling,
        asset_timeout_ms=settings.render_asset_timeout_ms,
        grace_period_ms=settings.render_grace_period_ms,
        headless=settings.render_headless,
    )


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Create DB engine and render pipeline at startup, release on shutdown.

    The browser itself is launched lazily on the first export, so startup
    does not depend on Chromium being installed.
    """
    settings = get_settings()
    app.state.engine = create_engine()
    app.state.session_maker = create_session_maker(app.state.engine)

    try:
        async with asyncio.timeout(60):
            await init_db(app.state.engine)
    except TimeoutError:
        logger.error(
            "init.timeout",
            extra={"hint": "Startup hung - check DB connectivity"},
        )
        raise RuntimeError("Application startup timed out")
    except Exception as e:
        logger.error("init.failed", extra={"error": str(e)}, exc_info=True)
        raise

    app.state.render_driver = build_render_driver()
    app.state.resolver = CertificateResolver(app.state.session_maker)
    app.state.exporter = CertificateExporter(
        app.state.render_driver,
        app.state.resolver,
        timeout=settings.export_timeout_seconds,
    )
    app.state.asset_publisher = create_asset_publisher()
    logger.info(
        "init.complete",
        extra={"publisher_enabled": app.state.asset_publisher is not None},
    )

    try:
        yield
    finally:
        await app.state.render_driver.close()
        if app.state.asset_publisher is not None:
            await app.state.asset_publisher.aclose()
        await dispose_engine(app.state.engine)


_settings = get_settings()

app = fastapi.FastAPI(
    title="Certificate Render API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url="/redoc" if _settings.debug else None,
    openapi_url="/openapi.json" if _settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(health_router)
app.include_router(templates_router)
app.include_router(certificates_router)
