"""API route modules."""

from routes.certificates_routes import router as certificates_router
from routes.health_routes import router as health_router
from routes.templates_routes import router as templates_router

__all__ = [
    "certificates_router",
    "health_router",
    "templates_router",
]
