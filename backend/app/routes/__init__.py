"""API routes."""

from .applications import router as applications_router
from .jobs import router as jobs_router
from .maintenance import router as maintenance_router

__all__ = [
    "applications_router",
    "jobs_router",
    "maintenance_router",
]
