"""REST surface: route tables and exception handlers."""

from starlette.routing import Route

from atti_backend.api import admin, audit, catalog, determinazioni
from atti_backend.api.errors import EXCEPTION_HANDLERS

API_ROUTES: list[Route] = [
    *determinazioni.routes,
    *audit.routes,
    *catalog.routes,
    *admin.routes,
]

__all__ = ["API_ROUTES", "EXCEPTION_HANDLERS"]
