"""
API package for the passgate backend.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter
from .v1.access import router as access_router
from .v1.passcodes import router as passcodes_router
from .v1.health import router as health_router

api_router = APIRouter()
api_router.include_router(access_router)
api_router.include_router(passcodes_router)
api_router.include_router(health_router)
