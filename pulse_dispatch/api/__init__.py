"""API routes for CamerPulse Dispatch."""

from fastapi import APIRouter

from .notifications import router as notifications_router
from .streams import router as streams_router
from .workflows import router as workflows_router

# Main API router
api_router = APIRouter()

api_router.include_router(notifications_router)
api_router.include_router(workflows_router)
api_router.include_router(streams_router)

__all__ = ["api_router"]
