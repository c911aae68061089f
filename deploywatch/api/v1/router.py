"""Main router for API v1."""

from fastapi import APIRouter

from deploywatch.api.v1 import health, logs, progress, resources

router = APIRouter(prefix="/v1")

# Include sub-routers
router.include_router(health.router, tags=["health"])
router.include_router(progress.router, prefix="/deploy-progress", tags=["progress"])
router.include_router(logs.router, prefix="/logs", tags=["logs"])
router.include_router(resources.router, prefix="/resources", tags=["resources"])
