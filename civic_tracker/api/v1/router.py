"""
API v1 router - aggregates all endpoint routers.
"""

from fastapi import APIRouter

from civic_tracker.api.v1.endpoints import (
    auth_router,
    files_router,
    health_router,
    issues_router,
)

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(issues_router, prefix="/issues", tags=["issues"])
api_router.include_router(files_router, prefix="/files", tags=["files"])
