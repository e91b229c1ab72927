"""
Convenience exports for API v1 endpoint routers.

This allows ``from civic_tracker.api.v1.endpoints import issues_router`` style
imports used by the aggregate router module.
"""

from .auth import router as auth_router
from .files import router as files_router
from .health import router as health_router
from .issues import router as issues_router

__all__ = [
    "auth_router",
    "files_router",
    "health_router",
    "issues_router",
]
