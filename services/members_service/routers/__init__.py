"""Members service routers package."""

from services.members_service.routers.status import router as status_router

__all__ = [
    "status_router",
]
