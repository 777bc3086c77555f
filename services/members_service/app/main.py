"""FastAPI application for the Members Service."""

from fastapi import FastAPI
from libs.common.logging import configure_logging
from services.members_service.routers import status_router


def create_app() -> FastAPI:
    """Create and configure the Members Service FastAPI app."""
    configure_logging()

    app = FastAPI(
        title="Members Service",
        version="0.1.0",
        description="Member lifecycle status and membership periods.",
    )

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "members"}

    # Gateway: /api/v1/clubs/{club_id}/members/... → /clubs/{club_id}/members/...
    app.include_router(status_router)

    return app


app = create_app()
