"""FastAPI application factory and configuration."""

from fastapi import FastAPI

from casa_scout import __version__
from casa_scout.api.routes import health, runs, stats


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="casa-scout API",
        description="Real-estate listing crawler API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(stats.router, prefix="/api/stats", tags=["stats"])
    app.include_router(runs.router, prefix="/api/runs", tags=["runs"])

    return app


# Create app instance for uvicorn
app = create_app()
