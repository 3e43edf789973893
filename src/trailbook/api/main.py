"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from trailbook.api.routes import activities, trips
from trailbook.db.engine import get_engine
from trailbook.errors import InvalidInputError, TrailbookError, user_message


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Creates tables and runs migrations on first use (idempotent)
        get_engine()
        yield

    app = FastAPI(
        title="Trailbook API",
        description="Recorded activities, saved spots and trips",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(TrailbookError)
    async def trailbook_error_handler(request: Request, exc: TrailbookError):
        status = 400 if isinstance(exc, InvalidInputError) else 503
        return JSONResponse(
            status_code=status,
            content={"detail": str(exc), "category": exc.category, "message": user_message(exc)},
        )

    app.include_router(activities.router, prefix="/activities", tags=["activities"])
    app.include_router(trips.router, prefix="/trips", tags=["trips"])

    return app


# Module-level app instance for uvicorn
app = create_app()
