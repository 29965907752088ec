from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from guest_engagement.api.router import api_router
from guest_engagement.config import get_settings
from guest_engagement.core.logging import setup_logging
from guest_engagement.core.scheduler import start_scheduler, stop_scheduler
from guest_engagement.services import posthog_client

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    await start_scheduler()
    yield
    # Shutdown
    await stop_scheduler()
    posthog_client.shutdown()


app = FastAPI(
    title="Guest Engagement",
    description="Event reminders, review follow-ups and interest marketing SMS for The Anchor",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
