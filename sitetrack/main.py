"""sitetrack - construction unit task tracking service."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from sitetrack.core.config import constants
from sitetrack.core.db_client import close_connection, init_db
from sitetrack.core.errors import SiteTrackError
from sitetrack.core.logging import configure_logfire, instrument_fastapi
from sitetrack.interface.task_router import router as task_router, site_track_error_handler
from sitetrack.services import notification_service


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    configure_logfire()

    await init_db()
    logger.info("Database initialized")

    notification_service.outbox.start()
    yield
    # Shutdown
    await notification_service.outbox.stop()
    await close_connection()


app = FastAPI(
    title="sitetrack",
    description="Construction unit task tracking with dual contractor and site incharge review",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

app.add_exception_handler(SiteTrackError, site_track_error_handler)
app.include_router(task_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={"status": "healthy", "pending_notifications": notification_service.outbox.pending},
        status_code=constants.HTTP_OK,
    )
