"""FastAPI application entry point for the CoverText SMS API."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from covertext.app.config import get_settings
from covertext.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()

    settings = get_settings()
    if not settings.telnyx_configured:
        logger.warning("TELNYX_API_KEY not set: outbound replies will only be logged")
    if settings.telnyx_skip_signature:
        logger.warning("TELNYX_SKIP_SIGNATURE set: webhook signatures are not checked")
    elif not settings.telnyx_public_key:
        logger.warning("TELNYX_PUBLIC_KEY not set: every Telnyx webhook will be rejected")
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="CoverText API",
    lifespan=lifespan,
    debug=settings.debug,
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from covertext.app.routes.telnyx_inbound import router as telnyx_inbound_router
from covertext.app.routes.telnyx_status import router as telnyx_status_router

app.include_router(telnyx_inbound_router)
app.include_router(telnyx_status_router)

# Policy documents served to carriers as MMS media
_uploads_dir = Path(__file__).resolve().parents[3] / "uploads"
_uploads_dir.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=str(_uploads_dir)), name="uploads")


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "covertext"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "covertext.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
