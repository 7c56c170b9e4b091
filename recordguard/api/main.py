"""FastAPI application for Record-Guard."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from recordguard import __version__
from recordguard.api.middleware import setup_middleware
from recordguard.api.routes import health, integrity, patients
from recordguard.infrastructure.logging_config import setup_logging
from recordguard.infrastructure.settings import settings

setup_logging(use_json=settings.json_logs, log_level=settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Record-Guard API starting up...")
    logger.info(f"Write policy rejects parse failures: {settings.reject_parse_failures}")
    yield
    logger.info("Record-Guard API shutting down...")


app = FastAPI(
    title="Record-Guard API",
    description="Patient records with integrity-checked clinical sub-records",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

setup_middleware(app)

app.include_router(health.router)
app.include_router(patients.router)
app.include_router(integrity.router)


@app.get("/")
async def root():
    return {
        "message": "Record-Guard API",
        "version": __version__,
        "docs": "/api/docs",
        "health": "/api/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("recordguard.api.main:app", host="0.0.0.0", port=8000, log_level="info")
