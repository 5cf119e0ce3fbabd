"""Case Mail Classifier — FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from casemail.config import settings
from casemail.database import init_db
from casemail.api import classifications, review
from casemail.services.processor import classification_processor

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("casemail")

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    # Startup
    logger.info("=" * 60)
    logger.info("Case Mail Classifier starting up")
    logger.info(f"Database: {settings.database_url.split('@')[-1]}")
    logger.info(f"Semantic fallback: {settings.ollama_url} ({settings.ollama_model})")
    logger.info(
        f"Thresholds: auto_assign={settings.auto_assign_threshold}, "
        f"needs_review={settings.needs_review_threshold}"
    )
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await classification_processor.close()
    logger.info("Shutdown complete")


# Create app
app = FastAPI(
    title="Case Mail Classifier",
    description="Routes inbound law-firm email to the client case it belongs to",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS: allow frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3100", "http://127.0.0.1:3100"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(classifications.router)
app.include_router(review.router)


@app.get("/")
async def root():
    """Root endpoint — basic info."""
    return {
        "app": "Case Mail Classifier",
        "version": APP_VERSION,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "ollama_model": settings.ollama_model,
    }
