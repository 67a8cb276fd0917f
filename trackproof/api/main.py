"""
Trackproof API - Main FastAPI Application.

Provides REST APIs to trigger tracking syncs and read the evidence trail.
"""

import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trackproof.utils.logging import setup_logging

# Load environment variables
load_dotenv()

# Configure logging early
setup_logging("trackproof-api")

from trackproof.api.routes import tracking  # noqa: E402
from trackproof.sync.factory import service_lifespan  # noqa: E402

API_VERSION = "0.1.0"

OPENAPI_TAGS = [
    {
        "name": "tracking",
        "description": "Trigger tracking syncs and read the evidence trail",
    },
    {
        "name": "system",
        "description": "Service information and health",
    },
]

app = FastAPI(
    title="Trackproof API",
    description=(
        "Tracking evidence capture for shipping disputes.\n\n"
        "Each sync loads the carrier's public tracking page, stores a screenshot, "
        "extracts status, location and ETA with a vision model, and records the "
        "attempt in an append-only evidence trail.\n\n"
        "**Authentication:** internal Cloud Run service behind GCP IAM. Send an "
        "identity token as `Authorization: Bearer <token>`."
    ),
    version=API_VERSION,
    lifespan=service_lifespan("Trackproof API"),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/", tags=["system"], operation_id="getServiceInfo")
async def root():
    """Service name, version and status."""
    return {
        "service": "Trackproof API",
        "version": API_VERSION,
        "status": "operational",
        "description": "Tracking evidence capture for shipping disputes",
    }


@app.get("/health", tags=["system"], operation_id="healthCheck")
async def health_check():
    """Liveness probe for Cloud Run."""
    return {
        "status": "healthy",
        "service": "trackproof-api",
        "environment": os.getenv("GOOGLE_CLOUD_PROJECT", "local"),
    }


app.include_router(tracking.router, prefix="/api/v1", tags=["tracking"])
