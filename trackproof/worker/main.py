"""
Trackproof Worker - Main FastAPI Application.

Runs scheduled and bulk tracking syncs pushed by Cloud Scheduler and Cloud
Tasks, plus the sweep that fails evidence abandoned by crashed workers.
"""

import os

from dotenv import load_dotenv
from fastapi import FastAPI

from trackproof.utils.logging import setup_logging

# Load environment variables
load_dotenv()

# Configure logging early
setup_logging("trackproof-worker")

from trackproof.sync.factory import service_lifespan  # noqa: E402
from trackproof.worker.routes import tasks  # noqa: E402

app = FastAPI(
    title="Trackproof Worker API",
    description="Background worker for scheduled and bulk tracking evidence syncs",
    version="0.1.0",
    lifespan=service_lifespan("Trackproof Worker"),
)


@app.get("/")
async def root():
    return {
        "service": "Trackproof Worker API",
        "version": "0.1.0",
        "status": "operational",
        "description": "Background worker for tracking evidence syncs",
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint for Cloud Run.

    Returns:
        dict: Health status
    """
    return {
        "status": "healthy",
        "service": "trackproof-worker",
        "environment": os.getenv("GOOGLE_CLOUD_PROJECT", "local"),
    }


app.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
