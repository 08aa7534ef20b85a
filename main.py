# ============================================================================
# MODEL BUILD ORCHESTRATOR - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - FastAPI application entry point
# PURPOSE: HTTP trigger surface for build, test and docs runs
# CREATED: 16 OCT 2026
# ============================================================================
"""
Model Build Orchestrator Main Application

FastAPI application that:
1. Loads the model project directory (MODELS_PROJECT_DIR)
2. Connects the configured target store (MODELS_STORE)
3. Exposes run triggers and run records over HTTP

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from __version__ import __version__, BUILD_DATE, EPOCH
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health_router, router, set_services
from core.config import get_defaults
from core.errors import ProjectLoadError
from infrastructure import create_target_store
from orchestrator import RunRegistry
from services import ProjectService

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Loads the project and opens the store on startup, closes the store on shutdown.
    """
    logger.info(f"Starting Model Build Orchestrator v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    defaults = get_defaults()

    project_dir = os.environ.get("MODELS_PROJECT_DIR", "./example_project")
    project_service = ProjectService(project_dir)
    try:
        project = project_service.project
        logger.info(f"Loaded project '{project.config.name}' ({len(project.models)} models)")
    except ProjectLoadError as e:
        # Keep serving; runs answer with an aborted record until the project is fixed
        logger.error(f"Project failed to load: {e}")

    store = create_target_store(defaults.store)
    logger.info(f"Target store: {type(store).__name__}")

    set_services(
        project_service=project_service,
        store=store,
        registry=RunRegistry(),
        defaults=defaults,
    )

    yield

    logger.info("Shutting down Model Build Orchestrator...")
    store.close()
    logger.info("Model Build Orchestrator stopped")


# Create FastAPI app
app = FastAPI(
    title="Model Build Orchestrator",
    description=f"Epoch {EPOCH} dependency-aware builds of SQL models",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include health check route (no prefix - /health)
app.include_router(health_router)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Model Build Orchestrator",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
