# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP trigger surface for runs
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the model build orchestrator.
"""

from .routes import health_router, router, set_services
from .schemas import (
    DocsRequest,
    RunRequest,
    RunResponse,
)

__all__ = [
    "router",
    "health_router",
    "set_services",
    "DocsRequest",
    "RunRequest",
    "RunResponse",
]
