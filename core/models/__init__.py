# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 07 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the model build orchestrator.
"""

from core.models.model import ModelDefinition, SourceDefinition, TestSpec
from core.models.project import LoadedProject, ProjectConfig
from core.models.run import (
    RunSelection,
    ModelRunResult,
    TestRunResult,
    RunRecord,
    generate_run_id,
)

__all__ = [
    # Definitions
    "ModelDefinition",
    "SourceDefinition",
    "TestSpec",
    # Project
    "ProjectConfig",
    "LoadedProject",
    # Runs
    "RunSelection",
    "ModelRunResult",
    "TestRunResult",
    "RunRecord",
    "generate_run_id",
]
