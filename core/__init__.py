# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core module initialization
# PURPOSE: Export core contracts and models
# CREATED: 06 OCT 2026
# ============================================================================

from core.contracts import (
    FailureReason,
    MaterializationKind,
    ModelOutcome,
    RunPhase,
    RunStatus,
    TestKind,
    TestOutcome,
    TestSeverity,
)
from core.models import (
    ModelDefinition,
    SourceDefinition,
    TestSpec,
    ProjectConfig,
    RunSelection,
    RunRecord,
)

__all__ = [
    # Enums
    "FailureReason",
    "MaterializationKind",
    "ModelOutcome",
    "RunPhase",
    "RunStatus",
    "TestKind",
    "TestOutcome",
    "TestSeverity",
    # Models
    "ModelDefinition",
    "SourceDefinition",
    "TestSpec",
    "ProjectConfig",
    "RunSelection",
    "RunRecord",
]
