# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the trigger API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from core.contracts import FailureReason, RunPhase, RunStatus
from core.models import ModelRunResult, RunRecord, RunSelection, TestRunResult


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class RunRequest(BaseModel):
    """Request to start a build or test run."""
    select: List[str] = Field(default_factory=list, description="Selectors; empty selects all models")
    exclude: List[str] = Field(default_factory=list)
    include_ancestors: Optional[bool] = Field(
        None,
        description="Defaults to true for builds and false for test runs",
    )
    include_descendants: bool = False
    defer_existing: bool = False
    run_id: Optional[str] = Field(None, max_length=128, description="Caller-supplied run id")
    deadline_seconds: Optional[float] = Field(None, gt=0)
    with_tests: Optional[bool] = Field(None, description="Build runs only; run tests after building")
    wait: bool = Field(True, description="Block until the run finishes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "select": ["+fct_orders"],
                    "deadline_seconds": 900,
                }
            ]
        }
    }

    def to_selection(self, default_ancestors: bool) -> RunSelection:
        return RunSelection(
            select=self.select,
            exclude=self.exclude,
            include_ancestors=default_ancestors if self.include_ancestors is None else self.include_ancestors,
            include_descendants=self.include_descendants,
            defer_existing=self.defer_existing,
        )


class DocsRequest(BaseModel):
    """Request to generate the docs artifact."""
    output_dir: Optional[str] = None
    run_id: Optional[str] = Field(None, max_length=128)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class RunResponse(BaseModel):
    """Run Record as seen by triggers."""
    model_config = {"protected_namespaces": ()}

    run_id: str
    phase: RunPhase
    status: RunStatus
    exit_code: int
    failure_reason: Optional[FailureReason] = None
    selection: RunSelection
    errors: List[str] = []
    plan: List[str] = []
    model_results: List[ModelRunResult] = []
    test_results: List[TestRunResult] = []
    docs_path: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: RunRecord) -> "RunResponse":
        return cls(
            run_id=record.run_id,
            phase=record.phase,
            status=record.status,
            exit_code=record.exit_code,
            failure_reason=record.failure_reason,
            selection=record.selection,
            errors=list(record.errors),
            plan=list(record.plan),
            model_results=list(record.model_results),
            test_results=list(record.test_results),
            docs_path=record.docs_path,
            created_at=record.created_at,
            started_at=record.started_at,
            finalized_at=record.finalized_at,
        )


class RunSummary(BaseModel):
    """Run list entry."""
    run_id: str
    phase: RunPhase
    status: RunStatus
    exit_code: int
    failure_reason: Optional[FailureReason] = None
    created_at: datetime
    finalized_at: Optional[datetime] = None


class RunListResponse(BaseModel):
    """List of runs response."""
    runs: List[RunSummary]
    total: int


class ModelResponse(BaseModel):
    """Model definition with its resolved build strategy."""
    name: str
    namespace: str
    materialized: str
    relation: str
    tags: List[str] = []
    description: Optional[str] = None
    depends_on: List[str] = []
    dependents: List[str] = []
    tests: List[str] = []


class ModelListResponse(BaseModel):
    """List of models response."""
    models: List[ModelResponse]
    total: int


class PlanResponse(BaseModel):
    """Build plan preview for a selection."""
    select: List[str] = []
    order: List[str]
    levels: List[List[str]]
    skipped_existing: List[str] = []


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    project: Optional[str] = None
    models: int = 0
    store: Optional[str] = None
    active_runs: int = 0


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None
    run_id: Optional[str] = None
