# ============================================================================
# RUN RECORD MODELS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core model - One orchestrator invocation
# PURPOSE: Selection input, per-model/per-test outcomes, run lifecycle
# CREATED: 08 OCT 2026
# EXPORTS: RunSelection, ModelRunResult, TestRunResult, RunRecord
# DEPENDENCIES: pydantic
# ============================================================================
"""
Run Record Models

A RunRecord is created when a trigger invokes build/test/docs and is
threaded explicitly through every component call; there is no
process-wide "current run". Once finalized it is immutable: attribute
assignment and the append helpers raise RunRecordFinalizedError.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.contracts import (
    ALLOWED_RUN_TRANSITIONS,
    FailureReason,
    MaterializationKind,
    ModelOutcome,
    RunPhase,
    RunStatus,
    TestKind,
    TestOutcome,
    TestSeverity,
)
from core.errors import InvalidStatusTransitionError, RunRecordFinalizedError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_run_id() -> str:
    """Generate a run identifier when the trigger does not supply one."""
    return f"run-{uuid.uuid4().hex[:12]}"


class RunSelection(BaseModel):
    """
    Which models a run covers.

    select uses selector strings:
        fct_orders          the model itself
        +fct_orders         the model and its ancestors
        fct_orders+         the model and its descendants
        tag:nightly         models tagged 'nightly'
        namespace:staging   models under models/staging
    An empty select means all models.
    """
    select: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)

    # "build model M" implies its upstream dependencies
    include_ancestors: bool = True
    include_descendants: bool = False

    # Ancestors that already exist in the store (and were not selected
    # explicitly) are skipped instead of rebuilt
    defer_existing: bool = False

    @property
    def is_all(self) -> bool:
        return not self.select


class ModelRunResult(BaseModel):
    """Outcome of one model step."""
    model: str
    outcome: ModelOutcome
    materialization: Optional[MaterializationKind] = None
    relation: Optional[str] = None
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None


class TestRunResult(BaseModel):
    """Outcome of one test."""
    __test__ = False

    test: str
    model: Optional[str] = None
    kind: TestKind
    severity: TestSeverity
    outcome: TestOutcome
    violations: Optional[int] = None
    message: Optional[str] = None


class RunRecord(BaseModel):
    """
    One invocation of the orchestrator.

    Lifecycle: Pending -> Building -> Testing -> Completed(success|failed),
    with Aborted reachable before any model executes.
    """
    model_config = ConfigDict(protected_namespaces=())

    run_id: str = Field(default_factory=generate_run_id, max_length=128)
    phase: RunPhase
    selection: RunSelection = Field(default_factory=RunSelection)

    status: RunStatus = RunStatus.PENDING
    failure_reason: Optional[FailureReason] = None
    errors: List[str] = Field(default_factory=list)

    plan: List[str] = Field(default_factory=list)
    model_results: List[ModelRunResult] = Field(default_factory=list)
    test_results: List[TestRunResult] = Field(default_factory=list)
    docs_path: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    def __setattr__(self, name, value):
        if self.finalized_at is not None:
            raise RunRecordFinalizedError(self.run_id)
        super().__setattr__(name, value)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    @property
    def exit_code(self) -> int:
        """0 for success, 1 for failed, 2 for aborted; 1 while still running."""
        if not self.status.is_terminal():
            return 1
        return self.status.exit_code

    def model_result(self, model: str) -> Optional[ModelRunResult]:
        for result in self.model_results:
            if result.model == model:
                return result
        return None

    def outcomes(self) -> dict:
        """Map model name -> outcome value."""
        return {result.model: result.outcome.value for result in self.model_results}

    def has_failures(self) -> bool:
        """Any failed model step or any test outcome that fails the run."""
        if any(r.outcome == ModelOutcome.FAILED for r in self.model_results):
            return True
        return any(r.outcome.fails_run() for r in self.test_results)

    # ------------------------------------------------------------------
    # Mutators (guarded)
    # ------------------------------------------------------------------

    def _ensure_mutable(self) -> None:
        if self.finalized_at is not None:
            raise RunRecordFinalizedError(self.run_id)

    def transition(self, new_status: RunStatus) -> None:
        """Move to a new status, enforcing the allowed transitions."""
        self._ensure_mutable()
        if new_status == self.status:
            return
        allowed = ALLOWED_RUN_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStatusTransitionError(
                self.status.value, new_status.value, [s.value for s in allowed]
            )
        if self.started_at is None and new_status in (RunStatus.BUILDING, RunStatus.TESTING):
            self.started_at = _utcnow()
        self.status = new_status

    def add_model_result(self, result: ModelRunResult) -> None:
        self._ensure_mutable()
        self.model_results.append(result)

    def add_test_result(self, result: TestRunResult) -> None:
        self._ensure_mutable()
        self.test_results.append(result)

    def add_error(self, message: str) -> None:
        self._ensure_mutable()
        self.errors.append(message)

    def finalize(
        self,
        status: RunStatus,
        failure_reason: Optional[FailureReason] = None,
    ) -> "RunRecord":
        """
        Set the terminal status and freeze the record.

        Args:
            status: SUCCESS, FAILED or ABORTED
            failure_reason: Required context for FAILED / ABORTED

        Returns:
            self, for chaining
        """
        if not status.is_terminal():
            raise ValueError(f"Cannot finalize with non-terminal status {status.value}")
        self.transition(status)
        if failure_reason is not None:
            self.failure_reason = failure_reason
        # Must be last: freezes the record
        self.finalized_at = _utcnow()
        return self


__all__ = [
    "generate_run_id",
    "RunSelection",
    "ModelRunResult",
    "TestRunResult",
    "RunRecord",
]
