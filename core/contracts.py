# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Foundation - Core enums shared by every component
# PURPOSE: Materialization kinds, test kinds/outcomes, run lifecycle states
# CREATED: 06 OCT 2026
# EXPORTS: MaterializationKind, TestKind, TestSeverity, TestOutcome,
#          ModelOutcome, RunPhase, RunStatus, FailureReason
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the model build orchestrator.

These enums cross every boundary:
- YAML / SQL model definitions (materialized, severity)
- Run Records returned to external triggers (status, outcomes)
- Python (internal processing)
"""

from enum import Enum


# ============================================================================
# MODEL ENUMS
# ============================================================================

class MaterializationKind(str, Enum):
    """Physical form a model is built as."""
    EPHEMERAL = "ephemeral"      # Inlined as a CTE into consumers, never built
    VIEW = "view"                # CREATE OR REPLACE VIEW
    TABLE = "table"              # Idempotent replace of a physical table

    def is_built(self) -> bool:
        """Check if this kind produces an object in the target store."""
        return self != MaterializationKind.EPHEMERAL


class TestKind(str, Enum):
    """Kinds of data tests attached to models."""
    __test__ = False

    UNIQUE = "unique"
    NOT_NULL = "not_null"
    ACCEPTED_VALUES = "accepted_values"
    RELATIONSHIPS = "relationships"
    SINGULAR = "singular"        # Free-form query; every returned row is a failure

    def is_generic(self) -> bool:
        return self != TestKind.SINGULAR


class TestSeverity(str, Enum):
    """
    Test severity.

    A WARN failure is logged and never changes the run's terminal status.
    An ERROR failure always fails the run.
    """
    __test__ = False

    ERROR = "error"
    WARN = "warn"


class TestOutcome(str, Enum):
    """
    Result of evaluating one test.

    State mapping:
        violations == 0                 -> PASS
        violations > 0, severity=warn   -> WARN
        violations > 0, severity=error  -> FAIL
        assertion query raised          -> ERROR
        model not built / ephemeral     -> SKIPPED
    """
    __test__ = False

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    ERROR = "error"
    SKIPPED = "skipped"

    def fails_run(self) -> bool:
        """Check if this outcome changes the run's terminal status."""
        return self in (TestOutcome.FAIL, TestOutcome.ERROR)


class ModelOutcome(str, Enum):
    """Per-model outcome within a run."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


# ============================================================================
# RUN ENUMS
# ============================================================================

class RunPhase(str, Enum):
    """Operation requested by the trigger."""
    BUILD = "build"
    TEST = "test"
    DOCS = "docs"


class RunStatus(str, Enum):
    """
    Run Record lifecycle states.

    State transitions:
        PENDING -> BUILDING -> TESTING -> SUCCESS
                                      -> FAILED
                           -> FAILED   (cancelled / deadline)
                           -> ABORTED  (configuration error, nothing executed)
                -> TESTING             (test-only runs)
                -> SUCCESS             (docs runs)
                -> ABORTED             (selection error)
    """
    PENDING = "pending"
    BUILDING = "building"
    TESTING = "testing"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self in (RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.ABORTED)

    @property
    def exit_code(self) -> int:
        """Process exit code reported to external schedulers."""
        if self == RunStatus.SUCCESS:
            return 0
        if self == RunStatus.ABORTED:
            return 2
        return 1


ALLOWED_RUN_TRANSITIONS = {
    RunStatus.PENDING: {
        RunStatus.BUILDING,
        RunStatus.TESTING,
        RunStatus.SUCCESS,
        RunStatus.FAILED,
        RunStatus.ABORTED,
    },
    RunStatus.BUILDING: {RunStatus.TESTING, RunStatus.FAILED, RunStatus.ABORTED},
    RunStatus.TESTING: {RunStatus.SUCCESS, RunStatus.FAILED},
}


class FailureReason(str, Enum):
    """Why a run did not finish with SUCCESS."""
    CONFIGURATION_ERROR = "configuration_error"
    SELECTION_ERROR = "selection_error"
    EXECUTION_ERROR = "execution_error"
    TEST_FAILURE = "test_failure"
    CANCELLED = "cancelled"
