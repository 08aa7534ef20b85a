# ============================================================================
# RUN RECORD TESTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - Run Record state machine
# PURPOSE: Verify allowed transitions, finalization and exit codes
# CREATED: 17 OCT 2026
# ============================================================================
"""
Run Record Tests

Run with:
    pytest tests/test_run_record.py -v
"""

import pytest

from core.contracts import FailureReason, ModelOutcome, RunPhase, RunStatus
from core.errors import InvalidStatusTransitionError, RunRecordFinalizedError
from core.models import ModelRunResult, RunRecord, RunSelection, generate_run_id


def _record(**kwargs):
    return RunRecord(phase=RunPhase.BUILD, **kwargs)


class TestRunRecordLifecycle:

    def test_defaults(self):
        record = _record()
        assert record.status == RunStatus.PENDING
        assert record.run_id.startswith("run-")
        assert record.selection == RunSelection()
        assert record.exit_code == 1
        assert not record.is_finalized

    def test_generated_ids_are_unique(self):
        assert len({generate_run_id() for _ in range(100)}) == 100

    def test_happy_path(self):
        record = _record()
        record.transition(RunStatus.BUILDING)
        assert record.started_at is not None
        record.transition(RunStatus.TESTING)
        record.finalize(RunStatus.SUCCESS)

        assert record.is_finalized
        assert record.exit_code == 0
        assert record.failure_reason is None

    def test_aborted_before_execution(self):
        record = _record().finalize(RunStatus.ABORTED, FailureReason.SELECTION_ERROR)
        assert record.exit_code == 2
        assert record.started_at is None

    def test_failed_exit_code(self):
        record = _record()
        record.transition(RunStatus.BUILDING)
        record.finalize(RunStatus.FAILED, FailureReason.CANCELLED)
        assert record.exit_code == 1
        assert record.failure_reason == FailureReason.CANCELLED

    @pytest.mark.parametrize("path", [
        [RunStatus.TESTING, RunStatus.BUILDING],
        [RunStatus.BUILDING, RunStatus.SUCCESS],
        [RunStatus.TESTING, RunStatus.ABORTED],
    ])
    def test_invalid_transitions(self, path):
        record = _record()
        with pytest.raises(InvalidStatusTransitionError):
            for status in path:
                record.transition(status)

    def test_finalize_requires_terminal_status(self):
        with pytest.raises(ValueError):
            _record().finalize(RunStatus.BUILDING)

    def test_finalized_record_is_immutable(self):
        record = _record().finalize(RunStatus.SUCCESS)

        with pytest.raises(RunRecordFinalizedError):
            record.add_error("late")
        with pytest.raises(RunRecordFinalizedError):
            record.add_model_result(ModelRunResult(model="a", outcome=ModelOutcome.SUCCESS))
        with pytest.raises(RunRecordFinalizedError):
            record.transition(RunStatus.FAILED)
        with pytest.raises(RunRecordFinalizedError):
            record.status = RunStatus.FAILED

        assert record.status == RunStatus.SUCCESS
        assert record.errors == []


class TestRunRecordQueries:

    def test_outcomes_and_failures(self):
        record = _record()
        record.add_model_result(ModelRunResult(model="a", outcome=ModelOutcome.SUCCESS))
        record.add_model_result(ModelRunResult(model="b", outcome=ModelOutcome.FAILED, message="boom"))

        assert record.outcomes() == {"a": "success", "b": "failed"}
        assert record.model_result("b").message == "boom"
        assert record.model_result("zzz") is None
        assert record.has_failures()
