# ============================================================================
# RUN COORDINATOR
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Build / test / docs runs
# PURPOSE: Drive one run end to end and aggregate everything into a Run Record
# CREATED: 12 OCT 2026
# ============================================================================
"""
Run Coordinator

Entry point for external triggers (CLI, HTTP). Each call creates a Run
Record and threads it through every step:

    build(selection)
        1. Build and validate the graph      -> Aborted on configuration error
        2. Plan materializations
        3. Resolve selection into a plan     -> Aborted on selection error
        4. Building: models run concurrently, each once all its in-plan
           producers succeeded; a failure skips its in-plan descendants
        5. Testing: tests of the selected models
        6. Completed: success | failed

    test(selection)      steps 1-3 and 5 against what already exists
    generate_docs()      steps 1-2, then the static docs artifact

Nothing raises past the coordinator; every error lands in the record and
the trigger reads record.exit_code.

Cancellation is cooperative: a CancellationToken and the optional deadline
are checked before each model or test step starts. Steps already running
are allowed to finish.
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from core.config import Defaults, get_defaults
from core.contracts import (
    FailureReason,
    ModelOutcome,
    RunPhase,
    RunStatus,
    TestSeverity,
)
from core.errors import CompilationError, ConfigurationError, SelectionError, StoreError
from core.logging import log_checkpoint, log_context
from core.models import (
    LoadedProject,
    ModelRunResult,
    RunRecord,
    RunSelection,
    TestRunResult,
    TestSpec,
    generate_run_id,
)
from infrastructure.store import call_store
from orchestrator.docs import DocsGenerator
from orchestrator.engine import (
    BuildPlan,
    MaterializationPlan,
    MaterializationPlanner,
    ModelCompiler,
    ModelGraph,
    ModelGraphBuilder,
    TestGateRunner,
    TopologicalScheduler,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# CANCELLATION
# ============================================================================

class CancellationToken:
    """
    Thread-safe cancellation flag.

    A trigger keeps the token and calls cancel(); the coordinator polls it
    at step boundaries.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by trigger") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def aborted_record(
    phase: RunPhase,
    message: str,
    selection: Optional[RunSelection] = None,
    run_id: Optional[str] = None,
    reason: FailureReason = FailureReason.CONFIGURATION_ERROR,
) -> RunRecord:
    """
    Finalized Aborted record for a run that could not start.

    Used by triggers when the project itself fails to load.
    """
    record = RunRecord(
        run_id=run_id or generate_run_id(),
        phase=phase,
        selection=selection or RunSelection(),
    )
    record.add_error(message)
    return record.finalize(RunStatus.ABORTED, reason)


# ============================================================================
# RUN REGISTRY
# ============================================================================

class RunRegistry:
    """
    In-process index of runs by id.

    Active runs are registered as soon as their record exists, so readers
    can observe progress; tokens of active runs allow cancel-by-id.
    """

    def __init__(self, max_runs: int = 500):
        self.max_runs = max_runs
        self._records: "OrderedDict[str, RunRecord]" = OrderedDict()
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, record: RunRecord, token: Optional[CancellationToken] = None) -> None:
        with self._lock:
            self._records[record.run_id] = record
            self._records.move_to_end(record.run_id)
            if token is not None:
                self._tokens[record.run_id] = token
            while len(self._records) > self.max_runs:
                oldest, _ = self._records.popitem(last=False)
                self._tokens.pop(oldest, None)

    def release(self, run_id: str) -> None:
        """Drop the cancellation token of a finished run."""
        with self._lock:
            self._tokens.pop(run_id, None)

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            return self._records.get(run_id)

    def __contains__(self, run_id: object) -> bool:
        with self._lock:
            return run_id in self._records

    def list(self, limit: int = 50) -> List[RunRecord]:
        """Most recent first."""
        with self._lock:
            records = list(self._records.values())
        return list(reversed(records))[:limit]

    def cancel(self, run_id: str, reason: str = "cancelled by trigger") -> bool:
        """Cancel an active run. Returns False if the run is not active."""
        with self._lock:
            token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel(reason)
        return True


# ============================================================================
# PER-RUN STATE
# ============================================================================

@dataclass
class _Prepared:
    """Validated inputs of one run."""
    graph: ModelGraph
    materializations: MaterializationPlan
    compiler: ModelCompiler


@dataclass
class _Execution:
    """Mutable bookkeeping while a plan executes."""
    plan: BuildPlan
    token: CancellationToken
    deadline: Optional[float]
    semaphore: asyncio.Semaphore
    results: Dict[str, ModelRunResult] = field(default_factory=dict)

    # Models whose dependents must not run: name -> reason
    blocked: Dict[str, str] = field(default_factory=dict)

    # Tests already evaluated inline (test_failure_blocks_dependents)
    tested: Set[str] = field(default_factory=set)
    test_results: List[TestRunResult] = field(default_factory=list)

    # Set when a step was abandoned because of cancellation or the deadline
    interrupted: Optional[str] = None

    def stop_reason(self) -> Optional[str]:
        if self.token.cancelled:
            return self.token.reason or "cancelled"
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return "run deadline exceeded"
        return None

    def built(self) -> Set[str]:
        return {
            name for name, result in self.results.items()
            if result.outcome == ModelOutcome.SUCCESS
        }


# ============================================================================
# COORDINATOR
# ============================================================================

class RunCoordinator:
    """
    Runs build, test and docs invocations for one loaded project.

    Args:
        project: Loader output (config, models, sources, tests, macros)
        store: Target store (sync or async methods)
        defaults: Configuration bundle (threads, deadline, docs dir)
        registry: Shared run registry (a private one when omitted)
    """

    def __init__(
        self,
        project: LoadedProject,
        store,
        defaults: Optional[Defaults] = None,
        registry: Optional[RunRegistry] = None,
    ):
        self.project = project
        self.store = store
        self.defaults = defaults or get_defaults()
        self.registry = registry if registry is not None else RunRegistry()
        self.docs_generator = DocsGenerator(self.defaults.docs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def build(
        self,
        selection: Optional[RunSelection] = None,
        run_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        deadline_seconds: Optional[float] = None,
        with_tests: Optional[bool] = None,
    ) -> RunRecord:
        """
        Build the selected models (ancestors included by default).

        Returns:
            Finalized RunRecord
        """
        token = cancel_token or CancellationToken()
        record = self._new_record(RunPhase.BUILD, selection or RunSelection(), run_id, token)
        if record.is_finalized:
            return record

        if with_tests is None:
            with_tests = self.defaults.build.run_tests_after_build

        with log_context(run_id=record.run_id, phase=RunPhase.BUILD.value):
            log_checkpoint("run_started", {"phase": "build", "select": record.selection.select})
            try:
                await self._run_build(record, token, deadline_seconds, with_tests)
            except Exception as e:
                logger.exception(f"Unexpected error in build run: {e}")
                self._fail(record, FailureReason.EXECUTION_ERROR, f"unexpected error: {e}")
            self._finish(record)
        return record

    async def test(
        self,
        selection: Optional[RunSelection] = None,
        run_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        deadline_seconds: Optional[float] = None,
    ) -> RunRecord:
        """
        Run the tests of the selected models against what exists in the store.

        Without a selection every test runs; ancestors are not pulled in.
        """
        token = cancel_token or CancellationToken()
        selection = selection or RunSelection(include_ancestors=False)
        record = self._new_record(RunPhase.TEST, selection, run_id, token)
        if record.is_finalized:
            return record

        with log_context(run_id=record.run_id, phase=RunPhase.TEST.value):
            log_checkpoint("run_started", {"phase": "test", "select": record.selection.select})
            try:
                await self._run_tests_only(record, token, deadline_seconds)
            except Exception as e:
                logger.exception(f"Unexpected error in test run: {e}")
                self._fail(record, FailureReason.EXECUTION_ERROR, f"unexpected error: {e}")
            self._finish(record)
        return record

    def generate_docs(self, output_dir: Optional[str] = None, run_id: Optional[str] = None) -> RunRecord:
        """Write the docs artifact; independent of build state."""
        record = self._new_record(RunPhase.DOCS, RunSelection(), run_id, None)
        if record.is_finalized:
            return record

        with log_context(run_id=record.run_id, phase=RunPhase.DOCS.value):
            log_checkpoint("run_started", {"phase": "docs"})
            try:
                prepared = self._prepare(record)
                if prepared is not None:
                    path = self.docs_generator.generate(
                        self.project.config.name,
                        prepared.graph,
                        prepared.materializations,
                        output_dir,
                    )
                    record.docs_path = str(path)
                    record.finalize(RunStatus.SUCCESS)
            except OSError as e:
                self._fail(record, FailureReason.EXECUTION_ERROR, f"failed to write docs: {e}")
            self._finish(record)
        return record

    def preview_plan(self, selection: Optional[RunSelection] = None) -> BuildPlan:
        """
        Plan without executing (no store calls).

        Raises:
            ConfigurationError, SelectionError
        """
        graph = self._build_graph()
        return TopologicalScheduler(graph).plan(selection or RunSelection())

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _new_record(
        self,
        phase: RunPhase,
        selection: RunSelection,
        run_id: Optional[str],
        token: Optional[CancellationToken],
    ) -> RunRecord:
        run_id = run_id or generate_run_id()
        record = RunRecord(run_id=run_id, phase=phase, selection=selection)
        if run_id in self.registry:
            # Never shadow an existing record with the same id
            record.add_error(f"run id {run_id} is already in use")
            record.finalize(RunStatus.ABORTED, FailureReason.CONFIGURATION_ERROR)
            logger.warning(f"Rejected duplicate run id {run_id}")
            return record
        self.registry.register(record, token)
        return record

    def _build_graph(self) -> ModelGraph:
        builder = ModelGraphBuilder()
        return builder.build(self.project.models, self.project.sources, self.project.tests)

    def _prepare(self, record: RunRecord) -> Optional[_Prepared]:
        """Graph + materializations; aborts the record on configuration errors."""
        try:
            graph = self._build_graph()
            planner = MaterializationPlanner(self.project.config, self.defaults.build)
            materializations = planner.plan(graph)
            compiler = ModelCompiler(
                graph,
                materializations,
                macros=self.project.macros,
                project_vars=self.project.config.vars,
            )
        except ConfigurationError as e:
            self._abort(record, FailureReason.CONFIGURATION_ERROR, str(e))
            return None
        except CompilationError as e:
            # Broken macro files surface while the compiler loads them
            self._abort(record, FailureReason.CONFIGURATION_ERROR, str(e))
            return None
        return _Prepared(graph=graph, materializations=materializations, compiler=compiler)

    async def _existing_models(self, prepared: _Prepared) -> Set[str]:
        """Model names whose relation exists in the store."""
        existing = {name.lower() for name in await call_store(self.store.list_existing_objects)}
        return {
            name for name in prepared.graph.models
            if prepared.materializations.kind(name).is_built()
            and prepared.materializations.relation(name).lower() in existing
        }

    def _plan(
        self,
        record: RunRecord,
        prepared: _Prepared,
        existing: Optional[Set[str]] = None,
    ) -> Optional[BuildPlan]:
        try:
            plan = TopologicalScheduler(prepared.graph).plan(record.selection, existing)
        except SelectionError as e:
            self._abort(record, FailureReason.SELECTION_ERROR, str(e))
            return None
        except ConfigurationError as e:
            self._abort(record, FailureReason.CONFIGURATION_ERROR, str(e))
            return None
        record.plan = list(plan.order)
        return plan

    def _deadline(self, deadline_seconds: Optional[float]) -> Optional[float]:
        seconds = deadline_seconds if deadline_seconds is not None else self.defaults.build.deadline_seconds
        if seconds is None:
            return None
        return time.monotonic() + seconds

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def _run_build(
        self,
        record: RunRecord,
        token: CancellationToken,
        deadline_seconds: Optional[float],
        with_tests: bool,
    ) -> None:
        prepared = self._prepare(record)
        if prepared is None:
            return

        existing: Optional[Set[str]] = None
        if record.selection.defer_existing:
            try:
                existing = await self._existing_models(prepared)
            except StoreError as e:
                self._fail(record, FailureReason.EXECUTION_ERROR, str(e))
                return

        plan = self._plan(record, prepared, existing)
        if plan is None:
            return

        threads = max(1, self.defaults.build.threads)
        execution = _Execution(
            plan=plan,
            token=token,
            deadline=self._deadline(deadline_seconds),
            semaphore=asyncio.Semaphore(threads),
        )
        gates = TestGateRunner(
            self.store,
            prepared.compiler,
            threads=threads,
            should_stop=execution.stop_reason,
        )

        record.transition(RunStatus.BUILDING)
        logger.info(f"Building {len(plan)} models with {threads} workers")
        await self._execute_plan(record, prepared, execution, gates)

        for name in plan.skipped_existing:
            logger.info(f"Deferred to existing object: {name}")

        if execution.interrupted:
            self._record_inline_tests(record, execution)
            self._fail(record, FailureReason.CANCELLED, execution.interrupted)
            return

        record.transition(RunStatus.TESTING)
        self._record_inline_tests(record, execution)
        if with_tests:
            tests = [
                test for test in prepared.graph.tests_for(plan.order)
                if test.name not in execution.tested
            ]
            if tests:
                built = execution.built() | set(plan.skipped_existing)
                built |= await self._existing_for_tests(record, prepared, tests, set(plan.order))
                logger.info(f"Running {len(tests)} tests")
                for result in await gates.run_tests(tests, built):
                    record.add_test_result(result)

        self._complete(record, execution.interrupted or gates.interrupted)

    async def _existing_for_tests(
        self,
        record: RunRecord,
        prepared: _Prepared,
        tests: List[TestSpec],
        planned: Set[str],
    ) -> Set[str]:
        """Out-of-plan models that tests read and that already exist."""
        outside = {
            name for test in tests for name in test.depends_on
            if name not in planned and prepared.materializations.kind(name).is_built()
        }
        if not outside:
            return set()
        try:
            return await self._existing_models(prepared) & outside
        except StoreError as e:
            record.add_error(str(e))
            return set()

    async def _execute_plan(
        self,
        record: RunRecord,
        prepared: _Prepared,
        execution: _Execution,
        gates: TestGateRunner,
    ) -> None:
        """
        Launch every model once its in-plan producers finished.

        The plan order is topological, so one pass over the pending list
        after each completion is enough to find every newly ready model.
        """
        graph = prepared.graph
        pending: List[str] = list(execution.plan.order)
        running: Dict[asyncio.Task, str] = {}

        while pending or running:
            still_pending: List[str] = []
            for name in pending:
                deps = execution.plan.dependencies_in_plan(graph, name)
                if any(dep not in execution.results for dep in deps):
                    still_pending.append(name)
                    continue

                reason = self._blocked_reason(execution, deps)
                if reason is not None:
                    self._skip(record, execution, name, reason)
                    continue

                task = asyncio.create_task(self._run_model(record, prepared, execution, gates, name))
                running[task] = name
            pending = still_pending

            if not running:
                if pending:
                    # Unreachable for a validated plan; guards against a stall
                    for name in pending:
                        self._skip(record, execution, name, "dependencies never completed")
                    pending = []
                continue

            done, _ = await asyncio.wait(list(running), return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                running.pop(task)

    def _blocked_reason(self, execution: _Execution, deps: List[str]) -> Optional[str]:
        for dep in deps:
            result = execution.results[dep]
            if result.outcome == ModelOutcome.FAILED:
                return f"upstream model {dep} failed"
            if dep in execution.blocked:
                return execution.blocked[dep]
        return None

    def _skip(self, record: RunRecord, execution: _Execution, name: str, reason: str) -> None:
        result = ModelRunResult(model=name, outcome=ModelOutcome.SKIPPED, message=reason)
        execution.results[name] = result
        execution.blocked[name] = reason
        record.add_model_result(result)
        logger.info(f"Skipped {name}: {reason}")

    async def _run_model(
        self,
        record: RunRecord,
        prepared: _Prepared,
        execution: _Execution,
        gates: TestGateRunner,
        name: str,
    ) -> None:
        """One model step; records its result and never raises."""
        async with execution.semaphore:
            with log_context(model=name):
                reason = execution.stop_reason()
                if reason is not None:
                    execution.interrupted = reason
                    self._skip(record, execution, name, reason)
                    return

                kind = prepared.materializations.kind(name)
                relation = prepared.materializations.relation(name)
                started = _utcnow()
                clock = time.perf_counter()

                try:
                    compiled = prepared.compiler.compile_model(name)
                    if kind.is_built():
                        await call_store(self.store.execute_definition, compiled)
                except Exception as e:
                    message = str(e)
                    result = ModelRunResult(
                        model=name,
                        outcome=ModelOutcome.FAILED,
                        materialization=kind,
                        relation=relation,
                        message=message,
                        started_at=started,
                        completed_at=_utcnow(),
                        execution_time_ms=int((time.perf_counter() - clock) * 1000),
                    )
                    execution.results[name] = result
                    record.add_model_result(result)
                    record.add_error(message if message.startswith(f"{name}:") else f"{name}: {message}")
                    logger.error(f"Model {name} failed: {message}")
                    log_checkpoint("model_failed", {"model": name, "error": message})
                    return

                result = ModelRunResult(
                    model=name,
                    outcome=ModelOutcome.SUCCESS,
                    materialization=kind,
                    relation=relation if kind.is_built() else None,
                    message=None if kind.is_built() else "ephemeral",
                    started_at=started,
                    completed_at=_utcnow(),
                    execution_time_ms=int((time.perf_counter() - clock) * 1000),
                )

                if self.defaults.build.test_failure_blocks_dependents and kind.is_built():
                    await self._gate_model(prepared, execution, gates, name)

                execution.results[name] = result
                record.add_model_result(result)
                log_checkpoint("model_built", {
                    "model": name,
                    "materialized": kind.value,
                    "execution_time_ms": result.execution_time_ms,
                })

    async def _gate_model(
        self,
        prepared: _Prepared,
        execution: _Execution,
        gates: TestGateRunner,
        name: str,
    ) -> None:
        """Run a model's own tests right after its build; block dependents on failure."""
        tests = [
            test for test in prepared.graph.models[name].tests
            if test.name not in execution.tested
        ]
        if not tests:
            return
        built = execution.built() | {name}
        results = await gates.run_tests(tests, built)
        for test, result in zip(tests, results):
            execution.tested.add(test.name)
            execution.test_results.append(result)
        failed = [
            r.test for r in results
            if r.outcome.fails_run() and r.severity == TestSeverity.ERROR
        ]
        if failed:
            execution.blocked[name] = f"tests failed on upstream model {name}: {', '.join(failed)}"

    def _record_inline_tests(self, record: RunRecord, execution: _Execution) -> None:
        for result in execution.test_results:
            record.add_test_result(result)
        execution.test_results = []

    # ------------------------------------------------------------------
    # Test-only runs
    # ------------------------------------------------------------------

    async def _run_tests_only(
        self,
        record: RunRecord,
        token: CancellationToken,
        deadline_seconds: Optional[float],
    ) -> None:
        prepared = self._prepare(record)
        if prepared is None:
            return
        plan = self._plan(record, prepared)
        if plan is None:
            return

        deadline = self._deadline(deadline_seconds)

        def stop_reason() -> Optional[str]:
            if token.cancelled:
                return token.reason or "cancelled"
            if deadline is not None and time.monotonic() >= deadline:
                return "run deadline exceeded"
            return None

        record.transition(RunStatus.TESTING)
        try:
            existing = await self._existing_models(prepared)
        except StoreError as e:
            self._fail(record, FailureReason.EXECUTION_ERROR, str(e))
            return

        tests = prepared.graph.tests_for(plan.order)
        gates = TestGateRunner(
            self.store,
            prepared.compiler,
            threads=self.defaults.build.threads,
            should_stop=stop_reason,
        )
        logger.info(f"Running {len(tests)} tests for {len(plan)} models")
        for result in await gates.run_tests(tests, existing):
            record.add_test_result(result)

        self._complete(record, gates.interrupted)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _complete(self, record: RunRecord, stop_reason: Optional[str]) -> None:
        """Pick the terminal status from what the record holds."""
        if stop_reason is not None:
            self._fail(record, FailureReason.CANCELLED, stop_reason)
            return

        model_failed = any(r.outcome == ModelOutcome.FAILED for r in record.model_results)
        tests_failed = any(r.outcome.fails_run() for r in record.test_results)

        for result in record.test_results:
            if result.outcome.fails_run():
                detail = f"{result.violations} violating rows" if result.violations else result.message
                record.add_error(f"test {result.test} {result.outcome.value}: {detail}")

        if model_failed:
            record.finalize(RunStatus.FAILED, FailureReason.EXECUTION_ERROR)
        elif tests_failed:
            record.finalize(RunStatus.FAILED, FailureReason.TEST_FAILURE)
        else:
            record.finalize(RunStatus.SUCCESS)

    def _abort(self, record: RunRecord, reason: FailureReason, message: str) -> None:
        logger.error(f"Run aborted ({reason.value}): {message}")
        record.add_error(message)
        record.finalize(RunStatus.ABORTED, reason)

    def _fail(self, record: RunRecord, reason: FailureReason, message: Optional[str]) -> None:
        if record.is_finalized:
            return
        if message:
            record.add_error(message)
        logger.error(f"Run failed ({reason.value}): {message}")
        record.finalize(RunStatus.FAILED, reason)

    def _finish(self, record: RunRecord) -> None:
        self.registry.release(record.run_id)
        log_checkpoint("run_finalized", {
            "status": record.status.value,
            "failure_reason": record.failure_reason.value if record.failure_reason else None,
            "models": len(record.model_results),
            "tests": len(record.test_results),
            "exit_code": record.exit_code,
        })


__all__ = [
    "CancellationToken",
    "RunRegistry",
    "RunCoordinator",
    "aborted_record",
]
