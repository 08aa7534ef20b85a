# ============================================================================
# TEST GATE RUNNER
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Data test compilation and severity gating
# PURPOSE: Turn test specs into violation queries and classify results
# CREATED: 11 OCT 2026
# ============================================================================
"""
Test Gate Runner

Every test evaluates to a count of violating rows (0 = pass).

Generic tests are SQL builders registered by name:

    @register_generic_test("not_null")
    def not_null(relation: str, test: TestSpec, compiler) -> str:
        return f"select {test.column} from {relation} where {test.column} is null"

Singular tests are compiled query text; every row they return is a violation.

Policy:
- ERROR severity, count > 0 -> FAIL (run fails)
- WARN severity, count > 0  -> WARN (logged, run unaffected)
- assertion raised          -> ERROR (run fails)
- model not built           -> SKIPPED
- tests are independent; one failure never short-circuits its siblings
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from core.contracts import MaterializationKind, TestKind, TestOutcome, TestSeverity
from core.errors import DuplicateGenericTestError, UnknownGenericTestError
from core.logging import log_context
from core.models import TestRunResult, TestSpec
from infrastructure.store import call_store
from orchestrator.engine.compiler import ModelCompiler

logger = logging.getLogger(__name__)

TestBuilder = Callable[[str, TestSpec, ModelCompiler], str]


# ============================================================================
# GENERIC TEST REGISTRY
# ============================================================================

_generic_tests: Dict[str, TestBuilder] = {}


def register_generic_test(name: str) -> Callable[[TestBuilder], TestBuilder]:
    """
    Decorator to register a generic test SQL builder.

    Raises:
        DuplicateGenericTestError: name already registered
    """
    def decorator(func: TestBuilder) -> TestBuilder:
        if name in _generic_tests:
            raise DuplicateGenericTestError(name)
        _generic_tests[name] = func
        logger.debug(f"Registered generic test: {name}")
        return func
    return decorator


def get_generic_test(name: str) -> TestBuilder:
    if name not in _generic_tests:
        raise UnknownGenericTestError(name)
    return _generic_tests[name]


def list_generic_tests() -> List[str]:
    return sorted(_generic_tests)


def _from(relation: str, test: TestSpec, alias: str = "tested") -> str:
    if test.where:
        return f"(select * from {relation} where {test.where}) as {alias}"
    return f"{relation} as {alias}"


def _sql_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


@register_generic_test(TestKind.UNIQUE.value)
def unique_test(relation: str, test: TestSpec, compiler: ModelCompiler) -> str:
    column = test.column
    return (
        f"select {column}, count(*) as n_records\n"
        f"from {_from(relation, test)}\n"
        f"where {column} is not null\n"
        f"group by {column}\n"
        f"having count(*) > 1"
    )


@register_generic_test(TestKind.NOT_NULL.value)
def not_null_test(relation: str, test: TestSpec, compiler: ModelCompiler) -> str:
    return (
        f"select {test.column}\n"
        f"from {_from(relation, test)}\n"
        f"where {test.column} is null"
    )


@register_generic_test(TestKind.ACCEPTED_VALUES.value)
def accepted_values_test(relation: str, test: TestSpec, compiler: ModelCompiler) -> str:
    values = ", ".join(_sql_literal(v) for v in test.values or [])
    return (
        f"select {test.column}\n"
        f"from {_from(relation, test)}\n"
        f"where {test.column} not in ({values})"
    )


@register_generic_test(TestKind.RELATIONSHIPS.value)
def relationships_test(relation: str, test: TestSpec, compiler: ModelCompiler) -> str:
    parent = compiler.relation_for(test.to)
    return (
        f"select child.{test.column}\n"
        f"from {_from(relation, test, alias='child')}\n"
        f"left join {parent} as parent\n"
        f"  on child.{test.column} = parent.{test.field}\n"
        f"where child.{test.column} is not null\n"
        f"  and parent.{test.field} is null"
    )


# ============================================================================
# CLASSIFICATION
# ============================================================================

def classify(severity: TestSeverity, violations: int) -> TestOutcome:
    """Severity policy: map a violation count to Pass / Warn / Fail."""
    if violations <= 0:
        return TestOutcome.PASS
    if severity == TestSeverity.WARN:
        return TestOutcome.WARN
    return TestOutcome.FAIL


def gate_failed(results: Iterable[TestRunResult]) -> bool:
    """True when any result changes the run's terminal status."""
    return any(result.outcome.fails_run() for result in results)


# ============================================================================
# RUNNER
# ============================================================================

class TestGateRunner:
    """
    Executes test specs against a target store.

    store must provide run_assertion(query) -> int (sync or async).
    should_stop, when given, is polled before each test starts; a truthy
    value skips the test (cancellation and deadlines).
    """
    __test__ = False

    def __init__(
        self,
        store,
        compiler: ModelCompiler,
        threads: int = 4,
        should_stop: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.store = store
        self.compiler = compiler
        self.threads = max(1, threads)
        self.should_stop = should_stop

        # Reason of the first test skipped by should_stop
        self.interrupted: Optional[str] = None

    def compile_test(self, test: TestSpec) -> str:
        """Violation query for a test."""
        if test.kind == TestKind.SINGULAR:
            return self.compiler.compile_query(test.name, test.sql, test.depends_on)
        builder = get_generic_test(test.kind.value)
        relation = self.compiler.relation_for(test.model)
        return builder(relation, test, self.compiler)

    def unavailable_models(self, test: TestSpec, built: Set[str]) -> List[str]:
        """Models a test reads that are ephemeral or not present in the store."""
        missing = []
        for name in test.depends_on:
            kind = self.compiler.plan.kinds.get(name)
            if kind == MaterializationKind.EPHEMERAL and test.kind != TestKind.SINGULAR:
                missing.append(name)
            elif kind is not None and kind.is_built() and name not in built:
                missing.append(name)
        return missing

    async def run_test(self, test: TestSpec, built: Set[str]) -> TestRunResult:
        """Run one test; never raises."""
        with log_context(test=test.name):
            stop_reason = self.should_stop() if self.should_stop else None
            if stop_reason:
                self.interrupted = self.interrupted or stop_reason
                return self._result(test, TestOutcome.SKIPPED, message=stop_reason)

            missing = self.unavailable_models(test, built)
            if missing:
                logger.info(f"Skipping test {test.name}: models not built {missing}")
                return self._result(test, TestOutcome.SKIPPED, message=f"models not built: {missing}")

            try:
                query = self.compile_test(test)
                violations = await self._run_assertion(query)
            except Exception as e:
                logger.error(f"Test {test.name} errored: {e}")
                return self._result(test, TestOutcome.ERROR, message=str(e))

            outcome = classify(test.severity, violations)
            if outcome == TestOutcome.FAIL:
                logger.error(f"Test {test.name} failed: {violations} violating rows")
            elif outcome == TestOutcome.WARN:
                logger.warning(f"Test {test.name} warned: {violations} violating rows")
            else:
                logger.info(f"Test {test.name} passed")
            return self._result(test, outcome, violations=violations)

    async def run_tests(self, tests: Iterable[TestSpec], built: Set[str]) -> List[TestRunResult]:
        """
        Run tests concurrently up to the worker limit.

        Results are returned in input order.
        """
        semaphore = asyncio.Semaphore(self.threads)

        async def _guarded(test: TestSpec) -> TestRunResult:
            async with semaphore:
                return await self.run_test(test, built)

        return list(await asyncio.gather(*(_guarded(t) for t in tests)))

    async def _run_assertion(self, query: str) -> int:
        return int(await call_store(self.store.run_assertion, query))

    def _result(
        self,
        test: TestSpec,
        outcome: TestOutcome,
        violations: Optional[int] = None,
        message: Optional[str] = None,
    ) -> TestRunResult:
        return TestRunResult(
            test=test.name,
            model=test.model or (test.depends_on[0] if test.depends_on else None),
            kind=test.kind,
            severity=test.severity,
            outcome=outcome,
            violations=violations,
            message=message,
        )


__all__ = [
    "register_generic_test",
    "get_generic_test",
    "list_generic_tests",
    "classify",
    "gate_failed",
    "TestGateRunner",
]
