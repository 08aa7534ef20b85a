# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - Fixtures shared across test modules
# PURPOSE: Recording fake store and project builders
# CREATED: 17 OCT 2026
# ============================================================================
"""
Shared fixtures.

RecordingStore implements the three store operations in memory and records
every call, so coordinator tests can assert on what reached the store
without a database.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from core.config import BuildDefaults, Defaults, DocsDefaults, StoreDefaults, reset_defaults
from core.errors import StoreError
from core.models import LoadedProject, ModelDefinition, ProjectConfig, SourceDefinition, TestSpec


EXAMPLE_PROJECT = Path(__file__).resolve().parent.parent / "example_project"


class RecordingStore:
    """
    In-memory target store.

    Args:
        fail: model name -> error message raised by execute_definition
        violations: substring -> count returned by run_assertion when the
                    query contains the substring (first match wins)
        existing: relations reported by list_existing_objects up front
        delay: seconds each execute_definition sleeps (concurrency tests)
    """

    def __init__(
        self,
        fail: Optional[Dict[str, str]] = None,
        violations: Optional[Dict[str, int]] = None,
        existing: Optional[List[str]] = None,
        delay: float = 0.0,
        on_execute: Optional[Callable[[str], None]] = None,
    ):
        self.fail = dict(fail or {})
        self.violations = dict(violations or {})
        self.objects: Dict[str, str] = {name: "table" for name in existing or []}
        self.delay = delay
        self.on_execute = on_execute

        self.executed: List[str] = []
        self.queries: List[str] = []
        self.list_calls = 0
        self.assertion_errors: Dict[str, str] = {}

        self._lock = threading.Lock()
        self._running = 0
        self.max_concurrency = 0

    @property
    def calls(self) -> int:
        return len(self.executed) + len(self.queries) + self.list_calls

    def execute_definition(self, model) -> None:
        with self._lock:
            self._running += 1
            self.max_concurrency = max(self.max_concurrency, self._running)
        try:
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                self.executed.append(model.name)
            if self.on_execute:
                self.on_execute(model.name)
            if model.name in self.fail:
                raise StoreError(self.fail[model.name], operation="execute_definition", object_name=model.relation)
            with self._lock:
                self.objects[model.relation] = model.materialization.value
        finally:
            with self._lock:
                self._running -= 1

    def run_assertion(self, query: str) -> int:
        with self._lock:
            self.queries.append(query)
        for marker, message in self.assertion_errors.items():
            if marker in query:
                raise StoreError(message, operation="run_assertion")
        for marker, count in self.violations.items():
            if marker in query:
                return count
        return 0

    def list_existing_objects(self) -> List[str]:
        with self._lock:
            self.list_calls += 1
            return sorted(self.objects)


def make_model(name: str, sql: str, **kwargs) -> ModelDefinition:
    """ModelDefinition with sensible defaults for tests."""
    return ModelDefinition(name=name, sql=sql, **kwargs)


def make_project(
    models: List[ModelDefinition],
    sources: Optional[List[SourceDefinition]] = None,
    tests: Optional[List[TestSpec]] = None,
    macros: Optional[List[str]] = None,
    namespace_config: Optional[dict] = None,
    **config,
) -> LoadedProject:
    config.setdefault("name", "test_project")
    return LoadedProject(
        config=ProjectConfig(models=namespace_config or {}, **config),
        models=models,
        sources=sources or [],
        tests=tests or [],
        macros=macros or [],
    )


def make_defaults(tmp_path: Optional[Path] = None, **build) -> Defaults:
    """Explicit Defaults so tests never depend on the environment."""
    docs = DocsDefaults(output_dir=str(tmp_path / "docs")) if tmp_path else DocsDefaults()
    return Defaults(build=BuildDefaults(**build), docs=docs, store=StoreDefaults())


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def _fresh_defaults():
    """Cached defaults must not leak between tests."""
    reset_defaults()
    yield
    reset_defaults()


@pytest.fixture
def tpch_sources():
    return [
        SourceDefinition(source_name="tpch", table_name="orders", schema="tpch"),
        SourceDefinition(source_name="tpch", table_name="lineitem", schema="tpch"),
    ]


@pytest.fixture
def orders_project(tpch_sources):
    """
    stg_orders, stg_lineitem -> fct_orders, plus accepted_values on status_code.
    """
    status_test = TestSpec(
        kind="accepted_values",
        model="fct_orders",
        column="status_code",
        values=["P", "O", "F"],
    )
    models = [
        make_model(
            "stg_orders",
            "select o_orderkey as order_key, o_orderstatus as status_code "
            "from {{ source('tpch', 'orders') }}",
            namespace="staging",
        ),
        make_model(
            "stg_lineitem",
            "select l_orderkey as order_key, l_extendedprice as extended_price "
            "from {{ source('tpch', 'lineitem') }}",
            namespace="staging",
        ),
        make_model(
            "fct_orders",
            "select o.order_key, o.status_code, sum(li.extended_price) as gross_amount\n"
            "from {{ ref('stg_orders') }} as o\n"
            "join {{ ref('stg_lineitem') }} as li on o.order_key = li.order_key\n"
            "group by 1, 2",
            namespace="marts",
            tests=[status_test],
        ),
    ]
    return make_project(
        models,
        sources=tpch_sources,
        namespace_config={
            "staging": {"+schema": "staging"},
            "marts": {"+materialized": "table", "+schema": "marts"},
        },
    )
