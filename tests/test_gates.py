# ============================================================================
# TEST GATE TESTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - Generic test SQL, severity policy, skip rules
# PURPOSE: Verify violation queries and Pass/Warn/Fail/Error/Skipped outcomes
# CREATED: 17 OCT 2026
# ============================================================================
"""
Test Gate Tests

Covers:
1. Generic test registry (duplicates, unknown names)
2. SQL produced for unique / not_null / accepted_values / relationships
3. Severity classification
4. Errors from the store become ERROR, never abort sibling tests
5. Tests on ephemeral or unbuilt models are SKIPPED
6. should_stop interrupts remaining tests

Run with:
    pytest tests/test_gates.py -v
"""

import asyncio

import pytest

from core.contracts import TestKind, TestOutcome, TestSeverity
from core.errors import DuplicateGenericTestError, UnknownGenericTestError
from core.models import ProjectConfig, TestRunResult, TestSpec
from orchestrator.engine import (
    MaterializationPlanner,
    ModelCompiler,
    TestGateRunner,
    build_graph,
    classify,
    gate_failed,
    get_generic_test,
    list_generic_tests,
    register_generic_test,
)

from conftest import RecordingStore, make_model


@pytest.fixture
def compiler():
    graph = build_graph([
        make_model("stg_orders", "select 1 as order_key, 'O' as status_code"),
        make_model("fct_orders", "select * from {{ ref('stg_orders') }}", materialized="table"),
        make_model("int_items", "select * from {{ ref('stg_orders') }}", materialized="ephemeral"),
    ])
    plan = MaterializationPlanner(ProjectConfig(name="p")).plan(graph)
    return ModelCompiler(graph, plan)


def _spec(kind, **kwargs):
    kwargs.setdefault("model", "fct_orders")
    kwargs.setdefault("column", "order_key")
    return TestSpec(kind=kind, **kwargs)


def _run(runner, tests, built):
    return asyncio.run(runner.run_tests(tests, built))


class TestGenericRegistry:

    def test_builtin_tests_registered(self):
        assert {"unique", "not_null", "accepted_values", "relationships"} <= set(list_generic_tests())

    def test_duplicate_registration(self):
        with pytest.raises(DuplicateGenericTestError):
            register_generic_test("unique")(lambda relation, test, compiler: "")

    def test_unknown(self):
        with pytest.raises(UnknownGenericTestError):
            get_generic_test("not_a_test")


class TestGenericSql:

    def test_unique(self, compiler):
        sql = TestGateRunner(None, compiler).compile_test(_spec("unique"))
        assert "from analytics.fct_orders as tested" in sql
        assert "group by order_key" in sql
        assert "having count(*) > 1" in sql

    def test_not_null_with_where(self, compiler):
        sql = TestGateRunner(None, compiler).compile_test(_spec("not_null", where="order_key > 10"))
        assert "(select * from analytics.fct_orders where order_key > 10) as tested" in sql
        assert sql.endswith("where order_key is null")

    def test_accepted_values_quotes_literals(self, compiler):
        sql = TestGateRunner(None, compiler).compile_test(
            _spec("accepted_values", column="status_code", values=["P", "O", "F", "it's"])
        )
        assert "status_code not in ('P', 'O', 'F', 'it''s')" in sql

    def test_relationships(self, compiler):
        spec = _spec("relationships", to="ref('stg_orders')", field="order_key")
        assert spec.to == "stg_orders"
        assert spec.depends_on == ["fct_orders", "stg_orders"]

        sql = TestGateRunner(None, compiler).compile_test(spec)
        assert "left join analytics.stg_orders as parent" in sql
        assert "parent.order_key is null" in sql

    def test_generated_names(self):
        assert _spec("unique").name == "unique_fct_orders_order_key"
        spec = _spec("relationships", to="stg_orders", field="order_key")
        assert spec.name == "relationships_fct_orders_order_key_stg_orders_order_key"


class TestClassification:

    @pytest.mark.parametrize("severity,violations,expected", [
        (TestSeverity.ERROR, 0, TestOutcome.PASS),
        (TestSeverity.ERROR, 1, TestOutcome.FAIL),
        (TestSeverity.WARN, 0, TestOutcome.PASS),
        (TestSeverity.WARN, 7, TestOutcome.WARN),
    ])
    def test_classify(self, severity, violations, expected):
        assert classify(severity, violations) == expected

    def test_gate_failed(self):
        def result(outcome):
            return TestRunResult(test="t", kind=TestKind.UNIQUE, severity=TestSeverity.ERROR, outcome=outcome)

        assert not gate_failed([result(TestOutcome.PASS), result(TestOutcome.WARN), result(TestOutcome.SKIPPED)])
        assert gate_failed([result(TestOutcome.PASS), result(TestOutcome.FAIL)])
        assert gate_failed([result(TestOutcome.ERROR)])


class TestRunTests:

    def test_outcomes_per_severity(self, compiler):
        store = RecordingStore(violations={"status_code not in": 1, "is null": 3})
        runner = TestGateRunner(store, compiler)
        tests = [
            _spec("accepted_values", column="status_code", values=["P", "O", "F"]),
            _spec("not_null", severity="warn"),
            _spec("unique"),
        ]

        results = _run(runner, tests, built={"fct_orders", "stg_orders"})

        assert [r.outcome for r in results] == [TestOutcome.FAIL, TestOutcome.WARN, TestOutcome.PASS]
        assert [r.violations for r in results] == [1, 3, 0]
        assert results[0].model == "fct_orders"

    def test_store_error_becomes_error_and_siblings_still_run(self, compiler):
        store = RecordingStore()
        store.assertion_errors["having count"] = "relation does not exist"
        runner = TestGateRunner(store, compiler)

        results = _run(runner, [_spec("unique"), _spec("not_null")], built={"fct_orders"})

        assert results[0].outcome == TestOutcome.ERROR
        assert "relation does not exist" in results[0].message
        assert results[1].outcome == TestOutcome.PASS
        assert len(store.queries) == 2

    def test_unbuilt_and_ephemeral_models_are_skipped(self, compiler):
        store = RecordingStore()
        runner = TestGateRunner(store, compiler)
        tests = [
            _spec("unique"),
            _spec("not_null", model="int_items"),
            _spec("relationships", to="stg_orders", field="order_key"),
        ]

        results = _run(runner, tests, built={"fct_orders"})

        assert results[0].outcome == TestOutcome.PASS
        assert results[1].outcome == TestOutcome.SKIPPED
        assert results[2].outcome == TestOutcome.SKIPPED
        assert "stg_orders" in results[2].message
        assert len(store.queries) == 1

    def test_singular_test_may_read_ephemeral(self, compiler):
        store = RecordingStore()
        singular = TestSpec(
            kind="singular",
            name="items_have_keys",
            sql="select * from {{ ref('int_items') }} where order_key is null",
            depends_on=["int_items"],
        )

        results = _run(TestGateRunner(store, compiler), [singular], built=set())

        assert results[0].outcome == TestOutcome.PASS
        assert results[0].model == "int_items"
        assert store.queries[0].startswith("with __cte__int_items as (")

    def test_should_stop_skips_and_records_reason(self, compiler):
        store = RecordingStore()
        runner = TestGateRunner(store, compiler, threads=1, should_stop=lambda: "run deadline exceeded")

        results = _run(runner, [_spec("unique"), _spec("not_null")], built={"fct_orders"})

        assert all(r.outcome == TestOutcome.SKIPPED for r in results)
        assert runner.interrupted == "run deadline exceeded"
        assert store.queries == []

    def test_async_store(self, compiler):
        class AsyncStore:
            async def run_assertion(self, query):
                return 2

        results = _run(TestGateRunner(AsyncStore(), compiler), [_spec("unique")], built={"fct_orders"})
        assert results[0].outcome == TestOutcome.FAIL
        assert results[0].violations == 2
