# ============================================================================
# SELECTION + SCHEDULER TESTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - Selector grammar and build plans
# PURPOSE: Verify selection expansion, exclusion, deferral and ordering
# CREATED: 17 OCT 2026
# ============================================================================
"""
Selection + Scheduler Tests

Covers:
1. Selector parsing (name, +name, name+, tag:, namespace:, *)
2. Ancestor / descendant expansion and exclusion
3. Unknown selectors raise SelectionError
4. Plans are topological and deterministic
5. defer_existing skips existing ancestors but never explicit models
6. Dependency waves (levels)

Run with:
    pytest tests/test_scheduler.py -v
"""

import pytest

from core.errors import SelectionError
from core.models import RunSelection
from orchestrator.engine import TopologicalScheduler, build_graph, parse_selector, select_models

from conftest import make_model


@pytest.fixture
def diamond_graph():
    """
    src_a ──► stg_a ──┐
                      ├──► fct ──► rpt
    src_b ──► stg_b ──┘
    """
    return build_graph([
        make_model("stg_a", "select 1 as id", namespace="staging", tags=["nightly"]),
        make_model("stg_b", "select 2 as id", namespace="staging"),
        make_model(
            "fct",
            "select * from {{ ref('stg_a') }} union all select * from {{ ref('stg_b') }}",
            namespace="marts.core",
            tags=["nightly", "finance"],
        ),
        make_model("rpt", "select * from {{ ref('fct') }}", namespace="marts.reporting"),
    ])


class TestParseSelector:

    def test_plain_name(self):
        selector = parse_selector("fct_orders")
        assert (selector.method, selector.value, selector.parents, selector.children) == (
            "name", "fct_orders", False, False
        )

    def test_graph_operators(self):
        selector = parse_selector("+fct_orders+")
        assert selector.parents and selector.children
        assert selector.value == "fct_orders"

    def test_methods(self):
        assert parse_selector("tag:nightly").method == "tag"
        assert parse_selector("namespace:marts.core").value == "marts.core"
        assert parse_selector("*").method == "all"

    @pytest.mark.parametrize("raw", ["", "  ", "+", "bogus:thing"])
    def test_invalid(self, raw):
        with pytest.raises(SelectionError):
            parse_selector(raw)


class TestSelectModels:

    def test_empty_selection_is_everything(self, diamond_graph):
        assert select_models(diamond_graph, RunSelection()) == {"stg_a", "stg_b", "fct", "rpt"}

    def test_ancestors_included_by_default(self, diamond_graph):
        assert select_models(diamond_graph, RunSelection(select=["fct"])) == {"stg_a", "stg_b", "fct"}

    def test_without_ancestors(self, diamond_graph):
        selection = RunSelection(select=["fct"], include_ancestors=False)
        assert select_models(diamond_graph, selection) == {"fct"}

    def test_descendant_operator(self, diamond_graph):
        selection = RunSelection(select=["stg_a+"], include_ancestors=False)
        assert select_models(diamond_graph, selection) == {"stg_a", "fct", "rpt"}

    def test_tag_and_namespace(self, diamond_graph):
        by_tag = RunSelection(select=["tag:nightly"], include_ancestors=False)
        assert select_models(diamond_graph, by_tag) == {"stg_a", "fct"}

        by_namespace = RunSelection(select=["namespace:marts"], include_ancestors=False)
        assert select_models(diamond_graph, by_namespace) == {"fct", "rpt"}

        # Prefix matches whole namespace parts only
        partial = RunSelection(select=["namespace:mart"], include_ancestors=False)
        with pytest.raises(SelectionError):
            select_models(diamond_graph, partial)

    def test_exclude(self, diamond_graph):
        selection = RunSelection(select=["rpt"], exclude=["stg_b"])
        assert select_models(diamond_graph, selection) == {"stg_a", "fct", "rpt"}

    def test_unknown_model(self, diamond_graph):
        with pytest.raises(SelectionError) as exc:
            select_models(diamond_graph, RunSelection(select=["fct_missing"]))
        assert exc.value.selector == "fct_missing"


class TestTopologicalScheduler:

    def test_plan_is_topological_with_name_ties(self, orders_project):
        graph = build_graph(orders_project.models, orders_project.sources)
        plan = TopologicalScheduler(graph).plan(RunSelection(select=["fct_orders"]))

        assert plan.order == ["stg_lineitem", "stg_orders", "fct_orders"]
        assert plan.explicit == {"fct_orders"}

    def test_plan_is_deterministic(self, diamond_graph):
        first = TopologicalScheduler(diamond_graph).plan().order
        for _ in range(5):
            assert TopologicalScheduler(diamond_graph).plan().order == first

    def test_every_dependency_precedes_its_consumer(self, diamond_graph):
        plan = TopologicalScheduler(diamond_graph).plan()
        for name in plan.order:
            for dep in plan.dependencies_in_plan(diamond_graph, name):
                assert plan.index(dep) < plan.index(name)

    def test_defer_existing_skips_ancestors_only(self, diamond_graph):
        selection = RunSelection(select=["rpt", "stg_b"], defer_existing=True)
        plan = TopologicalScheduler(diamond_graph).plan(selection, existing={"stg_a", "stg_b", "fct"})

        # stg_b was selected explicitly, so it is rebuilt even though it exists
        assert plan.skipped_existing == ["fct", "stg_a"]
        assert plan.order == ["stg_b", "rpt"]

    def test_existing_ignored_without_defer(self, diamond_graph):
        plan = TopologicalScheduler(diamond_graph).plan(RunSelection(select=["rpt"]), existing={"fct"})
        assert "fct" in plan.order
        assert plan.skipped_existing == []

    def test_levels(self, diamond_graph):
        plan = TopologicalScheduler(diamond_graph).plan()
        assert plan.levels(diamond_graph) == [["stg_a", "stg_b"], ["fct"], ["rpt"]]

    def test_descendants_in_plan(self, diamond_graph):
        plan = TopologicalScheduler(diamond_graph).plan()
        assert plan.descendants_in_plan(diamond_graph, "stg_b") == ["fct", "rpt"]
