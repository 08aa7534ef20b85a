# ============================================================================
# DOCS GENERATOR TESTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - Static docs artifact
# PURPOSE: Verify manifest contents and the rendered index page
# CREATED: 17 OCT 2026
# ============================================================================
"""
Docs Generator Tests

Run with:
    pytest tests/test_docs.py -v
"""

import json

import pytest

from core.config import DocsDefaults
from orchestrator.docs import DocsGenerator
from orchestrator.engine import MaterializationPlanner, build_graph
from services import ProjectService

from conftest import EXAMPLE_PROJECT


@pytest.fixture(scope="module")
def example_graph():
    project = ProjectService(str(EXAMPLE_PROJECT)).project
    graph = build_graph(project.models, project.sources, project.tests)
    return project, graph, MaterializationPlanner(project.config).plan(graph)


def test_manifest(example_graph):
    project, graph, plan = example_graph
    manifest = DocsGenerator().build_manifest(project.config.name, graph, plan)

    assert manifest["project"] == "tpch_analytics"
    assert set(manifest) >= {"models", "sources", "tests", "build_order", "levels", "version"}
    assert manifest["build_order"] == [
        "stg_tpch_line_items",
        "stg_tpch_orders",
        "int_order_items",
        "int_order_items_summary",
        "fct_orders",
    ]
    assert len(manifest["tests"]) == 13

    fct = manifest["models"]["fct_orders"]
    assert fct["materialized"] == "table"
    assert fct["relation"] == "marts.fct_orders"
    assert fct["depends_on"] == ["int_order_items_summary", "stg_tpch_orders"]
    assert "fct_orders_discount" in fct["tests"]

    assert manifest["models"]["int_order_items"]["materialized"] == "ephemeral"
    assert manifest["models"]["stg_tpch_orders"]["sources"] == ["tpch.orders"]


def test_generate_writes_both_files(example_graph, tmp_path):
    project, graph, plan = example_graph
    generator = DocsGenerator(DocsDefaults(output_dir=str(tmp_path / "unused")))

    target = generator.generate(project.config.name, graph, plan, output_dir=str(tmp_path / "site"))

    assert target == tmp_path / "site"
    manifest = json.loads((target / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["project"] == "tpch_analytics"

    index = (target / "index.md").read_text(encoding="utf-8")
    assert index.startswith("# tpch_analytics")
    assert "```mermaid" in index
    assert "n_stg_tpch_orders --> n_fct_orders" in index
    assert "n_tpch_orders --> n_stg_tpch_orders" in index
    assert "## Namespace: marts" in index
    assert "| order_key | Primary key of an order. |" in index
    assert not (tmp_path / "unused").exists()
