# ============================================================================
# PROJECT SERVICE TESTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - Loading projects from disk
# PURPOSE: Verify model/schema/test/macro discovery and config precedence
# CREATED: 17 OCT 2026
# ============================================================================
"""
Project Service Tests

Uses the bundled example_project plus small projects written to tmp_path.

Run with:
    pytest tests/test_project_service.py -v
"""

import textwrap

import pytest

from core.contracts import MaterializationKind, TestKind, TestSeverity
from core.errors import ProjectLoadError
from orchestrator.engine import MaterializationPlanner, build_graph
from services import ProjectService, parse_config_call

from conftest import EXAMPLE_PROJECT


def _write(root, relative, content):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
    return path


@pytest.fixture(scope="module")
def example():
    return ProjectService(str(EXAMPLE_PROJECT)).project


class TestExampleProject:

    def test_counts(self, example):
        assert example.config.name == "tpch_analytics"
        assert example.names() == [
            "fct_orders",
            "int_order_items",
            "int_order_items_summary",
            "stg_tpch_line_items",
            "stg_tpch_orders",
        ]
        assert len(example.sources) == 2
        assert sorted(t.name for t in example.tests) == ["fct_orders_date_valid", "fct_orders_discount"]
        assert len(example.macros) == 1

    def test_namespaces_from_directories(self, example):
        namespaces = {m.name: m.namespace for m in example.models}
        assert namespaces["stg_tpch_orders"] == "staging"
        assert namespaces["int_order_items"] == "intermediate"
        assert namespaces["fct_orders"] == "marts"

    def test_tags_from_namespace_config(self, example):
        tags = {m.name: m.tags for m in example.models}
        assert tags["stg_tpch_orders"] == ["staging"]
        assert tags["fct_orders"] == ["finance"]

    def test_generic_tests_attached_to_models(self, example):
        models = {m.name: m for m in example.models}
        names = {t.name for t in models["stg_tpch_orders"].tests}
        assert names == {
            "unique_stg_tpch_orders_order_key",
            "not_null_stg_tpch_orders_order_key",
            "accepted_values_stg_tpch_orders_status_code",
        }

        relationship = next(
            t for t in models["stg_tpch_line_items"].tests if t.kind == TestKind.RELATIONSHIPS
        )
        assert relationship.to == "stg_tpch_orders"
        assert relationship.field == "order_key"
        assert relationship.depends_on == ["stg_tpch_line_items", "stg_tpch_orders"]

        warn = next(t for t in models["fct_orders"].tests if t.column == "item_discount_amount")
        assert warn.severity == TestSeverity.WARN

    def test_singular_tests(self, example):
        tests = {t.name: t for t in example.tests}
        assert tests["fct_orders_discount"].depends_on == ["fct_orders"]
        assert tests["fct_orders_discount"].severity == TestSeverity.ERROR
        assert tests["fct_orders_date_valid"].severity == TestSeverity.WARN

    def test_materializations_resolve(self, example):
        graph = build_graph(example.models, example.sources, example.tests)
        plan = MaterializationPlanner(example.config).plan(graph)

        assert plan.kind("stg_tpch_orders") == MaterializationKind.VIEW
        assert plan.kind("int_order_items") == MaterializationKind.EPHEMERAL
        # Inline config() beats the namespace default
        assert plan.kind("int_order_items_summary") == MaterializationKind.TABLE
        assert plan.relation("fct_orders") == "marts.fct_orders"
        assert plan.relation("stg_tpch_orders") == "staging.stg_tpch_orders"

    def test_reload_rereads(self):
        service = ProjectService(str(EXAMPLE_PROJECT))
        first = service.project
        assert service.project is first
        assert service.reload() is not first


class TestConfigPrecedence:

    def test_inline_config_beats_schema_file(self, tmp_path):
        _write(tmp_path, "project.yml", """
            name: precedence
            models:
              +materialized: view
        """)
        _write(tmp_path, "models/a.sql", """
            {{ config(materialized='table', tags=['hourly']) }}
            select 1 as id
        """)
        _write(tmp_path, "models/b.sql", "select 2 as id\n")
        _write(tmp_path, "models/schema.yml", """
            models:
              - name: a
                config:
                  materialized: incremental
              - name: b
                description: Second model
                config:
                  materialized: table
                columns:
                  - name: id
                    tests:
                      - unique
                      - not_null:
                          config:
                            severity: warn
        """)

        project = ProjectService(str(tmp_path)).project
        models = {m.name: m for m in project.models}

        assert models["a"].materialized == MaterializationKind.TABLE
        assert models["a"].tags == ["hourly"]
        assert models["b"].materialized == MaterializationKind.TABLE
        assert models["b"].description == "Second model"
        assert [t.severity for t in models["b"].tests] == [TestSeverity.ERROR, TestSeverity.WARN]


class TestLoadErrors:

    def test_missing_project_file(self, tmp_path):
        with pytest.raises(ProjectLoadError, match="project.yml not found"):
            ProjectService(str(tmp_path)).load()

    def test_invalid_yaml(self, tmp_path):
        _write(tmp_path, "project.yml", "name: [unclosed\n")
        with pytest.raises(ProjectLoadError, match="Invalid YAML"):
            ProjectService(str(tmp_path)).load()

    def test_duplicate_model_names(self, tmp_path):
        _write(tmp_path, "project.yml", "name: dupes\n")
        _write(tmp_path, "models/staging/orders.sql", "select 1\n")
        _write(tmp_path, "models/marts/orders.sql", "select 2\n")

        with pytest.raises(ProjectLoadError, match="Duplicate model name: orders"):
            ProjectService(str(tmp_path)).load()

    def test_unknown_test_kind(self, tmp_path):
        _write(tmp_path, "project.yml", "name: p\n")
        _write(tmp_path, "models/a.sql", "select 1 as id\n")
        _write(tmp_path, "models/schema.yml", """
            models:
              - name: a
                columns:
                  - name: id
                    tests: [is_positive]
        """)

        with pytest.raises(ProjectLoadError) as exc:
            ProjectService(str(tmp_path)).load()
        assert "is_positive" in str(exc.value)
        assert exc.value.path.endswith("schema.yml")

    def test_invalid_model_name(self, tmp_path):
        _write(tmp_path, "project.yml", "name: p\n")
        _write(tmp_path, "models/bad-name.sql", "select 1\n")

        with pytest.raises(ProjectLoadError, match="Invalid model bad-name"):
            ProjectService(str(tmp_path)).load()


class TestParseConfigCall:

    def test_literals(self):
        sql = "{{ config(materialized='table', tags=['a', 'b'], enabled=True) }}\nselect 1"
        assert parse_config_call(sql) == {"materialized": "table", "tags": ["a", "b"], "enabled": True}

    def test_no_config(self):
        assert parse_config_call("select 1") == {}

    @pytest.mark.parametrize("sql", [
        "{{ config('table') }}",
        "{{ config(materialized=some_variable) }}",
    ])
    def test_rejects_non_literal_arguments(self, sql):
        with pytest.raises(ProjectLoadError, match="Invalid config"):
            parse_config_call(sql, path="models/a.sql")
