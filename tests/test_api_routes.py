# ============================================================================
# API ROUTES TESTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tests - HTTP trigger surface
# PURPOSE: Verify run triggers, run lookup, cancellation and project endpoints
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Routes Tests

A FastAPI app with the routers mounted over example_project and a seeded
in-memory DuckDB store.

Run with:
    pytest tests/test_api_routes.py -v
"""

import shutil

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import health_router, router, set_services
from infrastructure import DuckDBTargetStore
from orchestrator import RunRegistry
from services import ProjectService

from conftest import EXAMPLE_PROJECT, RecordingStore, make_defaults


def _app():
    app = FastAPI()
    app.include_router(health_router)
    app.include_router(router, prefix="/api/v1")
    return app


@pytest.fixture
def registry():
    return RunRegistry()


@pytest.fixture
def client(tmp_path, registry):
    store = DuckDBTargetStore(":memory:")
    store.load_seed_dir(EXAMPLE_PROJECT / "seeds")
    set_services(
        project_service=ProjectService(str(EXAMPLE_PROJECT)),
        store=store,
        registry=registry,
        defaults=make_defaults(tmp_path, threads=2),
    )
    with TestClient(_app()) as test_client:
        yield test_client
    set_services(None, None, None, None)
    store.close()


class TestRunTriggers:

    def test_build_and_lookup(self, client):
        response = client.post("/api/v1/runs/build", json={"run_id": "api-build-1"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["exit_code"] == 0
        assert body["plan"][-1] == "fct_orders"
        assert len(body["test_results"]) == 13

        lookup = client.get("/api/v1/runs/api-build-1")
        assert lookup.status_code == 200
        assert lookup.json()["status"] == "success"

    def test_build_selection_error(self, client):
        body = client.post("/api/v1/runs/build", json={"select": ["fct_nowhere"]}).json()
        assert body["status"] == "aborted"
        assert body["failure_reason"] == "selection_error"
        assert body["exit_code"] == 2

    def test_duplicate_run_id_conflicts(self, client):
        client.post("/api/v1/runs/build", json={"run_id": "same", "with_tests": False})
        response = client.post("/api/v1/runs/build", json={"run_id": "same"})
        assert response.status_code == 409
        assert "same" in response.json()["detail"]

    def test_test_run_defaults_to_no_ancestors(self, client):
        client.post("/api/v1/runs/build", json={"with_tests": False})
        body = client.post("/api/v1/runs/test", json={"select": ["stg_tpch_orders"]}).json()

        assert body["phase"] == "test"
        assert body["plan"] == ["stg_tpch_orders"]
        assert body["status"] == "success"
        assert {t["model"] for t in body["test_results"]} == {"stg_tpch_orders"}

    def test_docs_run(self, client, tmp_path):
        body = client.post("/api/v1/runs/docs", json={"output_dir": str(tmp_path / "site")}).json()
        assert body["status"] == "success"
        assert body["docs_path"] == str(tmp_path / "site")
        assert (tmp_path / "site" / "index.md").exists()

    def test_list_runs_newest_first(self, client):
        for run_id in ("first", "second"):
            client.post("/api/v1/runs/build", json={"run_id": run_id, "with_tests": False})

        body = client.get("/api/v1/runs", params={"limit": 10}).json()
        assert [r["run_id"] for r in body["runs"]] == ["second", "first"]
        assert body["total"] == 2

    def test_unknown_run(self, client):
        assert client.get("/api/v1/runs/nope").status_code == 404
        assert client.post("/api/v1/runs/nope/cancel").status_code == 404

    def test_cancel_finished_run(self, client):
        client.post("/api/v1/runs/build", json={"run_id": "done", "with_tests": False})
        response = client.post("/api/v1/runs/done/cancel")
        assert response.status_code == 400
        assert "success" in response.json()["detail"]

    def test_invalid_request(self, client):
        response = client.post("/api/v1/runs/build", json={"deadline_seconds": -1})
        assert response.status_code == 422


class TestProjectLoadFailure:

    def test_broken_project_aborts_runs(self, tmp_path, registry):
        set_services(
            project_service=ProjectService(str(tmp_path / "missing")),
            store=RecordingStore(),
            registry=registry,
            defaults=make_defaults(tmp_path),
        )
        try:
            client = TestClient(_app())
            body = client.post("/api/v1/runs/build", json={"run_id": "broken"}).json()
            assert body["status"] == "aborted"
            assert body["failure_reason"] == "configuration_error"
            assert "project.yml not found" in body["errors"][0]
            assert registry.get("broken") is not None

            assert client.get("/api/v1/models").status_code == 422
            assert client.get("/health").json()["status"] == "degraded"
        finally:
            set_services(None, None, None, None)


class TestProjectEndpoints:

    def test_models(self, client):
        body = client.get("/api/v1/models").json()
        assert body["total"] == 5
        models = {m["name"]: m for m in body["models"]}
        assert models["int_order_items"]["materialized"] == "ephemeral"
        assert models["fct_orders"]["relation"] == "marts.fct_orders"
        assert models["stg_tpch_orders"]["dependents"] == ["fct_orders", "int_order_items"]

    def test_models_with_selection(self, client):
        body = client.get("/api/v1/models", params={"select": "tag:finance"}).json()
        assert [m["name"] for m in body["models"]] == ["fct_orders"]
        assert client.get("/api/v1/models", params={"select": "nope"}).status_code == 400

    def test_plan(self, client):
        body = client.get("/api/v1/plan", params={"select": "int_order_items_summary"}).json()
        assert body["order"] == [
            "stg_tpch_line_items",
            "stg_tpch_orders",
            "int_order_items",
            "int_order_items_summary",
        ]
        assert body["levels"] == [
            ["stg_tpch_line_items", "stg_tpch_orders"],
            ["int_order_items"],
            ["int_order_items_summary"],
        ]

    def test_plan_exclude(self, client):
        body = client.get("/api/v1/plan", params={"select": "fct_orders", "exclude": "int_order_items"}).json()
        assert "int_order_items" not in body["order"]

    def test_reload(self, client):
        response = client.post("/api/v1/project/reload")
        assert response.status_code == 200
        assert response.json()["total"] == 5

    def test_reload_picks_up_new_model(self, tmp_path, registry):
        project_dir = tmp_path / "project"
        shutil.copytree(EXAMPLE_PROJECT, project_dir)
        set_services(
            project_service=ProjectService(str(project_dir)),
            store=RecordingStore(),
            registry=registry,
            defaults=make_defaults(tmp_path),
        )
        try:
            with TestClient(_app()) as client:
                assert client.get("/api/v1/models").json()["total"] == 5

                (project_dir / "models" / "marts" / "fct_order_count.sql").write_text(
                    "select count(*) as orders from {{ ref('fct_orders') }}\n"
                )
                body = client.post("/api/v1/project/reload").json()
        finally:
            set_services(None, None, None, None)

        assert body["total"] == 6
        added = next(m for m in body["models"] if m["name"] == "fct_order_count")
        assert added["depends_on"] == ["fct_orders"]

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["project"] == "tpch_analytics"
        assert body["models"] == 5
        assert body["store"] == "DuckDBTargetStore"
        assert body["active_runs"] == 0
