# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP trigger endpoints for build, test and docs runs
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Routes

HTTP trigger surface for the orchestrator. Run endpoints always answer
with the Run Record (plus exit_code): a run that fails or aborts is still a
successful HTTP exchange, the record says what happened.
"""

import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, HTTPException, Query

from __version__ import __version__
from core.contracts import RunPhase
from core.errors import ConfigurationError, ProjectLoadError, SelectionError
from core.models import RunRecord, RunSelection, generate_run_id
from orchestrator import RunCoordinator, aborted_record
from orchestrator.engine import MaterializationPlanner, ModelGraphBuilder
from .schemas import (
    DocsRequest,
    ErrorResponse,
    HealthResponse,
    ModelListResponse,
    ModelResponse,
    PlanResponse,
    RunListResponse,
    RunRequest,
    RunResponse,
    RunSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_project_service = None
_store = None
_registry = None
_defaults = None

# Background runs (wait=false) are kept referenced until they finish
_background: Set[asyncio.Task] = set()


def set_services(project_service, store, registry, defaults):
    """Set service instances for dependency injection."""
    global _project_service, _store, _registry, _defaults
    _project_service = project_service
    _store = store
    _registry = registry
    _defaults = defaults


def get_registry():
    if _registry is None:
        raise HTTPException(500, "Services not initialized")
    return _registry


def get_coordinator() -> RunCoordinator:
    """
    Coordinator over the currently loaded project.

    Raises:
        ProjectLoadError: project files are invalid
    """
    if _project_service is None or _store is None:
        raise HTTPException(500, "Services not initialized")
    return RunCoordinator(_project_service.project, _store, _defaults, get_registry())


def _check_run_id(run_id: Optional[str]) -> None:
    if run_id and run_id in get_registry():
        raise HTTPException(409, f"Run id already in use: {run_id}")


def _load_failed(phase: RunPhase, error: Exception, selection=None, run_id=None) -> RunResponse:
    record = aborted_record(phase, str(error), selection=selection, run_id=run_id)
    get_registry().register(record)
    logger.error(f"Project load failed for {phase.value} run {record.run_id}: {error}")
    return RunResponse.from_record(record)


async def _start(coordinator_call, run_id: str, wait: bool) -> RunResponse:
    if wait:
        record = await coordinator_call
        return RunResponse.from_record(record)

    task = asyncio.create_task(coordinator_call)
    _background.add(task)
    task.add_done_callback(_background.discard)

    # Let the run register its record before answering
    await asyncio.sleep(0)
    record = get_registry().get(run_id)
    if record is None:
        raise HTTPException(500, f"Run {run_id} did not start")
    return RunResponse.from_record(record)


# ============================================================================
# RUNS
# ============================================================================

@router.post(
    "/runs/build",
    response_model=RunResponse,
    tags=["Runs"],
    responses={409: {"model": ErrorResponse, "description": "Run id already in use"}},
)
async def trigger_build(request: RunRequest):
    """
    Build the selected models (ancestors included unless disabled).
    """
    _check_run_id(request.run_id)
    run_id = request.run_id or generate_run_id()
    selection = request.to_selection(default_ancestors=True)

    try:
        coordinator = get_coordinator()
    except ProjectLoadError as e:
        return _load_failed(RunPhase.BUILD, e, selection, run_id)

    call = coordinator.build(
        selection,
        run_id=run_id,
        deadline_seconds=request.deadline_seconds,
        with_tests=request.with_tests,
    )
    return await _start(call, run_id, request.wait)


@router.post(
    "/runs/test",
    response_model=RunResponse,
    tags=["Runs"],
    responses={409: {"model": ErrorResponse, "description": "Run id already in use"}},
)
async def trigger_test(request: RunRequest):
    """
    Run tests of the selected models against the objects already built.
    """
    _check_run_id(request.run_id)
    run_id = request.run_id or generate_run_id()
    selection = request.to_selection(default_ancestors=False)

    try:
        coordinator = get_coordinator()
    except ProjectLoadError as e:
        return _load_failed(RunPhase.TEST, e, selection, run_id)

    call = coordinator.test(selection, run_id=run_id, deadline_seconds=request.deadline_seconds)
    return await _start(call, run_id, request.wait)


@router.post(
    "/runs/docs",
    response_model=RunResponse,
    tags=["Runs"],
    responses={409: {"model": ErrorResponse, "description": "Run id already in use"}},
)
async def trigger_docs(request: Optional[DocsRequest] = None):
    """
    Write the static docs artifact (manifest.json + index.md).
    """
    request = request or DocsRequest()
    _check_run_id(request.run_id)

    try:
        coordinator = get_coordinator()
    except ProjectLoadError as e:
        return _load_failed(RunPhase.DOCS, e, run_id=request.run_id)

    record = await asyncio.to_thread(coordinator.generate_docs, request.output_dir, request.run_id)
    return RunResponse.from_record(record)


@router.get("/runs", response_model=RunListResponse, tags=["Runs"])
async def list_runs(limit: int = Query(50, ge=1, le=500)):
    """
    List recent runs, most recent first.
    """
    records = get_registry().list(limit)
    return RunListResponse(
        runs=[
            RunSummary(
                run_id=r.run_id,
                phase=r.phase,
                status=r.status,
                exit_code=r.exit_code,
                failure_reason=r.failure_reason,
                created_at=r.created_at,
                finalized_at=r.finalized_at,
            )
            for r in records
        ],
        total=len(records),
    )


@router.get(
    "/runs/{run_id}",
    response_model=RunResponse,
    tags=["Runs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str):
    """
    Get a run record.
    """
    record: Optional[RunRecord] = get_registry().get(run_id)
    if record is None:
        raise HTTPException(404, f"Run not found: {run_id}")
    return RunResponse.from_record(record)


@router.post(
    "/runs/{run_id}/cancel",
    response_model=RunResponse,
    tags=["Runs"],
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def cancel_run(run_id: str):
    """
    Request cooperative cancellation of an active run.
    """
    registry = get_registry()
    record = registry.get(run_id)
    if record is None:
        raise HTTPException(404, f"Run not found: {run_id}")
    if not registry.cancel(run_id):
        raise HTTPException(400, f"Cannot cancel run in status: {record.status.value}")
    return RunResponse.from_record(record)


# ============================================================================
# PROJECT
# ============================================================================

@router.get("/models", response_model=ModelListResponse, tags=["Project"])
async def list_models(select: Optional[str] = Query(None, description="Comma-separated selectors")):
    """
    List models with their resolved materialization and dependencies.
    """
    return _model_listing(select)


def _model_listing(select: Optional[str] = None) -> ModelListResponse:
    """Shared by the listing and reload routes."""
    try:
        coordinator = get_coordinator()
        project = coordinator.project
        graph = ModelGraphBuilder().build(project.models, project.sources, project.tests)
        plan = MaterializationPlanner(project.config, coordinator.defaults.build).plan(graph)
        names = sorted(graph.models)
        if select:
            names = coordinator.preview_plan(_selection(select, include_ancestors=False)).order
    except SelectionError as e:
        raise HTTPException(400, str(e))
    except ConfigurationError as e:
        raise HTTPException(422, str(e))

    models = []
    for name in names:
        model = graph.models[name]
        models.append(ModelResponse(
            name=name,
            namespace=model.namespace,
            materialized=plan.kind(name).value,
            relation=plan.relation(name),
            tags=model.tags,
            description=model.description,
            depends_on=graph.get_dependencies(name),
            dependents=graph.get_dependents(name),
            tests=[test.name for test in graph.tests_for([name])],
        ))
    return ModelListResponse(models=models, total=len(models))


@router.get("/plan", response_model=PlanResponse, tags=["Project"])
async def preview_plan(
    select: Optional[str] = Query(None, description="Comma-separated selectors"),
    exclude: Optional[str] = Query(None, description="Comma-separated selectors"),
):
    """
    Preview the build order for a selection without executing anything.
    """
    selection = _selection(select, exclude=exclude)
    try:
        coordinator = get_coordinator()
        plan = coordinator.preview_plan(selection)
        graph = ModelGraphBuilder().build(
            coordinator.project.models, coordinator.project.sources, coordinator.project.tests
        )
    except SelectionError as e:
        raise HTTPException(400, str(e))
    except ConfigurationError as e:
        raise HTTPException(422, str(e))

    return PlanResponse(
        select=selection.select,
        order=plan.order,
        levels=plan.levels(graph),
        skipped_existing=plan.skipped_existing,
    )


@router.post("/project/reload", response_model=ModelListResponse, tags=["Project"])
async def reload_project():
    """
    Re-read the project directory.
    """
    if _project_service is None:
        raise HTTPException(500, "Services not initialized")
    try:
        _project_service.reload()
    except ProjectLoadError as e:
        raise HTTPException(422, str(e))
    return _model_listing()


def _selection(
    select: Optional[str],
    exclude: Optional[str] = None,
    include_ancestors: bool = True,
) -> RunSelection:
    def split(value: Optional[str]):
        return [part.strip() for part in (value or "").split(",") if part.strip()]

    return RunSelection(select=split(select), exclude=split(exclude), include_ancestors=include_ancestors)


# ============================================================================
# HEALTH
# ============================================================================

health_router = APIRouter()


@health_router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health():
    """
    Liveness plus a summary of what is loaded.
    """
    registry = _registry
    active = 0
    if registry is not None:
        active = sum(1 for record in registry.list(registry.max_runs) if not record.is_finalized)

    project_name = None
    model_count = 0
    status = "healthy"
    if _project_service is not None:
        try:
            project = _project_service.project
            project_name = project.config.name
            model_count = len(project.models)
        except ProjectLoadError as e:
            logger.warning(f"Health check: project failed to load: {e}")
            status = "degraded"

    return HealthResponse(
        status=status,
        version=__version__,
        project=project_name,
        models=model_count,
        store=type(_store).__name__ if _store is not None else None,
        active_runs=active,
    )
