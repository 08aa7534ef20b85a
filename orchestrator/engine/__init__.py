# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Engine components
# PURPOSE: Graph building, planning, scheduling, compilation, test gates
# CREATED: 08 OCT 2026
# ============================================================================
"""
Orchestrator Engine Components

- references: ref()/source() extraction (pluggable)
- graph: dependency graph construction, cycle detection
- planner: materialization resolution from scoped config
- selection / scheduler: selectors and deterministic build plans
- compiler: Jinja2 rendering with ephemeral CTE inlining
- gates: generic/singular test queries and severity policy
"""

from orchestrator.engine.references import (
    ReferenceExtractor,
    JinjaReferenceExtractor,
    get_reference_extractor,
)
from orchestrator.engine.graph import (
    ModelGraph,
    TopologicalSorter,
    ModelGraphBuilder,
    build_graph,
)
from orchestrator.engine.planner import (
    MaterializationPlan,
    MaterializationPlanner,
)
from orchestrator.engine.selection import (
    Selector,
    parse_selector,
    resolve_selectors,
    select_models,
)
from orchestrator.engine.scheduler import (
    BuildPlan,
    TopologicalScheduler,
)
from orchestrator.engine.compiler import (
    CTE_PREFIX,
    CompiledModel,
    ModelCompiler,
)
from orchestrator.engine.gates import (
    TestGateRunner,
    classify,
    gate_failed,
    get_generic_test,
    list_generic_tests,
    register_generic_test,
)

__all__ = [
    # References
    "ReferenceExtractor",
    "JinjaReferenceExtractor",
    "get_reference_extractor",
    # Graph
    "ModelGraph",
    "TopologicalSorter",
    "ModelGraphBuilder",
    "build_graph",
    # Planner
    "MaterializationPlan",
    "MaterializationPlanner",
    # Selection / scheduling
    "Selector",
    "parse_selector",
    "resolve_selectors",
    "select_models",
    "BuildPlan",
    "TopologicalScheduler",
    # Compiler
    "CTE_PREFIX",
    "CompiledModel",
    "ModelCompiler",
    # Test gates
    "TestGateRunner",
    "classify",
    "gate_failed",
    "get_generic_test",
    "list_generic_tests",
    "register_generic_test",
]
