# ============================================================================
# TOPOLOGICAL SCHEDULER
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Build ordering
# PURPOSE: Produce a deterministic Build Plan for a selection
# CREATED: 09 OCT 2026
# ============================================================================
"""
Topological Scheduler

Orders model builds so every producer precedes its consumers.

- Kahn's algorithm with a name-keyed heap: equal-priority models are ordered
  by name so runs are reproducible
- The plan for a selection is the full-graph order restricted to the
  selected models, so selecting M with ancestors yields exactly the full
  plan filtered to {M} + ancestors(M), order preserved
- Residual cycles in the selected subgraph are re-checked even though the
  graph builder already rejects cycles
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from core.models import RunSelection
from orchestrator.engine.graph import ModelGraph, TopologicalSorter
from orchestrator.engine.selection import explicit_matches, select_models

logger = logging.getLogger(__name__)


@dataclass
class BuildPlan:
    """Ordered models to build for one run."""
    order: List[str] = field(default_factory=list)

    # Matched directly by a selector (not pulled in as ancestor/descendant)
    explicit: Set[str] = field(default_factory=set)

    # Ancestors already present in the store and deferred instead of rebuilt
    skipped_existing: List[str] = field(default_factory=list)

    def __iter__(self) -> Iterator[str]:
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, name: object) -> bool:
        return name in self.order

    def index(self, name: str) -> int:
        return self.order.index(name)

    def dependencies_in_plan(self, graph: ModelGraph, name: str) -> List[str]:
        """Producers of name that are also part of this plan."""
        members = set(self.order)
        return [dep for dep in graph.get_dependencies(name) if dep in members]

    def descendants_in_plan(self, graph: ModelGraph, name: str) -> List[str]:
        """Transitive consumers of name that are part of this plan, plan order."""
        downstream = graph.descendants(name)
        return [n for n in self.order if n in downstream]

    def levels(self, graph: ModelGraph) -> List[List[str]]:
        """
        Group the plan into dependency waves.

        Every model in wave N depends only on models in waves < N, so a wave
        can run fully in parallel.
        """
        depth: Dict[str, int] = {}
        for name in self.order:
            deps = self.dependencies_in_plan(graph, name)
            depth[name] = 1 + max((depth[d] for d in deps), default=-1)

        waves: List[List[str]] = []
        for name in self.order:
            while len(waves) <= depth[name]:
                waves.append([])
            waves[depth[name]].append(name)
        return waves


class TopologicalScheduler:
    """Builds deterministic plans over a validated graph."""

    def __init__(self, graph: ModelGraph):
        self.graph = graph
        self.topo_sorter = TopologicalSorter()
        self._full_order: Optional[List[str]] = None

    @property
    def full_order(self) -> List[str]:
        if self._full_order is None:
            self._full_order = self.topo_sorter.sort(self.graph)
        return self._full_order

    def plan(
        self,
        selection: Optional[RunSelection] = None,
        existing: Optional[Set[str]] = None,
    ) -> BuildPlan:
        """
        Produce a Build Plan for a selection.

        Args:
            selection: Models to run (default: all)
            existing: Names already materialized in the store; used when
                      selection.defer_existing is set

        Returns:
            BuildPlan

        Raises:
            SelectionError: unknown model / empty selector match
            CycleDetectedError: residual cycle in the selected subgraph
        """
        selection = selection or RunSelection()
        selected = select_models(self.graph, selection)
        explicit = (
            set(self.graph.models) if selection.is_all
            else explicit_matches(self.graph, selection.select)
        ) & selected

        skipped: List[str] = []
        if selection.defer_existing and existing:
            for name in sorted(selected - explicit):
                if name in existing:
                    skipped.append(name)
            selected -= set(skipped)

        # Defensive residual-cycle check on the selected subgraph
        self.topo_sorter.sort(self.graph, selected)

        order = [name for name in self.full_order if name in selected]
        logger.info(
            f"Build plan: {len(order)} models"
            + (f", {len(skipped)} deferred to existing objects" if skipped else "")
        )
        return BuildPlan(order=order, explicit=explicit, skipped_existing=skipped)


__all__ = [
    "BuildPlan",
    "TopologicalScheduler",
]
