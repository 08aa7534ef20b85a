# ============================================================================
# MODEL GRAPH BUILDER
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Dependency graph construction and validation
# PURPOSE: Turn model definitions into a validated DAG
# CREATED: 08 OCT 2026
# ============================================================================
"""
Model Graph Builder

Parses model definitions and their references into a directed acyclic
dependency graph.

Features:
- Dependency edges from ref() markers (plus explicitly declared refs)
- Source resolution for source() markers
- Unresolved reference detection (all offenders reported at once)
- Cycle detection (Kahn's algorithm)
- Ancestor / descendant traversal for selection

The builder is a pure function from definitions to graph or error; nothing
is executed and no store is touched.
"""

import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from core.errors import (
    CycleDetectedError,
    DuplicateModelError,
    DuplicateTestError,
    UnresolvedReferenceError,
)
from core.models import ModelDefinition, SourceDefinition, TestSpec
from orchestrator.engine.references import ReferenceExtractor, get_reference_extractor

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class ModelGraph:
    """
    Dependency graph for a project.

    Edges point from producer to consumer:
    A -> B means "B references A" (A must be built before B).
    """
    models: Dict[str, ModelDefinition] = field(default_factory=dict)
    sources: Dict[str, SourceDefinition] = field(default_factory=dict)

    # Producer -> consumers
    forward_edges: Dict[str, Set[str]] = field(default_factory=lambda: defaultdict(set))

    # Consumer -> producers
    backward_edges: Dict[str, Set[str]] = field(default_factory=lambda: defaultdict(set))

    # Model -> source keys ("tpch.orders")
    source_refs: Dict[str, List[str]] = field(default_factory=dict)

    # Singular tests and other project-level tests not owned by a model file
    tests: List[TestSpec] = field(default_factory=list)

    @property
    def nodes(self) -> Set[str]:
        return set(self.models)

    def add_edge(self, producer: str, consumer: str) -> None:
        """Add a dependency edge: consumer depends on producer."""
        self.forward_edges[producer].add(consumer)
        self.backward_edges[consumer].add(producer)

    def get_dependencies(self, name: str) -> List[str]:
        """Direct producers of a model, sorted by name."""
        return sorted(self.backward_edges.get(name, ()))

    def get_dependents(self, name: str) -> List[str]:
        """Direct consumers of a model, sorted by name."""
        return sorted(self.forward_edges.get(name, ()))

    def ancestors(self, name: str) -> Set[str]:
        """All transitive producers of a model (excluding itself)."""
        return self._walk(name, self.backward_edges)

    def descendants(self, name: str) -> Set[str]:
        """All transitive consumers of a model (excluding itself)."""
        return self._walk(name, self.forward_edges)

    def _walk(self, start: str, edges: Dict[str, Set[str]]) -> Set[str]:
        seen: Set[str] = set()
        stack = list(edges.get(start, ()))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(edges.get(node, ()))
        return seen

    def tests_for(self, names: Iterable[str]) -> List[TestSpec]:
        """
        Tests attached to any of the given models.

        Model-level tests belong to their model; project-level tests are
        included when any model they read is in the set. Tests that read
        no model (only sources) are included when the set covers the whole
        project. Ordered by name.
        """
        wanted = set(names)
        whole_project = wanted.issuperset(self.models)
        selected: Dict[str, TestSpec] = {}
        for model_name in sorted(wanted):
            model = self.models.get(model_name)
            if model is None:
                continue
            for test in model.tests:
                selected[test.name] = test
        for test in self.tests:
            if wanted.intersection(test.depends_on) or (whole_project and not test.depends_on):
                selected[test.name] = test
        return [selected[name] for name in sorted(selected)]

    def all_tests(self) -> List[TestSpec]:
        return self.tests_for(self.models)

    def topological_order(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        """
        Topological order of the (sub)graph, ties broken by name.

        Raises:
            CycleDetectedError: if the subgraph contains a cycle
        """
        sorter = TopologicalSorter()
        return sorter.sort(self, subset)


# ============================================================================
# TOPOLOGICAL SORT / CYCLE DETECTION
# ============================================================================

class TopologicalSorter:
    """Validates DAG structure and provides a deterministic topological ordering."""

    def validate(self, graph: ModelGraph) -> Tuple[bool, List[str], Optional[List[str]]]:
        """
        Validate that graph is a DAG (no cycles).

        Args:
            graph: Model graph

        Returns:
            Tuple of (is_valid, sorted_nodes, models_left_on_cycles)
        """
        sorted_nodes, remaining = self._kahn(graph, graph.nodes)
        if remaining:
            return False, sorted_nodes, remaining
        return True, sorted_nodes, None

    def sort(self, graph: ModelGraph, subset: Optional[Iterable[str]] = None) -> List[str]:
        """
        Sort the subgraph induced by subset (default: whole graph).

        Raises:
            CycleDetectedError: residual cycle in the subgraph
        """
        nodes = set(graph.nodes if subset is None else subset)
        sorted_nodes, remaining = self._kahn(graph, nodes)
        if remaining:
            raise CycleDetectedError(remaining)
        return sorted_nodes

    def _kahn(self, graph: ModelGraph, nodes: Set[str]) -> Tuple[List[str], List[str]]:
        in_degree = {node: 0 for node in nodes}

        for node in nodes:
            for dep in graph.backward_edges.get(node, ()):
                if dep in in_degree:
                    in_degree[node] += 1

        # Min-heap keyed by name keeps equal-priority models in name order
        ready = [node for node, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        sorted_nodes = []

        while ready:
            node = heapq.heappop(ready)
            sorted_nodes.append(node)

            for dependent in graph.forward_edges.get(node, ()):
                if dependent not in in_degree:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        remaining = sorted(n for n in nodes if in_degree[n] > 0)
        return sorted_nodes, self._cycle_members(graph, set(remaining))

    def _cycle_members(self, graph: ModelGraph, remaining: Set[str]) -> List[str]:
        """Drop models that are only downstream of a cycle, keeping cycle members."""
        pruned = True
        while pruned:
            pruned = False
            for node in sorted(remaining):
                consumers = graph.forward_edges.get(node, set()) & remaining
                if not consumers:
                    remaining.discard(node)
                    pruned = True
        return sorted(remaining)


# ============================================================================
# GRAPH BUILDER
# ============================================================================

class ModelGraphBuilder:
    """Builds and validates the model dependency graph."""

    def __init__(self, extractor: Optional[ReferenceExtractor] = None):
        self.extractor = extractor or get_reference_extractor()
        self.topo_sorter = TopologicalSorter()

    def build(
        self,
        models: Iterable[ModelDefinition],
        sources: Iterable[SourceDefinition] = (),
        tests: Iterable[TestSpec] = (),
    ) -> ModelGraph:
        """
        Build dependency graph from model definitions.

        Args:
            models: Model definitions
            sources: Declared raw sources
            tests: Project-level tests (singular tests)

        Returns:
            ModelGraph instance

        Raises:
            DuplicateModelError: two models share a name
            UnresolvedReferenceError: a ref/source/test target does not exist
            CycleDetectedError: references form a cycle
        """
        graph = ModelGraph()

        for model in models:
            if model.name in graph.models:
                existing = graph.models[model.name]
                raise DuplicateModelError(
                    model.name, [p for p in (existing.path, model.path) if p]
                )
            graph.models[model.name] = model

        for source in sources:
            graph.sources[source.key] = source

        graph.tests = list(tests)

        unresolved: List[Tuple[str, str]] = []

        for name in sorted(graph.models):
            model = graph.models[name]

            refs = self.extractor.extract_refs(model.sql)
            for declared in model.refs:
                if declared not in refs:
                    refs.append(declared)

            for ref in refs:
                if ref not in graph.models:
                    unresolved.append((name, ref))
                    continue
                graph.add_edge(ref, name)

            source_keys = []
            for source_name, table_name in self.extractor.extract_sources(model.sql):
                key = f"{source_name}.{table_name}"
                if key not in graph.sources:
                    unresolved.append((name, f"source:{key}"))
                    continue
                source_keys.append(key)
            graph.source_refs[name] = source_keys

            for test in model.tests:
                unresolved.extend(self._unresolved_test_targets(test, graph, owner=name))

        for test in graph.tests:
            unresolved.extend(self._unresolved_test_targets(test, graph, owner=test.name))
            for source_name, table_name in self.extractor.extract_sources(test.sql or ""):
                key = f"{source_name}.{table_name}"
                if key not in graph.sources:
                    unresolved.append((test.name, f"source:{key}"))

        self._check_test_names(graph)

        if unresolved:
            error = UnresolvedReferenceError(unresolved)
            logger.error(str(error))
            raise error

        is_valid, _, remaining = self.topo_sorter.validate(graph)
        if not is_valid:
            error = CycleDetectedError(remaining)
            logger.error(str(error))
            raise error

        logger.info(
            f"Built model graph: {len(graph.models)} models, "
            f"{sum(len(v) for v in graph.forward_edges.values())} edges, "
            f"{len(graph.sources)} sources"
        )
        return graph

    def _unresolved_test_targets(
        self,
        test: TestSpec,
        graph: ModelGraph,
        owner: str,
    ) -> List[Tuple[str, str]]:
        return [(owner, target) for target in test.depends_on if target not in graph.models]

    def _check_test_names(self, graph: ModelGraph) -> None:
        """Test names key results and selection; two tests may not share one."""
        owners: Dict[str, str] = {}
        for name in sorted(graph.models):
            for test in graph.models[name].tests:
                self._claim_test_name(owners, test, owner=name)
        for test in graph.tests:
            self._claim_test_name(owners, test, owner=test.path or test.name)

    def _claim_test_name(self, owners: Dict[str, str], test: TestSpec, owner: str) -> None:
        if test.name in owners:
            error = DuplicateTestError(test.name, [owners[test.name], owner])
            logger.error(str(error))
            raise error
        owners[test.name] = owner


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def build_graph(
    models: Iterable[ModelDefinition],
    sources: Iterable[SourceDefinition] = (),
    tests: Iterable[TestSpec] = (),
    extractor: Optional[ReferenceExtractor] = None,
) -> ModelGraph:
    """Convenience function to build a validated graph."""
    return ModelGraphBuilder(extractor).build(models, sources, tests)


__all__ = [
    "ModelGraph",
    "TopologicalSorter",
    "ModelGraphBuilder",
    "build_graph",
]
