# ============================================================================
# MATERIALIZATION PLANNER
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Build strategy resolution
# PURPOSE: Assign ephemeral/view/table and a schema to every model
# CREATED: 09 OCT 2026
# ============================================================================
"""
Materialization Planner

Resolution order for each model, most specific first:
1. Model-level explicit setting ({{ config(materialized=...) }} or schema YAML)
2. Namespace default from project.yml (longest matching namespace prefix)
3. Global default (project.yml top-level +materialized, else BuildDefaults)

The same order resolves the target schema (+schema). No side effects.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from core.config import BuildDefaults
from core.contracts import MaterializationKind
from core.errors import ProjectLoadError
from core.models import ModelDefinition, ProjectConfig
from orchestrator.engine.graph import ModelGraph

logger = logging.getLogger(__name__)


@dataclass
class MaterializationPlan:
    """Per-model build strategy and target schema."""
    kinds: Dict[str, MaterializationKind] = field(default_factory=dict)
    schemas: Dict[str, str] = field(default_factory=dict)

    def kind(self, name: str) -> MaterializationKind:
        return self.kinds[name]

    def relation(self, name: str) -> str:
        """Qualified relation name a model is built as."""
        return f"{self.schemas[name]}.{name}"


class MaterializationPlanner:
    """Resolves materialization and schema from scoped configuration."""

    def __init__(
        self,
        project: Optional[ProjectConfig] = None,
        defaults: Optional[BuildDefaults] = None,
    ):
        self.project = project
        self.defaults = defaults or BuildDefaults()

    def plan(self, graph: ModelGraph) -> MaterializationPlan:
        """
        Resolve every model in the graph.

        Args:
            graph: Validated model graph

        Returns:
            MaterializationPlan (name -> kind, name -> schema)
        """
        result = MaterializationPlan()
        for name in sorted(graph.models):
            model = graph.models[name]
            result.kinds[name] = self.resolve_kind(model)
            result.schemas[name] = self.resolve_schema(model)

        counts: Dict[str, int] = {}
        for kind in result.kinds.values():
            counts[kind.value] = counts.get(kind.value, 0) + 1
        logger.debug(f"Materialization plan: {counts}")
        return result

    def resolve_kind(self, model: ModelDefinition) -> MaterializationKind:
        if model.materialized is not None:
            return model.materialized

        value = self._scoped_value(model, "materialized")
        if value is None:
            return self.defaults.default_materialization

        try:
            return MaterializationKind(str(value).lower())
        except ValueError:
            raise ProjectLoadError(
                f"Invalid materialization '{value}' configured for namespace of model {model.name}",
                path=model.path,
            )

    def resolve_schema(self, model: ModelDefinition) -> str:
        if model.schema_name:
            return model.schema_name

        value = self._scoped_value(model, "schema")
        if value:
            return str(value)

        if self.project and self.project.target_schema:
            return self.project.target_schema
        return self.defaults.target_schema

    def _scoped_value(self, model: ModelDefinition, key: str):
        """Most specific namespace value for key, or None."""
        if self.project is None:
            return None
        value = None
        for scope in self.project.scoped_configs(model.namespace_parts):
            if key in scope:
                value = scope[key]
        return value


__all__ = [
    "MaterializationPlan",
    "MaterializationPlanner",
]
