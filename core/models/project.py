# ============================================================================
# PROJECT CONFIGURATION MODEL
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core model - project.yml schema
# PURPOSE: Paths, vars and namespace-scoped model configuration
# CREATED: 07 OCT 2026
# EXPORTS: ProjectConfig, LoadedProject
# DEPENDENCIES: pydantic
# ============================================================================
"""
Project Configuration Model

Loaded from project.yml at the project root:

    name: tpch_analytics
    model-paths: [models]
    test-paths: [tests]
    macro-paths: [macros]
    target-schema: analytics
    models:
      +materialized: view
      staging:
        +schema: staging
      marts:
        +materialized: table
        +schema: marts

Keys prefixed with '+' configure the namespace they appear under; every other
key opens a nested namespace.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models.model import ModelDefinition, SourceDefinition, TestSpec


class ProjectConfig(BaseModel):
    """Complete project configuration loaded from project.yml."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())

    name: str = Field(..., max_length=128)
    version: str = "1.0"

    model_paths: List[str] = Field(default_factory=lambda: ["models"], alias="model-paths")
    test_paths: List[str] = Field(default_factory=lambda: ["tests"], alias="test-paths")
    macro_paths: List[str] = Field(default_factory=lambda: ["macros"], alias="macro-paths")

    target_schema: Optional[str] = Field(default=None, alias="target-schema")
    vars: Dict[str, Any] = Field(default_factory=dict)

    # Namespace config tree
    models: Dict[str, Any] = Field(default_factory=dict)

    def scoped_configs(self, namespace_parts: List[str]) -> List[Dict[str, Any]]:
        """
        Collect '+' config blocks along a namespace path.

        Args:
            namespace_parts: e.g. ["marts", "core"]

        Returns:
            Config dicts ordered from least to most specific, '+' stripped.
            The first entry is the global (top-level) block.
        """
        scopes = []
        node: Any = self.models
        scopes.append(_config_keys(node))

        for part in namespace_parts:
            if not isinstance(node, dict) or not isinstance(node.get(part), dict):
                break
            node = node[part]
            scopes.append(_config_keys(node))

        return scopes


def _config_keys(node: Any) -> Dict[str, Any]:
    if not isinstance(node, dict):
        return {}
    return {key[1:]: value for key, value in node.items() if key.startswith("+")}


class LoadedProject(BaseModel):
    """
    Everything read from a project directory.

    Produced by ProjectService.load() and handed to the RunCoordinator.
    """
    config: ProjectConfig
    models: List[ModelDefinition] = Field(default_factory=list)
    sources: List[SourceDefinition] = Field(default_factory=list)

    # Project-level (singular) tests; model-level tests live on their model
    tests: List[TestSpec] = Field(default_factory=list)

    # Raw text of each macro file, in path order
    macros: List[str] = Field(default_factory=list)

    root: Optional[str] = None

    def names(self) -> List[str]:
        return sorted(model.name for model in self.models)


__all__ = ["ProjectConfig", "LoadedProject"]
