# ============================================================================
# DOCS GENERATOR
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Static documentation artifact
# PURPOSE: Write manifest.json and a browsable index.md for the model graph
# CREATED: 15 OCT 2026
# ============================================================================
"""
Docs Generator

Produces a static artifact describing the project, independent of any
build state:

    <output_dir>/manifest.json   machine-readable graph (models, sources, tests)
    <output_dir>/index.md        human-readable pages with a Mermaid graph

Nothing is read from or written to the target store.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, StrictUndefined

from __version__ import __version__
from core.config import DocsDefaults
from orchestrator.engine.graph import ModelGraph
from orchestrator.engine.planner import MaterializationPlan
from orchestrator.engine.scheduler import TopologicalScheduler

logger = logging.getLogger(__name__)


INDEX_TEMPLATE = """\
# {{ project }}

Generated {{ generated_at }} by model-build-orchestrator {{ version }}.

{{ models | length }} models, {{ sources | length }} sources, {{ tests | length }} tests.

## Lineage

```mermaid
graph LR
{%- for key in sources %}
  {{ key | node_id }}[("{{ key }}")]
{%- endfor %}
{%- for name, model in models.items() %}
  {{ name | node_id }}["{{ name }} ({{ model.materialized }})"]
{%- endfor %}
{%- for name, model in models.items() %}
{%- for key in model.sources %}
  {{ key | node_id }} --> {{ name | node_id }}
{%- endfor %}
{%- for dep in model.depends_on %}
  {{ dep | node_id }} --> {{ name | node_id }}
{%- endfor %}
{%- endfor %}
```

## Build order

{% for wave in levels -%}
{{ loop.index }}. {{ wave | join(", ") }}
{% endfor %}
{%- for namespace, names in namespaces.items() %}

## Namespace: {{ namespace or "(root)" }}
{% for name in names %}{% set model = models[name] %}
### {{ name }}

{% if model.description %}{{ model.description }}

{% endif -%}
- Materialized: `{{ model.materialized }}` as `{{ model.relation }}`
- Depends on: {{ model.depends_on | join(", ") if model.depends_on else "-" }}
{%- if model.sources %}
- Sources: {{ model.sources | join(", ") }}
{%- endif %}
- Used by: {{ model.dependents | join(", ") if model.dependents else "-" }}
{%- if model.tags %}
- Tags: {{ model.tags | join(", ") }}
{%- endif %}
- Tests: {{ model.tests | length }}
{%- if model.columns %}

| Column | Description |
|---|---|
{%- for column, description in model.columns.items() %}
| {{ column }} | {{ description or "" }} |
{%- endfor %}
{%- endif %}
{% endfor %}
{%- endfor %}
{%- if tests %}

## Tests

| Test | Kind | Severity | Reads |
|---|---|---|---|
{%- for name, test in tests.items() %}
| {{ name }} | {{ test.kind }} | {{ test.severity }} | {{ test.depends_on | join(", ") }} |
{%- endfor %}
{%- endif %}
"""


def _node_id(value: str) -> str:
    return "n_" + "".join(ch if ch.isalnum() else "_" for ch in value)


class DocsGenerator:
    """Renders the docs artifact for a validated graph."""

    def __init__(self, defaults: Optional[DocsDefaults] = None):
        self.defaults = defaults or DocsDefaults()
        self._env = Environment(autoescape=False, undefined=StrictUndefined, keep_trailing_newline=True)
        self._env.filters["node_id"] = _node_id

    def build_manifest(
        self,
        project_name: str,
        graph: ModelGraph,
        plan: MaterializationPlan,
    ) -> Dict[str, Any]:
        """Manifest dict; keys are sorted so the artifact is reproducible."""
        models: Dict[str, Any] = {}
        for name in sorted(graph.models):
            model = graph.models[name]
            models[name] = {
                "namespace": model.namespace,
                "materialized": plan.kind(name).value,
                "schema": plan.schemas[name],
                "relation": plan.relation(name),
                "description": model.description,
                "tags": list(model.tags),
                "columns": dict(model.columns),
                "depends_on": graph.get_dependencies(name),
                "dependents": graph.get_dependents(name),
                "sources": list(graph.source_refs.get(name, [])),
                "tests": [test.name for test in graph.tests_for([name])],
                "path": model.path,
            }

        sources = {
            key: {
                "relation": source.relation,
                "description": source.description,
            }
            for key, source in sorted(graph.sources.items())
        }

        tests = {
            test.name: {
                "kind": test.kind.value,
                "model": test.model,
                "column": test.column,
                "severity": test.severity.value,
                "depends_on": list(test.depends_on),
            }
            for test in graph.all_tests()
        }

        build_plan = TopologicalScheduler(graph).plan()
        return {
            "project": project_name,
            "generated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "version": __version__,
            "models": models,
            "sources": sources,
            "tests": tests,
            "build_order": build_plan.order,
            "levels": build_plan.levels(graph),
        }

    def render_index(self, manifest: Dict[str, Any]) -> str:
        namespaces: Dict[str, List[str]] = {}
        for name, model in manifest["models"].items():
            namespaces.setdefault(model["namespace"], []).append(name)

        template = self._env.from_string(INDEX_TEMPLATE)
        return template.render(
            project=manifest["project"],
            generated_at=manifest["generated_at"],
            version=manifest["version"],
            models=manifest["models"],
            sources=manifest["sources"],
            tests=manifest["tests"],
            levels=manifest["levels"],
            namespaces=dict(sorted(namespaces.items())),
        )

    def generate(
        self,
        project_name: str,
        graph: ModelGraph,
        plan: MaterializationPlan,
        output_dir: Optional[str] = None,
    ) -> Path:
        """
        Write manifest.json and index.md.

        Returns:
            Output directory path
        """
        target = Path(output_dir or self.defaults.output_dir)
        target.mkdir(parents=True, exist_ok=True)

        manifest = self.build_manifest(project_name, graph, plan)
        (target / self.defaults.manifest_name).write_text(
            json.dumps(manifest, indent=2, default=str), encoding="utf-8"
        )
        (target / self.defaults.index_name).write_text(self.render_index(manifest), encoding="utf-8")

        logger.info(f"Docs written to {target} ({len(manifest['models'])} models)")
        return target


__all__ = ["DocsGenerator"]
