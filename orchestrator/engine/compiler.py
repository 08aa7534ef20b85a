# ============================================================================
# MODEL COMPILER
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Definition rendering with Jinja2
# PURPOSE: Resolve ref()/source()/var() and macros into executable SQL
# CREATED: 10 OCT 2026
# ============================================================================
"""
Model Compiler

Renders model definition text into SQL the target store can execute.

Supported template functions:
- {{ ref('model') }}            qualified relation, or an inlined CTE name
                                when the referenced model is ephemeral
- {{ source('src', 'table') }}  qualified relation of a declared source
- {{ var('name', default) }}    project vars from project.yml
- {{ config(...) }}             read at load time; renders to nothing
- {{ this }}                    relation of the model being compiled
- project macros                {% macro %} blocks from macro-paths

Ephemeral models are never built; each consumer receives them as
`__cte__<name>` common table expressions, transitively, each CTE once and
in dependency order.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from core.contracts import MaterializationKind
from core.errors import CompilationError
from orchestrator.engine.graph import ModelGraph
from orchestrator.engine.planner import MaterializationPlan

logger = logging.getLogger(__name__)

CTE_PREFIX = "__cte__"

_LEADING_WITH = re.compile(r"^\s*with\s+(recursive\s+)?", re.IGNORECASE)
_MISSING = object()


@dataclass
class CompiledModel:
    """A model rendered for execution."""
    name: str
    schema_name: str
    materialization: MaterializationKind
    sql: str
    relation: str
    refs: List[str] = field(default_factory=list)


class _RenderState:
    """Per-render bookkeeping for ref() calls."""

    def __init__(self, allowed: Iterable[str] = ()):
        self.refs: List[str] = []
        self.ephemerals: List[str] = []
        # Models ref() may name: the graph edges of the definition being rendered
        self.allowed = set(allowed)


class ModelCompiler:
    """
    Jinja2-based compiler for model and singular-test definitions.

    One compiler is created per run; compiled ephemeral bodies are cached.
    """

    def __init__(
        self,
        graph: ModelGraph,
        plan: MaterializationPlan,
        macros: Iterable[str] = (),
        project_vars: Optional[Dict[str, Any]] = None,
    ):
        self.graph = graph
        self.plan = plan
        self.project_vars = project_vars or {}
        self._env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )
        self._env.globals.update(self._load_macros(macros))
        self._ephemeral_cache: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compile_model(self, name: str) -> CompiledModel:
        """
        Compile one model.

        Raises:
            CompilationError: template syntax error or undefined name
        """
        model = self.graph.models[name]
        relation = self.plan.relation(name)
        state = _RenderState(allowed=self.graph.get_dependencies(name))
        body = self._render(name, model.sql, state, this=relation)
        sql = self._inject_ctes(body, state)

        return CompiledModel(
            name=name,
            schema_name=self.plan.schemas[name],
            materialization=self.plan.kind(name),
            sql=sql,
            relation=relation,
            refs=list(state.refs),
        )

    def compile_query(self, owner: str, sql: str, depends_on: Iterable[str] = ()) -> str:
        """
        Compile free-form query text (singular tests) with the same context.

        depends_on lists the models the query may ref(); any other ref()
        is a CompilationError.
        """
        state = _RenderState(allowed=depends_on)
        body = self._render(owner, sql, state, this=None)
        return self._inject_ctes(body, state)

    def relation_for(self, name: str) -> str:
        """Relation a test should query for a model."""
        return self.plan.relation(name)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self, owner: str, sql: str, state: _RenderState, this: Optional[str]) -> str:
        context = {
            "ref": lambda target: self._ref(owner, target, state),
            "source": lambda source_name, table_name: self._source(owner, source_name, table_name),
            "var": lambda var_name, default=_MISSING: self._var(owner, var_name, default),
            "config": lambda *args, **kwargs: "",
            "this": this,
        }
        try:
            rendered = self._env.from_string(sql).render(context)
        except CompilationError:
            raise
        except TemplateError as e:
            raise CompilationError(owner, f"failed to render definition: {e}") from e
        return rendered.strip().rstrip(";").strip()

    def _ref(self, owner: str, target: str, state: _RenderState) -> str:
        if target not in self.graph.models:
            raise CompilationError(owner, f"ref('{target}') does not name a model")
        if target not in state.allowed:
            # Rendered but never seen by the graph builder: no edge, no ordering
            raise CompilationError(
                owner,
                f"ref('{target}') is not a declared dependency; use a {{{{ ref('{target}') }}}} "
                f"expression or list it in refs",
            )
        if target not in state.refs:
            state.refs.append(target)

        if self.plan.kind(target) == MaterializationKind.EPHEMERAL:
            self._collect_ephemeral(target, state)
            return f"{CTE_PREFIX}{target}"
        return self.plan.relation(target)

    def _collect_ephemeral(self, name: str, state: _RenderState) -> None:
        """Register name (and the ephemerals it reads) as CTEs, producers first."""
        if name in state.ephemerals:
            return
        if name not in self._ephemeral_cache:
            inner = _RenderState(allowed=self.graph.get_dependencies(name))
            self._ephemeral_cache[name] = self._render(
                name, self.graph.models[name].sql, inner, this=None
            )
            nested = inner.ephemerals
        else:
            nested = [
                dep for dep in self.graph.get_dependencies(name)
                if self.plan.kind(dep) == MaterializationKind.EPHEMERAL
            ]
        for dep in nested:
            self._collect_ephemeral(dep, state)
        state.ephemerals.append(name)

    def _source(self, owner: str, source_name: str, table_name: str) -> str:
        key = f"{source_name}.{table_name}"
        source = self.graph.sources.get(key)
        if source is None:
            raise CompilationError(owner, f"source('{source_name}', '{table_name}') is not declared")
        return source.relation

    def _var(self, owner: str, var_name: str, default: Any) -> Any:
        if var_name in self.project_vars:
            return self.project_vars[var_name]
        if default is not _MISSING:
            return default
        raise CompilationError(owner, f"var('{var_name}') is not defined and has no default")

    def _inject_ctes(self, body: str, state: _RenderState) -> str:
        if not state.ephemerals:
            return body
        ctes = ",\n".join(
            f"{CTE_PREFIX}{name} as (\n{self._ephemeral_cache[name]}\n)"
            for name in state.ephemerals
        )
        match = _LEADING_WITH.match(body)
        if match:
            keyword = "with recursive" if match.group(1) else "with"
            return f"{keyword} {ctes},\n{body[match.end():]}"
        return f"with {ctes}\n{body}"

    # ------------------------------------------------------------------
    # Macros
    # ------------------------------------------------------------------

    def _load_macros(self, macro_sources: Iterable[str]) -> Dict[str, Any]:
        """Expose every {% macro %} in the macro files as a global."""
        exported: Dict[str, Any] = {}
        for text in macro_sources:
            try:
                module = self._env.from_string(text).module
            except TemplateError as e:
                raise CompilationError("<macros>", f"failed to load macros: {e}") from e
            for attr in dir(module):
                if attr.startswith("_"):
                    continue
                exported[attr] = getattr(module, attr)
        if exported:
            logger.debug(f"Loaded macros: {sorted(exported)}")
        return exported


__all__ = [
    "CTE_PREFIX",
    "CompiledModel",
    "ModelCompiler",
]
