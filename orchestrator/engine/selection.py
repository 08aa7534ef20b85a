# ============================================================================
# MODEL SELECTION
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Selector parsing and resolution
# PURPOSE: Turn selector strings into the set of models a run covers
# CREATED: 09 OCT 2026
# ============================================================================
"""
Model Selection

Selector grammar:
    fct_orders            model by name
    +fct_orders           model plus all ancestors
    fct_orders+           model plus all descendants
    +fct_orders+          both
    tag:nightly           every model tagged 'nightly'
    namespace:marts       every model under namespace 'marts' (prefix match)
    *                     every model

Graph operators (+) combine with the RunSelection flags: include_ancestors
applies to every selector, include_descendants likewise.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Set

from core.errors import SelectionError
from core.models import RunSelection
from orchestrator.engine.graph import ModelGraph

logger = logging.getLogger(__name__)

_METHODS = ("name", "tag", "namespace", "all")


@dataclass(frozen=True)
class Selector:
    """One parsed selector string."""
    raw: str
    method: str
    value: str
    parents: bool = False
    children: bool = False


def parse_selector(raw: str) -> Selector:
    """
    Parse a selector string.

    Raises:
        SelectionError: empty selector or unknown method prefix
    """
    text = (raw or "").strip()
    if not text:
        raise SelectionError("Empty selector", selector=raw)

    parents = text.startswith("+")
    children = text.endswith("+") and len(text) > 1
    body = text.strip("+").strip()
    if not body:
        raise SelectionError(f"Selector '{raw}' names no model", selector=raw)

    if body == "*":
        return Selector(raw=raw, method="all", value="*", parents=parents, children=children)

    if ":" in body:
        method, _, value = body.partition(":")
        method = method.strip().lower()
        if method not in _METHODS:
            raise SelectionError(
                f"Unknown selector method '{method}' in '{raw}' (expected one of {list(_METHODS)})",
                selector=raw,
            )
        return Selector(raw=raw, method=method, value=value.strip(), parents=parents, children=children)

    return Selector(raw=raw, method="name", value=body, parents=parents, children=children)


def _match(graph: ModelGraph, selector: Selector) -> Set[str]:
    if selector.method == "all":
        return set(graph.models)
    if selector.method == "name":
        return {selector.value} if selector.value in graph.models else set()
    if selector.method == "tag":
        return {name for name, model in graph.models.items() if selector.value in model.tags}
    # namespace: dotted prefix match on whole parts
    wanted = [part for part in selector.value.split(".") if part]
    return {
        name for name, model in graph.models.items()
        if model.namespace_parts[:len(wanted)] == wanted
    }


def resolve_selectors(
    graph: ModelGraph,
    selectors: Iterable[str],
    include_ancestors: bool = False,
    include_descendants: bool = False,
) -> Set[str]:
    """
    Resolve selectors to model names, expanding graph operators.

    Raises:
        SelectionError: a selector matches no model
    """
    result: Set[str] = set()
    for raw in selectors:
        selector = parse_selector(raw)
        matched = _match(graph, selector)
        if not matched:
            raise SelectionError(f"Selector '{raw}' matched no models", selector=raw)

        expanded = set(matched)
        for name in matched:
            if selector.parents or include_ancestors:
                expanded |= graph.ancestors(name)
            if selector.children or include_descendants:
                expanded |= graph.descendants(name)
        result |= expanded
    return result


def explicit_matches(graph: ModelGraph, selectors: Iterable[str]) -> Set[str]:
    """Models matched directly by selectors, without graph expansion."""
    result: Set[str] = set()
    for raw in selectors:
        result |= _match(graph, parse_selector(raw))
    return result


def select_models(graph: ModelGraph, selection: RunSelection) -> Set[str]:
    """
    Apply a RunSelection to the graph.

    Returns:
        Set of selected model names (exclusions applied)

    Raises:
        SelectionError: a select or exclude selector matches no model
    """
    if selection.is_all:
        selected = set(graph.models)
    else:
        selected = resolve_selectors(
            graph,
            selection.select,
            include_ancestors=selection.include_ancestors,
            include_descendants=selection.include_descendants,
        )

    if selection.exclude:
        excluded = resolve_selectors(graph, selection.exclude)
        selected -= excluded

    logger.debug(f"Selected {len(selected)} of {len(graph.models)} models")
    return selected


__all__ = [
    "Selector",
    "parse_selector",
    "resolve_selectors",
    "explicit_matches",
    "select_models",
]
