# ============================================================================
# REFERENCE EXTRACTION
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Pluggable reference extraction strategy
# PURPOSE: Find ref()/source() markers in opaque definition text
# CREATED: 08 OCT 2026
# ============================================================================
"""
Reference Extraction

Model definitions are opaque query text, so references are found by a
textual scan for explicit markers rather than by parsing SQL:

    select * from {{ ref('stg_tpch_orders') }}
    join {{ source('tpch', 'lineitem') }} using (order_key)

Markers may appear in any clause (FROM, JOIN, subqueries, CTEs, WHERE ...).
The extractor is a strategy object: the graph builder only calls
extract_refs / extract_sources, so a stricter parser can replace the
regex scan without touching graph or scheduler code.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple


class ReferenceExtractor(ABC):
    """Strategy interface for finding references in definition text."""

    @abstractmethod
    def extract_refs(self, sql: str) -> List[str]:
        """Return referenced model names, first-seen order, no duplicates."""

    @abstractmethod
    def extract_sources(self, sql: str) -> List[Tuple[str, str]]:
        """Return referenced (source_name, table_name) pairs."""


class JinjaReferenceExtractor(ReferenceExtractor):
    """
    Regex scan for {{ ref('name') }} and {{ source('src', 'table') }}.

    Tolerates single or double quotes and arbitrary whitespace. Markers inside
    {# comments #} are ignored.
    """

    _COMMENT = re.compile(r"\{#.*?#\}", re.DOTALL)
    _REF = re.compile(
        r"""\{\{[^}]*?\bref\(\s*['"]([^'"]+)['"]\s*\)[^}]*?\}\}""",
        re.DOTALL,
    )
    _SOURCE = re.compile(
        r"""\{\{[^}]*?\bsource\(\s*['"]([^'"]+)['"]\s*,\s*['"]([^'"]+)['"]\s*\)[^}]*?\}\}""",
        re.DOTALL,
    )

    def extract_refs(self, sql: str) -> List[str]:
        text = self._COMMENT.sub("", sql or "")
        return _unique(match.group(1).strip() for match in self._REF.finditer(text))

    def extract_sources(self, sql: str) -> List[Tuple[str, str]]:
        text = self._COMMENT.sub("", sql or "")
        return _unique(
            (match.group(1).strip(), match.group(2).strip())
            for match in self._SOURCE.finditer(text)
        )


def _unique(items) -> list:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


_default_extractor: Optional[ReferenceExtractor] = None


def get_reference_extractor() -> ReferenceExtractor:
    """Get shared default extractor instance."""
    global _default_extractor
    if _default_extractor is None:
        _default_extractor = JinjaReferenceExtractor()
    return _default_extractor


__all__ = [
    "ReferenceExtractor",
    "JinjaReferenceExtractor",
    "get_reference_extractor",
]
