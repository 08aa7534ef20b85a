# ============================================================================
# MODEL DEFINITION MODELS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core model - Transformation units, sources and test specs
# PURPOSE: Define models loaded from .sql files and schema YAML
# CREATED: 07 OCT 2026
# EXPORTS: ModelDefinition, SourceDefinition, TestSpec
# DEPENDENCIES: pydantic
# ============================================================================
"""
Model Definition Models

A ModelDefinition is one named transformation unit: definition text with
reference placeholders plus its configuration and attached tests.

    {{ config(materialized='table') }}
    select o.order_key, sum(li.extended_price) as gross_item_sales_amount
    from {{ ref('stg_tpch_orders') }} as o
    join {{ ref('stg_tpch_line_items') }} as li on o.order_key = li.order_key

Definitions are loaded by ProjectService and owned by the ModelGraph for the
duration of a run.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.contracts import MaterializationKind, TestKind, TestSeverity

_REF_ARGUMENT = re.compile(r"""^\s*ref\(\s*['"]([^'"]+)['"]\s*\)\s*$""")


def _slug(value: Any) -> str:
    return re.sub(r"[^A-Za-z0-9_]+", "_", str(value)).strip("_")


class SourceDefinition(BaseModel):
    """
    A raw relation loaded outside the project, addressed by source('name', 'table').
    """
    model_config = ConfigDict(populate_by_name=True)

    source_name: str = Field(..., max_length=128)
    table_name: str = Field(..., max_length=128)
    schema_name: str = Field(..., alias="schema", max_length=128)
    identifier: Optional[str] = None
    description: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.source_name}.{self.table_name}"

    @property
    def relation(self) -> str:
        """Qualified relation name in the target store."""
        return f"{self.schema_name}.{self.identifier or self.table_name}"


class TestSpec(BaseModel):
    """
    A data test attached to a model or one of its columns.

    Generic tests (unique, not_null, accepted_values, relationships) are
    expanded into violation queries by the test gate. Singular tests carry
    their own query; every row it returns is a violation.
    """
    __test__ = False

    model_config = ConfigDict(populate_by_name=True)

    kind: TestKind
    name: str = ""
    model: Optional[str] = None
    column: Optional[str] = None
    severity: TestSeverity = TestSeverity.ERROR

    # accepted_values
    values: Optional[List[Any]] = None

    # relationships
    to: Optional[str] = None
    field: Optional[str] = None

    # singular tests
    sql: Optional[str] = None

    # Optional row filter applied to the tested model (generic tests)
    where: Optional[str] = None

    # Models the test reads; singular tests fill this from their references
    depends_on: List[str] = Field(default_factory=list)

    path: Optional[str] = None
    description: Optional[str] = None

    @field_validator("to", mode="before")
    @classmethod
    def strip_ref_wrapper(cls, v):
        """Allow `to: ref('stg_orders')` as well as the bare model name."""
        if isinstance(v, str):
            match = _REF_ARGUMENT.match(v)
            if match:
                return match.group(1)
            return v.strip()
        return v

    @model_validator(mode="after")
    def check_arguments(self) -> "TestSpec":
        """Validate kind-specific arguments and derive a stable name."""
        if self.kind.is_generic():
            if not self.model:
                raise ValueError(f"{self.kind.value} test requires a model")
            if not self.column:
                raise ValueError(f"{self.kind.value} test on {self.model} requires a column")
        if self.kind == TestKind.ACCEPTED_VALUES and not self.values:
            raise ValueError(f"accepted_values test on {self.model}.{self.column} requires values")
        if self.kind == TestKind.RELATIONSHIPS and (not self.to or not self.field):
            raise ValueError(f"relationships test on {self.model}.{self.column} requires 'to' and 'field'")
        if self.kind == TestKind.SINGULAR and not self.sql:
            raise ValueError("singular test requires sql")

        if not self.name:
            if self.kind == TestKind.SINGULAR:
                raise ValueError("singular test requires a name")
            parts = [self.kind.value, self.model, self.column]
            if self.kind == TestKind.RELATIONSHIPS:
                parts += [self.to, self.field]
            self.name = "_".join(_slug(p) for p in parts if p)

        if self.kind.is_generic():
            referenced = [self.model] + ([self.to] if self.to else [])
            for ref in referenced:
                if ref not in self.depends_on:
                    self.depends_on.append(ref)
        return self


class ModelDefinition(BaseModel):
    """
    Definition of a single model.

    namespace is the model's directory relative to its model path, dotted
    (models/marts/core/fct_orders.sql -> "marts.core"). Namespace-scoped
    configuration in project.yml applies by longest matching prefix.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", max_length=128)
    sql: str
    namespace: str = ""

    # Model-level overrides (most specific configuration scope)
    materialized: Optional[MaterializationKind] = None
    schema_name: Optional[str] = Field(default=None, alias="schema")

    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    columns: Dict[str, Optional[str]] = Field(default_factory=dict)
    tests: List[TestSpec] = Field(default_factory=list)

    # References declared outside the definition text; merged with extracted ones
    refs: List[str] = Field(default_factory=list)

    path: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def handle_string_tags(cls, v):
        """Allow a single string as shorthand for a one-item list."""
        if isinstance(v, str):
            return [v]
        return v

    @property
    def namespace_parts(self) -> List[str]:
        return [part for part in self.namespace.split(".") if part]


__all__ = [
    "SourceDefinition",
    "TestSpec",
    "ModelDefinition",
]
