# ============================================================================
# TARGET STORE INTERFACE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Infrastructure - Store contract shared by every backend
# PURPOSE: Materialize compiled models and count assertion violations
# CREATED: 13 OCT 2026
# ============================================================================
"""
Target Store Interface

The orchestrator talks to the warehouse through exactly three operations:

    execute_definition(model)   create or replace the model's view/table
    run_assertion(query)        number of rows the query returns
    list_existing_objects()     qualified names ("schema.name") present

Backends extend TargetStore and supply connection handling. Every driver
error is wrapped in StoreError by _error_context so the coordinator can
record it against the model being built.

Store methods may be sync or async; call_store() runs sync methods in the
default thread executor with the caller's logging context.
"""

import asyncio
import contextvars
import functools
import inspect
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Set

from core.contracts import MaterializationKind
from core.errors import StoreError

if TYPE_CHECKING:
    from orchestrator.engine.compiler import CompiledModel


async def call_store(method: Callable[..., Any], *args: Any) -> Any:
    """Await an async store method, or run a sync one in a worker thread."""
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    loop = asyncio.get_running_loop()
    context = contextvars.copy_context()
    return await loop.run_in_executor(None, functools.partial(context.run, method, *args))


def split_relation(relation: str):
    """'analytics.fct_orders' -> ('analytics', 'fct_orders')."""
    schema, _, name = relation.rpartition(".")
    return schema, name


class TargetStore(ABC):
    """
    Abstract target store.

    Subclasses implement statement execution; the DDL for views and the
    replace strategy for tables are shared here and overridable.
    """

    # Appended to DROP statements when the kind of an object switches
    drop_suffix = " cascade"

    # False: an existing view is dropped before it is recreated, for
    # backends whose CREATE OR REPLACE VIEW refuses column changes
    replace_views_in_place = True

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.logger.debug(f"{self.__class__.__name__} initialized")

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def execute_definition(self, model: "CompiledModel") -> None:
        """
        Create or replace the model's object. Idempotent.

        Raises:
            StoreError: driver error, or an ephemeral model was passed
        """
        if not model.materialization.is_built():
            raise StoreError(
                f"{model.name} is ephemeral and has no object to build",
                operation="execute_definition",
                object_name=model.relation,
            )

        with self._error_context("execute_definition", model.relation):
            statements = self.definition_statements(model)
            self._execute_statements(statements)
        self.logger.info(f"Materialized {model.materialization.value} {model.relation}")

    def run_assertion(self, query: str) -> int:
        """
        Count the rows a violation query returns.

        Raises:
            StoreError: query failed
        """
        with self._error_context("run_assertion"):
            return int(self._fetch_scalar(f"select count(*) from (\n{query}\n) as assertion_rows"))

    def list_existing_objects(self) -> Set[str]:
        """Lowercased 'schema.name' of every user view and table."""
        with self._error_context("list_existing_objects"):
            rows = self._fetch_rows(
                "select table_schema, table_name from information_schema.tables "
                "where table_schema not in ('information_schema', 'pg_catalog')"
            )
        return {f"{schema}.{name}".lower() for schema, name in rows}

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def definition_statements(self, model: "CompiledModel") -> List[str]:
        """Statements that (re)create the model's object, run in order."""
        schema, _ = split_relation(model.relation)
        statements = [f"create schema if not exists {schema}"]

        # Switching kind: the old object must go first
        existing = self._object_type(model.relation)
        if model.materialization == MaterializationKind.VIEW:
            if existing == MaterializationKind.TABLE:
                statements.append(f"drop table if exists {model.relation}{self.drop_suffix}")
            elif existing == MaterializationKind.VIEW and not self.replace_views_in_place:
                statements.append(f"drop view if exists {model.relation}{self.drop_suffix}")
            statements.append(f"create or replace view {model.relation} as\n{model.sql}")
        else:
            if existing == MaterializationKind.VIEW:
                statements.append(f"drop view if exists {model.relation}{self.drop_suffix}")
            statements.extend(self.table_statements(model))
        return statements

    @abstractmethod
    def table_statements(self, model: "CompiledModel") -> List[str]:
        """Idempotent replace of a physical table."""

    def _object_type(self, relation: str) -> Optional[MaterializationKind]:
        schema, name = split_relation(relation)
        rows = self._fetch_rows(
            "select table_type from information_schema.tables "
            f"where lower(table_schema) = '{schema.lower()}' and lower(table_name) = '{name.lower()}'"
        )
        if not rows:
            return None
        return MaterializationKind.VIEW if rows[0][0].upper() == "VIEW" else MaterializationKind.TABLE

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _execute_statements(self, statements: List[str]) -> None:
        """Run statements in one transaction where the backend allows it."""

    @abstractmethod
    def _fetch_rows(self, query: str) -> List[tuple]:
        """Rows as tuples."""

    def _fetch_scalar(self, query: str) -> Any:
        rows = self._fetch_rows(query)
        return rows[0][0] if rows else 0

    def close(self) -> None:
        """Release connections (no-op by default)."""

    @contextmanager
    def _error_context(self, operation: str, object_name: Optional[str] = None):
        """
        Wrap driver errors in StoreError with operation context.

        Example:
            with self._error_context("execute_definition", "analytics.fct_orders"):
                self._execute_statements(statements)
        """
        try:
            yield
        except StoreError:
            raise
        except Exception as e:
            error_msg = f"{operation} failed"
            if object_name:
                error_msg += f" for {object_name}"
            error_msg += f": {e}"
            self.logger.error(error_msg)
            raise StoreError(error_msg, operation=operation, object_name=object_name) from e


__all__ = [
    "TargetStore",
    "call_store",
    "split_relation",
]
