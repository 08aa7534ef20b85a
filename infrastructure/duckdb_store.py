# ============================================================================
# DUCKDB TARGET STORE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Infrastructure - Local/CI target store
# PURPOSE: Build models into a DuckDB file or in-memory database
# CREATED: 13 OCT 2026
# ============================================================================
"""
DuckDB Target Store

Used for local development, CI and the example project. One connection is
shared by all worker threads; each operation takes its own cursor under a
lock because DDL on a shared catalog is not safe to interleave.

Usage:
    store = DuckDBTargetStore(":memory:")
    store.load_seed("tpch.orders", [{"o_orderkey": 1, ...}])
"""

import datetime
import decimal
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

import duckdb

from infrastructure.store import TargetStore, split_relation

if TYPE_CHECKING:
    from orchestrator.engine.compiler import CompiledModel


def _duckdb_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "bigint"
    if isinstance(value, float):
        return "double"
    if isinstance(value, decimal.Decimal):
        return "decimal(18, 4)"
    if isinstance(value, datetime.datetime):
        return "timestamp"
    if isinstance(value, datetime.date):
        return "date"
    return "varchar"


class DuckDBTargetStore(TargetStore):
    """Target store backed by duckdb."""

    # duckdb views do not track dependencies, so nothing needs to cascade
    drop_suffix = ""

    def __init__(self, path: str = ":memory:", connection: Optional[duckdb.DuckDBPyConnection] = None):
        super().__init__()
        self.path = path
        self._conn = connection or duckdb.connect(path)
        self._lock = threading.Lock()

    def table_statements(self, model: "CompiledModel") -> List[str]:
        return [f"create or replace table {model.relation} as\n{model.sql}"]

    def _execute_statements(self, statements: List[str]) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            try:
                cursor.execute("begin transaction")
                try:
                    for statement in statements:
                        cursor.execute(statement)
                except duckdb.Error:
                    cursor.execute("rollback")
                    raise
                cursor.execute("commit")
            finally:
                cursor.close()

    def _fetch_rows(self, query: str) -> List[tuple]:
        with self._lock:
            cursor = self._conn.cursor()
            try:
                return cursor.execute(query).fetchall()
            finally:
                cursor.close()

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def load_seed(
        self,
        relation: str,
        rows: Sequence[Dict[str, Any]],
        columns: Optional[Sequence[str]] = None,
    ) -> int:
        """
        Replace a raw table with literal rows (demo and test data).

        Column types are inferred from the first row's Python values.

        Returns:
            Number of rows loaded
        """
        columns = list(columns or (rows[0].keys() if rows else []))
        if not columns:
            raise ValueError(f"load_seed for {relation} needs rows or columns")

        schema, _ = split_relation(relation)
        column_list = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)

        with self._error_context("load_seed", relation):
            with self._lock:
                cursor = self._conn.cursor()
                try:
                    if schema:
                        cursor.execute(f"create schema if not exists {schema}")
                    sample = rows[0] if rows else {}
                    column_defs = ", ".join(
                        f"{column} {_duckdb_type(sample.get(column))}" for column in columns
                    )
                    cursor.execute(f"create or replace table {relation} ({column_defs})")
                    if rows:
                        cursor.executemany(
                            f"insert into {relation} ({column_list}) values ({placeholders})",
                            [[row.get(column) for column in columns] for row in rows],
                        )
                finally:
                    cursor.close()

        self.logger.info(f"Loaded {len(rows)} seed rows into {relation}")
        return len(rows)

    def load_csv(self, relation: str, path: Union[str, Path]) -> int:
        """Replace a raw table with the contents of a CSV file (header row required)."""
        schema, _ = split_relation(relation)
        with self._error_context("load_csv", relation):
            with self._lock:
                cursor = self._conn.cursor()
                try:
                    if schema:
                        cursor.execute(f"create schema if not exists {schema}")
                    literal = str(path).replace("'", "''")
                    cursor.execute(
                        f"create or replace table {relation} as "
                        f"select * from read_csv_auto('{literal}', header = true)"
                    )
                    count = cursor.execute(f"select count(*) from {relation}").fetchone()[0]
                finally:
                    cursor.close()

        self.logger.info(f"Loaded {count} rows from {path} into {relation}")
        return count

    def load_seed_dir(self, seed_dir: Union[str, Path]) -> List[str]:
        """
        Load every <schema>/<table>.csv under seed_dir.

        Returns:
            Relations loaded, sorted
        """
        root = Path(seed_dir)
        loaded = []
        for csv_path in sorted(root.glob("*/*.csv")):
            relation = f"{csv_path.parent.name}.{csv_path.stem}"
            self.load_csv(relation, csv_path)
            loaded.append(relation)
        return loaded

    def close(self) -> None:
        self._conn.close()


__all__ = ["DuckDBTargetStore"]
