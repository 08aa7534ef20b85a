# ============================================================================
# POSTGRESQL TARGET STORE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Infrastructure - PostgreSQL target store
# PURPOSE: Build models into a PostgreSQL warehouse via psycopg
# CREATED: 14 OCT 2026
# ============================================================================
"""
PostgreSQL Target Store

Connection string resolution:
1. Explicit connection_string argument
2. DATABASE_URL
3. POSTGRES_HOST / POSTGRES_PORT / POSTGRES_DB / POSTGRES_USER /
   POSTGRES_PASSWORD (POSTGRES_SSLMODE, default "prefer")

An existing view is dropped (CASCADE) and recreated, since PostgreSQL
rejects CREATE OR REPLACE VIEW when columns are removed or reordered.
Tables are replaced with DROP TABLE IF EXISTS ... CASCADE followed by
CREATE TABLE ... AS. Both run inside a single transaction, so a failed
rebuild leaves the previous object intact.
"""

import os
import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, List, Optional

import psycopg

from infrastructure.store import TargetStore

if TYPE_CHECKING:
    from orchestrator.engine.compiler import CompiledModel

logger = logging.getLogger(__name__)


class PostgresTargetStore(TargetStore):
    """
    Target store for PostgreSQL.

    A short-lived connection is opened per operation, so the store is safe
    to call from several worker threads at once.

    Usage:
        store = PostgresTargetStore()
        store.execute_definition(compiled)
    """

    replace_views_in_place = False

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize PostgreSQL store.

        Args:
            connection_string: Optional explicit connection string
        """
        super().__init__()
        self._conn_string = connection_string
        self._conn_string_lock = threading.Lock()

    @property
    def conn_string(self) -> str:
        """Get or build connection string (lazy, thread-safe)."""
        if self._conn_string is None:
            with self._conn_string_lock:
                if self._conn_string is None:
                    self._conn_string = self._build_connection_string()
        return self._conn_string

    def _build_connection_string(self) -> str:
        url = os.environ.get("DATABASE_URL")
        if url:
            return url

        host = os.environ.get("POSTGRES_HOST")
        port = os.environ.get("POSTGRES_PORT", "5432")
        database = os.environ.get("POSTGRES_DB")

        if not host or not database:
            raise ValueError(
                "Database connection not configured. "
                "Set DATABASE_URL, or POSTGRES_HOST and POSTGRES_DB environment variables."
            )

        user = os.environ.get("POSTGRES_USER", "postgres")
        password = os.environ.get("POSTGRES_PASSWORD", "")
        sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")

        logger.debug(f"Password connection string built for {database}")
        return f"postgresql://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}"

    @contextmanager
    def get_connection(self):
        """
        Context manager for PostgreSQL connections.

        Yields:
            psycopg connection; rolled back on error, always closed
        """
        conn = None
        try:
            conn = psycopg.connect(self.conn_string)
            yield conn
        except psycopg.Error as e:
            logger.error(f"PostgreSQL error: {e}")
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    def table_statements(self, model: "CompiledModel") -> List[str]:
        return [
            f"drop table if exists {model.relation} cascade",
            f"create table {model.relation} as\n{model.sql}",
        ]

    def _execute_statements(self, statements: List[str]) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                for statement in statements:
                    cur.execute(statement)
            conn.commit()

    def _fetch_rows(self, query: str) -> List[tuple]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query)
                return cur.fetchall()


__all__ = ["PostgresTargetStore"]
