# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Infrastructure - Target stores
# PURPOSE: Warehouse backends the orchestrator builds models into
# CREATED: 13 OCT 2026
# ============================================================================
"""
Infrastructure module for the model build orchestrator.

Provides:
- TargetStore: three-operation store contract with driver error wrapping
- DuckDBTargetStore: local file / in-memory store (development, CI)
- PostgresTargetStore: PostgreSQL via psycopg
- create_target_store: backend selected by StoreDefaults (MODELS_STORE)

Usage:
    from infrastructure import create_target_store

    store = create_target_store()
    store.list_existing_objects()
"""

from typing import Optional

from core.config import StoreDefaults, get_defaults
from infrastructure.store import TargetStore, call_store, split_relation
from infrastructure.duckdb_store import DuckDBTargetStore
from infrastructure.postgresql import PostgresTargetStore


def create_target_store(defaults: Optional[StoreDefaults] = None) -> TargetStore:
    """
    Construct the configured target store.

    Raises:
        ValueError: unknown backend name
    """
    defaults = defaults or get_defaults().store
    if defaults.backend == "duckdb":
        return DuckDBTargetStore(defaults.duckdb_path)
    if defaults.backend in ("postgres", "postgresql"):
        return PostgresTargetStore()
    raise ValueError(f"Unknown store backend '{defaults.backend}' (expected duckdb or postgres)")


__all__ = [
    "TargetStore",
    "call_store",
    "split_relation",
    "DuckDBTargetStore",
    "PostgresTargetStore",
    "create_target_store",
]
