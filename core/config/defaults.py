# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for builds, docs output and target stores
# CREATED: 07 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for build runs.
These can be overridden via environment variables or explicit arguments.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from core.contracts import MaterializationKind


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if not value:
        return None
    return float(value)


@dataclass(frozen=True)
class BuildDefaults:
    """
    Defaults for build and test runs.

    Controls worker concurrency, materialization fallback and test gating.
    """
    # Max concurrent model builds / test queries
    threads: int = 4

    # Global materialization when neither model nor namespace sets one
    default_materialization: MaterializationKind = MaterializationKind.VIEW

    # Schema used when no namespace sets +schema
    target_schema: str = "analytics"

    # Run the test gate right after a build run
    run_tests_after_build: bool = True

    # An error-severity test failure skips the model's dependents
    test_failure_blocks_dependents: bool = False

    # Overall run deadline; pending steps are abandoned once exceeded
    deadline_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> "BuildDefaults":
        """Create from environment variables."""
        return cls(
            threads=max(1, int(os.getenv("MODELS_THREADS", 4))),
            default_materialization=MaterializationKind(
                os.getenv("MODELS_DEFAULT_MATERIALIZATION", MaterializationKind.VIEW.value)
            ),
            target_schema=os.getenv("MODELS_TARGET_SCHEMA", "analytics"),
            run_tests_after_build=_env_bool("MODELS_RUN_TESTS_AFTER_BUILD", True),
            test_failure_blocks_dependents=_env_bool("MODELS_TESTS_BLOCK_DEPENDENTS", False),
            deadline_seconds=_env_float("MODELS_RUN_DEADLINE_SEC"),
        )


@dataclass(frozen=True)
class DocsDefaults:
    """Defaults for the static docs artifact."""
    output_dir: str = "target/docs"
    manifest_name: str = "manifest.json"
    index_name: str = "index.md"

    @classmethod
    def from_env(cls) -> "DocsDefaults":
        """Create from environment variables."""
        return cls(output_dir=os.getenv("MODELS_DOCS_DIR", "target/docs"))


@dataclass(frozen=True)
class StoreDefaults:
    """
    Defaults for the target store.

    backend selects which store the CLI and API construct:
    - duckdb: local file or in-memory database (development, CI)
    - postgres: PostgreSQL via psycopg (DATABASE_URL or POSTGRES_* vars)
    """
    backend: str = "duckdb"
    duckdb_path: str = ":memory:"

    @classmethod
    def from_env(cls) -> "StoreDefaults":
        """Create from environment variables."""
        return cls(
            backend=os.getenv("MODELS_STORE", "duckdb").lower(),
            duckdb_path=os.getenv("MODELS_DUCKDB_PATH", ":memory:"),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    build: BuildDefaults = field(default_factory=BuildDefaults)
    docs: DocsDefaults = field(default_factory=DocsDefaults)
    store: StoreDefaults = field(default_factory=StoreDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            build=BuildDefaults.from_env(),
            docs=DocsDefaults.from_env(),
            store=StoreDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


__all__ = [
    "BuildDefaults",
    "DocsDefaults",
    "StoreDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
