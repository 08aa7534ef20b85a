# ============================================================================
# VERSION - MODEL BUILD ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# ============================================================================
"""
Version information for the Model Build Orchestrator.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch.build
# Criteria for 0.3 - build/test/docs runs work end to end on DuckDB
__version__ = "0.3.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-19"

EPOCH = 1
CODENAME = "Model Build Orchestrator"
