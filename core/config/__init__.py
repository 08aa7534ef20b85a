# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 07 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the model build orchestrator.
"""

from core.config.defaults import (
    BuildDefaults,
    DocsDefaults,
    StoreDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "BuildDefaults",
    "DocsDefaults",
    "StoreDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
