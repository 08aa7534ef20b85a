# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Run coordination
# PURPOSE: Coordinate build, test and docs runs over the model graph
# CREATED: 12 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import RunCoordinator

    coordinator = RunCoordinator(project, store)
    record = await coordinator.build(RunSelection(select=["fct_orders"]))
    sys.exit(record.exit_code)
"""

from .coordinator import CancellationToken, RunCoordinator, RunRegistry, aborted_record
from .docs import DocsGenerator

__all__ = [
    "CancellationToken",
    "RunCoordinator",
    "RunRegistry",
    "aborted_record",
    "DocsGenerator",
]
