# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Project loading layer
# PURPOSE: Turn a project directory into definitions the engine consumes
# CREATED: 10 OCT 2026
# ============================================================================
"""
Services Module

Usage:
    from services import ProjectService

    project = ProjectService("example_project").load()
"""

from .project_service import PROJECT_FILE, ProjectService, parse_config_call

__all__ = [
    "PROJECT_FILE",
    "ProjectService",
    "parse_config_call",
]
