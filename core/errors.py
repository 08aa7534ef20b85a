# ============================================================================
# ERRORS
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Foundation - Exception hierarchy
# PURPOSE: Configuration, selection, execution and store errors
# CREATED: 06 OCT 2026
# ============================================================================
"""
Exception hierarchy for the model build orchestrator.

Configuration-time errors (ConfigurationError subclasses) abort a run before
any model executes. ExecutionError is scoped to one model and its downstream
subtree. None of these cross the RunCoordinator boundary: the coordinator
converts them into Run Record entries.
"""

from typing import Iterable, List, Optional, Sequence, Tuple


class ModelBuildError(Exception):
    """Base exception for the orchestrator."""
    pass


# ============================================================================
# CONFIGURATION ERRORS (fatal, before any execution)
# ============================================================================

class ConfigurationError(ModelBuildError):
    """Project or graph configuration is invalid; nothing may execute."""
    pass


class ProjectLoadError(ConfigurationError):
    """Raised when project files cannot be read or parsed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class DuplicateModelError(ConfigurationError):
    """Raised when two model definitions share a name."""

    def __init__(self, model_name: str, paths: Sequence[str] = ()):
        self.model_name = model_name
        self.paths = list(paths)
        detail = f" ({', '.join(self.paths)})" if self.paths else ""
        super().__init__(f"Duplicate model name: {model_name}{detail}")


class DuplicateTestError(ConfigurationError):
    """Raised when two tests resolve to the same name."""

    def __init__(self, test_name: str, owners: Sequence[str] = ()):
        self.test_name = test_name
        self.owners = list(owners)
        detail = f" ({', '.join(self.owners)})" if self.owners else ""
        super().__init__(
            f"Duplicate test name: {test_name}{detail}; give one of them an explicit name"
        )


class UnresolvedReferenceError(ConfigurationError):
    """
    Raised when a reference does not name an existing model or source.

    Collects every offending (model, reference) pair rather than only the first.
    """

    def __init__(self, unresolved: Iterable[Tuple[str, str]]):
        self.unresolved: List[Tuple[str, str]] = sorted(set(unresolved))
        self.references = sorted({ref for _, ref in self.unresolved})
        details = ", ".join(f"{model} -> {ref}" for model, ref in self.unresolved)
        super().__init__(f"Unresolved reference(s): {details}")


class CycleDetectedError(ConfigurationError):
    """Raised when model references form a cycle."""

    def __init__(self, models: Iterable[str]):
        self.models = sorted(set(models))
        super().__init__(f"Cycle detected involving models: {self.models}")


# ============================================================================
# SELECTION ERRORS (fatal for one invocation)
# ============================================================================

class SelectionError(ModelBuildError):
    """Raised when a selector names no known model."""

    def __init__(self, message: str, selector: Optional[str] = None):
        self.selector = selector
        super().__init__(message)


# ============================================================================
# EXECUTION ERRORS (scoped to one model subtree)
# ============================================================================

class ExecutionError(ModelBuildError):
    """Raised when building one model fails."""

    def __init__(self, model_name: str, message: str):
        self.model_name = model_name
        super().__init__(f"{model_name}: {message}")


class CompilationError(ExecutionError):
    """Raised when a model's definition text cannot be rendered."""
    pass


class StoreError(ModelBuildError):
    """Raised by target stores for failed operations."""

    def __init__(self, message: str, operation: Optional[str] = None, object_name: Optional[str] = None):
        self.operation = operation
        self.object_name = object_name
        super().__init__(message)


# ============================================================================
# RUN RECORD ERRORS
# ============================================================================

class RunRecordFinalizedError(ModelBuildError):
    """Raised when a finalized Run Record is modified."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run record {run_id} is finalized and immutable")


class InvalidStatusTransitionError(ModelBuildError):
    """Raised when a Run Record status change is not allowed."""

    def __init__(self, current: str, requested: str, allowed: Iterable[str]):
        self.current = current
        self.requested = requested
        self.allowed = sorted(allowed)
        super().__init__(
            f"Invalid status transition: {current} -> {requested}. "
            f"Allowed from {current}: {self.allowed}"
        )


# ============================================================================
# TEST REGISTRY ERRORS
# ============================================================================

class DuplicateGenericTestError(ModelBuildError):
    """Raised when a generic test name is already registered."""

    def __init__(self, test_name: str):
        self.test_name = test_name
        super().__init__(f"Generic test already registered: {test_name}")


class UnknownGenericTestError(ModelBuildError):
    """Raised when a generic test is not found in the registry."""

    def __init__(self, test_name: str):
        self.test_name = test_name
        super().__init__(f"Generic test not found: {test_name}")


__all__ = [
    "ModelBuildError",
    "ConfigurationError",
    "ProjectLoadError",
    "DuplicateModelError",
    "DuplicateTestError",
    "UnresolvedReferenceError",
    "CycleDetectedError",
    "SelectionError",
    "ExecutionError",
    "CompilationError",
    "StoreError",
    "RunRecordFinalizedError",
    "InvalidStatusTransitionError",
    "DuplicateGenericTestError",
    "UnknownGenericTestError",
]
