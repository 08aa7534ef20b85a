# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across all components
# CREATED: 06 OCT 2026
# ============================================================================
"""
Structured Logging

Provides structured, JSON-formatted logging for the model build orchestrator.

Features:
- Contextual fields (run_id, phase, model, test)
- JSON output for log aggregation
- Human-readable output for local runs
- Named checkpoints for tracing run progress

Usage:
    from core.logging import get_logger, log_checkpoint, log_context

    logger = get_logger("orchestrator.coordinator")

    with log_context(run_id="run-123", phase="build"):
        logger.info("Building plan")
        log_checkpoint("run_started", {"model_count": 5})
"""

import json
import logging
import os
import sys

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class LogContext:
    """
    Fields attached to every line logged inside a log_context() block.

    Held in a ContextVar: each asyncio task of a run (one per model step)
    sees its own copy, so concurrent steps never mix their model names.
    Worker threads started through call_store inherit a copied context.
    """
    run_id: Optional[str] = None
    phase: Optional[str] = None
    model: Optional[str] = None
    test: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Set fields only; extra is flattened in."""
        result = {
            key: value for key, value in asdict(self).items()
            if value is not None and key != "extra"
        }
        result.update(self.extra)
        return result


_context_stack: ContextVar[Tuple[LogContext, ...]] = ContextVar("log_context_stack", default=())

_FIELDS = ("run_id", "phase", "model", "test")


def get_current_context() -> LogContext:
    stack = _context_stack.get()
    return stack[-1] if stack else LogContext()


@contextmanager
def log_context(**kwargs):
    """
    Push context fields for the duration of the block.

    Known fields (run_id, phase, model, test) override the enclosing
    context; any other keyword lands in extra.

    Example:
        with log_context(run_id="run-123", model="fct_orders"):
            logger.info("Building model")
    """
    parent = get_current_context()
    known = {key: value for key, value in kwargs.items() if key in _FIELDS}
    extra = {key: value for key, value in kwargs.items() if key not in _FIELDS}
    new_context = replace(parent, **known, extra={**parent.extra, **extra})

    token = _context_stack.set(_context_stack.get() + (new_context,))
    try:
        yield new_context
    finally:
        _context_stack.reset(token)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp() -> str:
    return _utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Keys: timestamp, level, logger, message, context (active log_context
    fields), data (checkpoint payloads), exception, source.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": _timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context_dict = get_current_context().to_dict()
        if context_dict:
            log_data["context"] = context_dict

        payload = getattr(record, "extra", None)
        if payload:
            log_data["data"] = payload

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """
    Single-line output for terminals.

        2026-10-17 09:12:44 INFO     orchestrator.coordinator [run=run-1, model=fct_orders]: ...
    """

    # Context fields shown inline, in this order
    FIELDS = (("run_id", "run"), ("phase", "phase"), ("model", "model"), ("test", "test"))

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _utcnow().strftime("%Y-%m-%d %H:%M:%S")
        context = get_current_context().to_dict()
        parts = [f"{label}={context[key]}" for key, label in self.FIELDS if context.get(key)]
        context_str = f" [{', '.join(parts)}]" if parts else ""

        result = f"{timestamp} {record.levelname:<8} {record.name}{context_str}: {record.getMessage()}"

        payload = getattr(record, "extra", None)
        if payload and payload.get("data"):
            result += f" {payload['data']}"
        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"
        return result


def get_logger(name: str) -> logging.Logger:
    """Module logger; context fields are added by the formatters."""
    return logging.getLogger(name)


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Log level name or number
        json_output: JSON lines (LOG_FORMAT=json also enables it)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    json_output = json_output or os.getenv("LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if json_output else HumanFormatter())
    root.addHandler(handler)

    # Driver chatter stays out of run logs
    for noisy in ("duckdb", "psycopg", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named checkpoint (run_started, model_built, model_failed,
    run_finalized) with the active context, so a run can be replayed from
    its log lines alone.
    """
    checkpoint_data: Dict[str, Any] = {"checkpoint": name, "timestamp": _timestamp()}
    checkpoint_data.update(get_current_context().to_dict())
    if data:
        checkpoint_data["data"] = data

    (logger or logging.getLogger("checkpoint")).info(
        f"CHECKPOINT: {name}", extra={"extra": checkpoint_data}
    )


__all__ = [
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
