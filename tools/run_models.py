#!/usr/bin/env python3
# ============================================================================
# CLI RUN TOOL
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Tool - Command-line trigger
# PURPOSE: Run build / test / docs against a project directory
# CREATED: 16 OCT 2026
# ============================================================================
"""
Run the orchestrator from the command line.

The process exit code is the Run Record's: 0 success, 1 failed, 2 aborted.

Usage:
    # Build everything, then run tests
    python tools/run_models.py build --project example_project --seeds example_project/seeds

    # Build one model and its ancestors, skip ancestors that already exist
    python tools/run_models.py build -s +fct_orders --defer-existing --duckdb target/dev.duckdb

    # Test only, JSON record on stdout
    python tools/run_models.py test -s tag:finance --json

    # Docs artifact
    python tools/run_models.py docs --output-dir target/docs
"""

import argparse
import asyncio
import json
import os
import sys
from dataclasses import replace
from typing import List, Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Defaults, get_defaults
from core.contracts import RunPhase
from core.errors import ProjectLoadError, StoreError
from core.logging import configure_logging
from core.models import RunRecord, RunSelection
from infrastructure import DuckDBTargetStore, create_target_store
from orchestrator import CancellationToken, RunCoordinator, aborted_record
from services import ProjectService


def _split(values: Optional[List[str]]) -> List[str]:
    """Accept both repeated flags and comma-separated values."""
    result = []
    for value in values or []:
        result.extend(part.strip() for part in value.split(",") if part.strip())
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Dependency-aware builds of SQL models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s build --project example_project --seeds example_project/seeds
  %(prog)s build -s +fct_orders --threads 8 --deadline 900
  %(prog)s test -s tag:finance --json
  %(prog)s docs --output-dir target/docs
        """,
    )
    parser.add_argument("command", choices=[phase.value for phase in RunPhase], help="Run phase")
    parser.add_argument(
        "--project", "-p",
        default=os.environ.get("MODELS_PROJECT_DIR", "."),
        help="Project directory containing project.yml (default: MODELS_PROJECT_DIR or .)",
    )
    parser.add_argument("--select", "-s", action="append", help="Selector (repeatable, comma-separated)")
    parser.add_argument("--exclude", "-x", action="append", help="Selector to exclude")
    parser.add_argument(
        "--no-ancestors",
        action="store_true",
        help="Build only the selected models, not their upstream dependencies",
    )
    parser.add_argument("--descendants", action="store_true", help="Also include downstream models")
    parser.add_argument(
        "--defer-existing",
        action="store_true",
        help="Skip ancestors whose objects already exist in the store",
    )
    parser.add_argument("--threads", "-t", type=int, help="Concurrent model builds")
    parser.add_argument("--deadline", type=float, help="Run deadline in seconds")
    parser.add_argument("--no-tests", action="store_true", help="Build without running tests")
    parser.add_argument("--run-id", help="Run id (auto-generated if not set)")
    parser.add_argument("--output-dir", help="Docs output directory")
    parser.add_argument("--duckdb", help="DuckDB database file (overrides MODELS_STORE)")
    parser.add_argument("--seeds", help="Directory of <schema>/<table>.csv raw data (DuckDB only)")
    parser.add_argument("--json", action="store_true", help="Print the Run Record as JSON")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "WARNING"))
    return parser


def _selection(args: argparse.Namespace) -> RunSelection:
    include_ancestors = args.command == RunPhase.BUILD.value and not args.no_ancestors
    return RunSelection(
        select=_split(args.select),
        exclude=_split(args.exclude),
        include_ancestors=include_ancestors,
        include_descendants=args.descendants,
        defer_existing=args.defer_existing,
    )


def _defaults(args: argparse.Namespace) -> Defaults:
    defaults = get_defaults()
    build = defaults.build
    if args.threads:
        build = replace(build, threads=max(1, args.threads))
    store = defaults.store
    if args.duckdb:
        store = replace(store, backend="duckdb", duckdb_path=args.duckdb)
    return Defaults(build=build, docs=defaults.docs, store=store)


def print_record(record: RunRecord, as_json: bool) -> None:
    if as_json:
        payload = record.model_dump(mode="json")
        payload["exit_code"] = record.exit_code
        print(json.dumps(payload, indent=2))
        return

    reason = f" ({record.failure_reason.value})" if record.failure_reason else ""
    print(f"Run {record.run_id} [{record.phase.value}]: {record.status.value}{reason}")
    for result in record.model_results:
        detail = f" - {result.message}" if result.message else ""
        print(f"  model {result.model:<40} {result.outcome.value}{detail}")
    for result in record.test_results:
        detail = f" - {result.violations} rows" if result.violations else ""
        print(f"  test  {result.test:<40} {result.outcome.value}{detail}")
    if record.docs_path:
        print(f"  docs written to {record.docs_path}")
    for error in record.errors:
        print(f"  ERROR: {error}", file=sys.stderr)


async def run(args: argparse.Namespace, token: Optional[CancellationToken] = None) -> RunRecord:
    """Execute one CLI invocation and return its finalized record."""
    phase = RunPhase(args.command)
    selection = _selection(args)

    try:
        project = ProjectService(args.project).project
    except ProjectLoadError as e:
        return aborted_record(phase, str(e), selection=selection, run_id=args.run_id)

    defaults = _defaults(args)
    store = create_target_store(defaults.store)
    try:
        if args.seeds:
            if not isinstance(store, DuckDBTargetStore):
                return aborted_record(phase, "--seeds requires the duckdb store", selection, args.run_id)
            try:
                store.load_seed_dir(args.seeds)
            except StoreError as e:
                return aborted_record(phase, f"failed to load seeds: {e}", selection, args.run_id)

        coordinator = RunCoordinator(project, store, defaults)
        if phase == RunPhase.BUILD:
            return await coordinator.build(
                selection,
                run_id=args.run_id,
                cancel_token=token,
                deadline_seconds=args.deadline,
                with_tests=False if args.no_tests else None,
            )
        if phase == RunPhase.TEST:
            return await coordinator.test(
                selection,
                run_id=args.run_id,
                cancel_token=token,
                deadline_seconds=args.deadline,
            )
        return coordinator.generate_docs(args.output_dir, run_id=args.run_id)
    finally:
        store.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, json_output=os.environ.get("LOG_FORMAT", "").lower() == "json")

    token = CancellationToken()
    try:
        record = asyncio.run(run(args, token))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 1

    print_record(record, args.json)
    return record.exit_code


if __name__ == "__main__":
    sys.exit(main())
