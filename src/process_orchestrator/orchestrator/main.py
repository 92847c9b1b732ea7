"""CLI entrypoint for the process orchestrator."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from process_orchestrator import __version__
from process_orchestrator.core.config import OrchestratorConfig, RunStorageConfig
from process_orchestrator.core.errors import (
    BreakpointAlreadyResolved,
    BreakpointNotFound,
    RunAlreadyExists,
    RunNotFound,
    UnknownTask,
)
from process_orchestrator.core.orchestrator import Orchestrator
from process_orchestrator.runtime.driver import ProcessSuccess, ProcessSuspended

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_PROCESS_FAILED = 3
EXIT_WAITING = 4

_REVIEWERS = ["auto", "console", "store", "defer"]


def _parse_inputs(value: str | None) -> dict[str, Any]:
    """Accept a path to a JSON file or an inline JSON object."""
    if value is None:
        return {}
    path = Path(value)
    text = path.read_text(encoding="utf-8") if path.is_file() else value
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("--inputs must be a JSON object")
    return parsed


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orchestrator",
        description="Durable process orchestrator with human breakpoints",
    )
    parser.add_argument(
        "--version", action="version", version=f"process-orchestrator {__version__}"
    )
    parser.add_argument(
        "--runs-root",
        default=None,
        help="Directory holding run state (overrides ORCHESTRATOR_RUNS_ROOT)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("processes", help="List registered processes")

    run = subparsers.add_parser("run", help="Start a new run of a process")
    run.add_argument("process_id", help="Catalog process id or 'module:attribute' entrypoint")
    run.add_argument(
        "--inputs",
        default=None,
        help="Process inputs as a JSON file path or an inline JSON object",
    )
    run.add_argument("--run-id", default=None, help="Explicit run id (default: generated)")
    run.add_argument("--request", default=None, help="Free-text request recorded with the run")
    run.add_argument(
        "--reviewer",
        choices=_REVIEWERS,
        default=None,
        help="Breakpoint decision channel (default from settings)",
    )

    resume = subparsers.add_parser("resume", help="Resume a waiting or interrupted run")
    resume.add_argument("run_id", help="Run id")
    resume.add_argument("--reviewer", choices=_REVIEWERS, default=None)

    runs = subparsers.add_parser("runs", help="Inspect runs")
    runs_sub = runs.add_subparsers(dest="runs_command", required=True)
    runs_sub.add_parser("list", help="List runs")
    runs_show = runs_sub.add_parser("show", help="Show a run snapshot")
    runs_show.add_argument("run_id", help="Run id")

    journal = subparsers.add_parser("journal", help="Print a run's journal")
    journal.add_argument("run_id", help="Run id")

    breakpoints = subparsers.add_parser("breakpoints", help="Inspect and resolve breakpoints")
    bp_sub = breakpoints.add_subparsers(dest="breakpoints_command", required=True)
    bp_list = bp_sub.add_parser("list", help="List breakpoints")
    bp_list.add_argument("--run-id", default=None, help="Only this run")
    bp_list.add_argument("--all", action="store_true", help="Include released breakpoints")
    bp_resolve = bp_sub.add_parser("resolve", help="Record a decision for a breakpoint")
    bp_resolve.add_argument("run_id", help="Run id")
    bp_resolve.add_argument("breakpoint_id", help="Breakpoint id, e.g. bp-0001")
    bp_resolve.add_argument(
        "--action", required=True, choices=["proceed", "abort", "retry"], help="Decision"
    )
    bp_resolve.add_argument("--comment", default=None, help="Reviewer comment")
    bp_resolve.add_argument("--author", default=None, help="Reviewer name")

    return parser


def _result_exit_code(result: object) -> int:
    if isinstance(result, ProcessSuccess):
        return EXIT_OK
    if isinstance(result, ProcessSuspended):
        return EXIT_WAITING
    return EXIT_PROCESS_FAILED


def main(argv: list[str] | None = None, *, orchestrator: Orchestrator | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if orchestrator is None:
        try:
            config = OrchestratorConfig()
            if args.runs_root:
                config.runs = RunStorageConfig(root=Path(args.runs_root))
        except ValidationError as e:
            # Logging isn't configured yet; keep it simple and actionable.
            print("Configuration error (check your .env):", file=sys.stderr)
            print(e, file=sys.stderr)
            return EXIT_USAGE
        orchestrator = Orchestrator(config)

    try:
        if args.command == "processes":
            for process_id in orchestrator.list_processes():
                print(process_id)
            return EXIT_OK

        if args.command == "run":
            try:
                inputs = _parse_inputs(args.inputs)
            except (ValueError, OSError) as e:
                print(f"Invalid --inputs: {e}", file=sys.stderr)
                return EXIT_USAGE
            result = orchestrator.run(
                args.process_id,
                inputs,
                run_id=args.run_id,
                reviewer=args.reviewer,
                request=args.request,
            )
            _print_json(result.to_json())
            return _result_exit_code(result)

        if args.command == "resume":
            result = orchestrator.resume(args.run_id, reviewer=args.reviewer)
            _print_json(result.to_json())
            return _result_exit_code(result)

        if args.command == "runs":
            if args.runs_command == "list":
                for record in orchestrator.list_runs():
                    print(f"{record.run_id}\t{record.status.value}\t{record.process_id}\t{record.created_at}")
                return EXIT_OK
            _print_json(orchestrator.get_run(args.run_id).to_json())
            return EXIT_OK

        if args.command == "journal":
            for event in orchestrator.journal(args.run_id):
                print(json.dumps(event.to_json(), ensure_ascii=False, default=str))
            return EXIT_OK

        if args.command == "breakpoints":
            if args.breakpoints_command == "list":
                records = orchestrator.list_breakpoints(
                    run_id=args.run_id, waiting_only=not args.all
                )
                for record in records:
                    print(
                        f"{record.run_id}\t{record.breakpoint_id}\t{record.status.value}\t{record.title}"
                    )
                return EXIT_OK
            record = orchestrator.resolve_breakpoint(
                args.run_id,
                args.breakpoint_id,
                action=args.action,
                comment=args.comment,
                author=args.author,
            )
            print(f"Resolved {record.run_id}/{record.breakpoint_id}: {args.action}")
            return EXIT_OK

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_USAGE

    except (RunNotFound, BreakpointNotFound, RunAlreadyExists, KeyError) as e:
        print(str(e).strip("'\""), file=sys.stderr)
        return EXIT_USAGE

    except BreakpointAlreadyResolved as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return EXIT_PROCESS_FAILED

    except UnknownTask as e:
        logger.error("Process references an unregistered task", extra={"task": e.name})
        print(str(e), file=sys.stderr)
        return EXIT_ERROR

    except Exception:
        logger.exception("Command failed")
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
