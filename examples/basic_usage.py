#!/usr/bin/env python3
"""Programmatic container-security run.

This demonstrates using the orchestrator components directly:

* load settings from `.env` (an OpenAI key backs the agent tasks)
* start the container-security process against a list of images
* answer the final review breakpoint on the console

Runs are persisted under `ORCHESTRATOR_RUNS_ROOT` (default `.runs`) and can be
inspected afterwards with `orchestrator runs show <run-id>`.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from process_orchestrator.core.config import OrchestratorConfig
from process_orchestrator.core.orchestrator import Orchestrator
from process_orchestrator.processes import container_security


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan container images (programmatic example).")
    parser.add_argument("images", nargs="+", help='Images to scan, e.g. "nginx:alpine"')
    parser.add_argument("--registry-url", default=None, help="Registry to validate (optional)")
    parser.add_argument(
        "--sign",
        action="store_true",
        help="Sign images after a passing scan",
    )
    parser.add_argument("--run-id", default=None, help="Explicit run id (optional)")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    inputs: dict[str, object] = {"containerImages": args.images, "signImages": args.sign}
    if args.registry_url:
        inputs["registryUrl"] = args.registry_url

    orchestrator = Orchestrator(OrchestratorConfig())
    result = orchestrator.run(
        container_security.PROCESS_ID,
        inputs,
        run_id=args.run_id,
        reviewer="console",
        request=f"Scan {', '.join(args.images)}",
    )

    print(json.dumps(result.to_json(), indent=2))
    if result.status == "succeeded":
        print(f"Security score: {result.score}")
        return 0
    if result.status == "waiting":
        print(f"Waiting on breakpoint {result.breakpoint_id}")
        return 4
    print(f"Failed at {result.failed_step}: {result.error}")
    return 3


if __name__ == "__main__":
    raise SystemExit(main())
