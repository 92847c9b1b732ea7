"""Module entry point: ``python -m process_orchestrator.cli``."""

from __future__ import annotations

from process_orchestrator.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
