"""FastAPI review API for process-orchestrator.

Exposes run state and lets reviewers record breakpoint decisions; the runs
themselves continue through ``orchestrator resume`` or a store-polling
reviewer.
"""

from __future__ import annotations

__all__ = ["create_app"]

from process_orchestrator.server.app import create_app
