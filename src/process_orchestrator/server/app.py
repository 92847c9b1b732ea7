"""FastAPI app factory.

Endpoints are thin wrappers over the run store and the breakpoint store.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from process_orchestrator import __version__
from process_orchestrator.core.errors import (
    BreakpointAlreadyResolved,
    BreakpointNotFound,
    RunNotFound,
)
from process_orchestrator.runtime.breakpoints import (
    BreakpointRecord,
    BreakpointStatus,
    BreakpointStore,
)
from process_orchestrator.runtime.storage import RunRecord, RunStore
from process_orchestrator.server.config import ServerSettings
from process_orchestrator.server.models import ApiBreakpoint, ApiRun, DecisionRequest

logger = logging.getLogger(__name__)


def _to_api_run(record: RunRecord) -> ApiRun:
    return ApiRun.model_validate(record.model_dump(mode="json"))


def _to_api_breakpoint(record: BreakpointRecord) -> ApiBreakpoint:
    data = record.model_dump(mode="json")
    decision = record.decision.to_json() if record.decision else None
    return ApiBreakpoint.model_validate({**data, "decision": decision})


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    settings = settings or ServerSettings()

    app = FastAPI(
        title="Process Orchestrator",
        version=__version__,
        description="Review API over durable process runs and their breakpoints.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = RunStore(settings.runs_root)
    breakpoints = BreakpointStore(store)

    def _load_run(run_id: str) -> RunRecord:
        try:
            return store.load_run(run_id)
        except (RunNotFound, ValueError) as e:
            raise HTTPException(status_code=404, detail="Run not found") from e

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/runs", response_model=list[ApiRun])
    def list_runs() -> list[ApiRun]:
        return [_to_api_run(r) for r in store.list_runs()]

    @app.get("/api/runs/{run_id}")
    def get_run(run_id: str) -> dict[str, Any]:
        record = _load_run(run_id)
        return {
            "run": _to_api_run(record).model_dump(),
            "snapshot": store.snapshot(run_id).to_json(),
            "result": store.read_process_result(run_id),
        }

    @app.get("/api/runs/{run_id}/journal")
    def get_journal(run_id: str) -> list[dict[str, Any]]:
        _load_run(run_id)
        return [event.to_json() for event in store.journal(run_id).load()]

    @app.get("/api/breakpoints", response_model=list[ApiBreakpoint])
    def list_breakpoints(status: BreakpointStatus | None = None) -> list[ApiBreakpoint]:
        return [_to_api_breakpoint(r) for r in breakpoints.list(status=status)]

    @app.get("/api/runs/{run_id}/breakpoints/{breakpoint_id}", response_model=ApiBreakpoint)
    def get_breakpoint(run_id: str, breakpoint_id: str) -> ApiBreakpoint:
        _load_run(run_id)
        try:
            return _to_api_breakpoint(breakpoints.require(run_id, breakpoint_id))
        except (BreakpointNotFound, ValueError) as e:
            raise HTTPException(status_code=404, detail="Breakpoint not found") from e

    @app.post(
        "/api/runs/{run_id}/breakpoints/{breakpoint_id}/decision", response_model=ApiBreakpoint
    )
    def decide(run_id: str, breakpoint_id: str, req: DecisionRequest) -> ApiBreakpoint:
        _load_run(run_id)
        try:
            record = breakpoints.resolve(
                run_id,
                breakpoint_id,
                action=req.action,
                comment=req.comment,
                author=req.author or settings.decision_author,
            )
        except (BreakpointNotFound, ValueError) as e:
            raise HTTPException(status_code=404, detail="Breakpoint not found") from e
        except BreakpointAlreadyResolved as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        logger.info(
            "Decision recorded via API",
            extra={"run_id": run_id, "breakpoint_id": breakpoint_id, "action": req.action},
        )
        return _to_api_breakpoint(record)

    return app
