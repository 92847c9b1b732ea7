"""Process definitions and the runner that executes them durably.

A process is a plain function ``(inputs, ctx) -> dict`` written against the
:class:`RunContext` helpers. The runner owns the run lifecycle: it creates
the run directory, builds a fresh context per session, converts driver
exceptions into a :data:`ProcessResult` and persists it as ``result.json``.

Resuming re-executes the same function with the recorded inputs. Control
flow is deterministic, so the same effect ids come back: recorded results
are replayed and resolved breakpoints return their recorded decision.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from process_orchestrator.core.config import EffectConfig, RunStorageConfig
from process_orchestrator.core.errors import (
    EffectError,
    OrchestratorError,
    ProcessAborted,
    ProcessFailed,
    RunSuspended,
    ScoreNotFinal,
    UnknownTask,
)
from process_orchestrator.runtime.breakpoints import (
    BreakpointController,
    BreakpointNotifier,
    BreakpointStore,
    ReviewerChannel,
)
from process_orchestrator.runtime.clock import Clock, SystemClock, utc_iso
from process_orchestrator.runtime.context import Artifact, RunContext
from process_orchestrator.runtime.executors import AgentExecutor, UnavailableAgentExecutor
from process_orchestrator.runtime.invoker import EffectInvoker
from process_orchestrator.runtime.parallel import ParallelGroupExecutor
from process_orchestrator.runtime.reviewers import DeferredReviewer
from process_orchestrator.runtime.scoring import ScoreLedger, ScorePolicy
from process_orchestrator.runtime.storage import CamelModel, RunRecord, RunStatus, RunStore, new_run_id
from process_orchestrator.runtime.tasks import TaskRegistry

logger = logging.getLogger(__name__)

ProcessFn = Callable[[dict[str, Any], RunContext], dict[str, Any] | None]


class ProcessMetadata(CamelModel):
    process_id: str
    run_id: str
    started_at: str
    finished_at: str


class ProcessSuccess(CamelModel):
    status: Literal["succeeded"] = "succeeded"
    success: Literal[True] = True
    outputs: dict[str, Any] = Field(default_factory=dict)
    score: int | None = None
    artifacts: list[Artifact] = Field(default_factory=list)
    duration: float
    metadata: ProcessMetadata


class ProcessFailure(CamelModel):
    status: Literal["failed"] = "failed"
    success: Literal[False] = False
    error: str
    failed_step: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[Artifact] = Field(default_factory=list)
    duration: float
    metadata: ProcessMetadata


class ProcessSuspended(CamelModel):
    status: Literal["waiting"] = "waiting"
    success: Literal[False] = False
    breakpoint_id: str
    artifacts: list[Artifact] = Field(default_factory=list)
    duration: float
    metadata: ProcessMetadata


ProcessResult = Annotated[
    Union[ProcessSuccess, ProcessFailure, ProcessSuspended],
    Field(discriminator="status"),
]

process_result_adapter: TypeAdapter[ProcessResult] = TypeAdapter(ProcessResult)


@dataclass(frozen=True)
class ProcessDefinition:
    """A named process function plus the tasks it may invoke."""

    process_id: str
    fn: ProcessFn
    registry: TaskRegistry
    description: str = ""
    entrypoint: str | None = None

    def execute(
        self,
        inputs: dict[str, Any],
        *,
        runner: ProcessRunner | None = None,
        run_id: str | None = None,
    ) -> ProcessResult:
        """Boundary contract: ``execute(inputs) -> ProcessResult``."""

        return (runner or ProcessRunner()).start(self, inputs, run_id=run_id)


def load_entrypoint(entrypoint: str) -> ProcessDefinition:
    """Import ``"package.module:attribute"`` and return the process definition."""

    module_name, sep, attr = entrypoint.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Entrypoint must look like 'module:attribute', got {entrypoint!r}")
    module = importlib.import_module(module_name)
    target = getattr(module, attr, None)
    if not isinstance(target, ProcessDefinition):
        raise TypeError(f"{entrypoint} is not a ProcessDefinition")
    return target


class ProcessRunner:
    """Start and resume runs against a run store."""

    def __init__(
        self,
        *,
        store: RunStore | None = None,
        agent_executor: AgentExecutor | None = None,
        reviewer: ReviewerChannel | None = None,
        notifier: BreakpointNotifier | None = None,
        clock: Clock | None = None,
        effect_config: EffectConfig | None = None,
        scoring_policy: ScorePolicy = "normalized",
    ) -> None:
        self.store = store or RunStore(RunStorageConfig().root)
        self.breakpoint_store = BreakpointStore(self.store)
        self.agent_executor = agent_executor or UnavailableAgentExecutor()
        self.reviewer = reviewer or DeferredReviewer()
        self.notifier = notifier
        self.clock = clock
        self.effect_config = effect_config or EffectConfig()
        self.scoring_policy = scoring_policy

    def start(
        self,
        process: ProcessDefinition,
        inputs: dict[str, Any],
        *,
        run_id: str | None = None,
        request: str | None = None,
    ) -> ProcessResult:
        run_id = run_id or new_run_id()
        record = self.store.create_run(
            run_id=run_id,
            process_id=process.process_id,
            inputs=dict(inputs),
            entrypoint=process.entrypoint,
            request=request,
        )
        clock = self.clock or SystemClock()
        self.store.journal(run_id).append(
            "RUN_CREATED",
            {"processId": process.process_id, "entrypoint": process.entrypoint, "inputs": inputs},
            recorded_at=clock.now(),
        )
        return self._execute(process, record, clock)

    def resume(self, run_id: str, *, process: ProcessDefinition | None = None) -> ProcessResult:
        record = self.store.load_run(run_id)
        if record.status == RunStatus.SUCCEEDED:
            recorded = self.store.read_process_result(run_id)
            if recorded is not None:
                logger.info(
                    "Run already finished; returning recorded result",
                    extra={"run_id": run_id, "status": record.status.value},
                )
                return process_result_adapter.validate_python(recorded)

        if process is None:
            if not record.entrypoint:
                raise OrchestratorError(
                    f"Run {run_id} has no recorded entrypoint; pass the process explicitly"
                )
            process = load_entrypoint(record.entrypoint)

        clock = self.clock or SystemClock()
        self.store.journal(run_id).append(
            "RUN_RESUMED",
            {"processId": process.process_id, "previousStatus": record.status.value},
            recorded_at=clock.now(),
        )
        return self._execute(process, record, clock)

    def _execute(self, process: ProcessDefinition, record: RunRecord, clock: Clock) -> ProcessResult:
        run_id = record.run_id
        journal = self.store.journal(run_id)
        process.registry.freeze()

        invoker = EffectInvoker(
            run_id=run_id,
            store=self.store,
            journal=journal,
            clock=clock,
            agent_executor=self.agent_executor,
            config=self.effect_config,
        )
        controller = BreakpointController(
            run_id=run_id,
            store=self.breakpoint_store,
            journal=journal,
            clock=clock,
            reviewer=self.reviewer,
            notifier=self.notifier,
        )
        ctx = RunContext(
            run_id=run_id,
            process_id=process.process_id,
            registry=process.registry,
            journal=journal,
            invoker=invoker,
            breakpoints=controller,
            clock=clock,
            ledger=ScoreLedger(self.scoring_policy),
            parallel_executor=ParallelGroupExecutor(self.effect_config.max_parallel),
        )
        self.store.update_run(run_id, status=RunStatus.RUNNING)
        logger.info("Run started", extra={"run_id": run_id, "process_id": process.process_id})

        fatal: UnknownTask | None = None
        result: ProcessSuccess | ProcessFailure | ProcessSuspended
        try:
            outputs = process.fn(dict(record.inputs), ctx)
        except RunSuspended as e:
            result = ProcessSuspended(
                breakpoint_id=e.breakpoint_id,
                artifacts=ctx.artifacts,
                **self._timing(ctx, process, clock),
            )
        except ProcessAborted as e:
            result = self._failure(
                ctx, process, clock, str(e), step=e.breakpoint_id,
                details={"breakpointId": e.breakpoint_id, "reason": "aborted"},
            )
        except ProcessFailed as e:
            result = self._failure(ctx, process, clock, str(e), step=e.step, details=e.details)
        except EffectError as e:
            result = self._failure(
                ctx, process, clock, e.message, step=e.task_name, details=e.to_json()
            )
        except UnknownTask as e:
            fatal = e
            result = self._failure(
                ctx, process, clock, str(e), step=e.name, details={"kind": "unknown_task"}
            )
        except Exception as e:
            logger.exception("Process raised", extra={"run_id": run_id})
            result = self._failure(
                ctx, process, clock, f"{type(e).__name__}: {e}",
                details={"exceptionType": type(e).__name__},
            )
        else:
            result = self._success(ctx, process, clock, outputs)

        self._finish(run_id, result, clock)
        if fatal is not None:
            raise fatal
        return result

    def _timing(self, ctx: RunContext, process: ProcessDefinition, clock: Clock) -> dict[str, Any]:
        finished = clock.now()
        return {
            "duration": (finished - ctx.started_at).total_seconds(),
            "metadata": ProcessMetadata(
                process_id=process.process_id,
                run_id=ctx.run_id,
                started_at=utc_iso(ctx.started_at),
                finished_at=utc_iso(finished),
            ),
        }

    def _failure(
        self,
        ctx: RunContext,
        process: ProcessDefinition,
        clock: Clock,
        error: str,
        *,
        step: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ProcessFailure:
        return ProcessFailure(
            error=error,
            failed_step=step,
            details=details or {},
            artifacts=ctx.artifacts,
            **self._timing(ctx, process, clock),
        )

    def _success(
        self,
        ctx: RunContext,
        process: ProcessDefinition,
        clock: Clock,
        outputs: Any,
    ) -> ProcessSuccess | ProcessFailure:
        if outputs is None:
            outputs = {}
        elif not isinstance(outputs, dict):
            outputs = {"value": outputs}
        score: int | None = None
        if ctx.scored:
            try:
                score = ctx.final_score()
            except ScoreNotFinal as e:
                return self._failure(ctx, process, clock, str(e), details={"kind": "score_not_final"})
        return ProcessSuccess(
            outputs=outputs, score=score, artifacts=ctx.artifacts, **self._timing(ctx, process, clock)
        )

    def _finish(
        self,
        run_id: str,
        result: ProcessSuccess | ProcessFailure | ProcessSuspended,
        clock: Clock,
    ) -> None:
        journal = self.store.journal(run_id)
        if isinstance(result, ProcessSuspended):
            status, event = RunStatus.WAITING, "RUN_SUSPENDED"
            data: dict[str, Any] = {"breakpointId": result.breakpoint_id}
        elif isinstance(result, ProcessSuccess):
            status, event = RunStatus.SUCCEEDED, "RUN_COMPLETED"
            data = {"score": result.score, "artifacts": len(result.artifacts)}
        else:
            status, event = RunStatus.FAILED, "RUN_FAILED"
            data = {"error": result.error, "failedStep": result.failed_step}

        self.store.write_process_result(run_id, result.to_json())
        self.store.update_run(run_id, status=status)
        journal.append(event, data, recorded_at=clock.now())
        logger.info(
            "Run finished",
            extra={"run_id": run_id, "status": status.value, "duration_seconds": result.duration},
        )
