"""Run context: per-run identity, clock, log sink and accumulated state.

A ``RunContext`` is owned by exactly one run session. Process functions use
its helpers to invoke tasks, fan out, gate, raise breakpoints and score.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from process_orchestrator.core.errors import DuplicateEffect, ProcessAborted, ProcessFailed
from process_orchestrator.orchestrator.logging import RunLoggerAdapter
from process_orchestrator.runtime.breakpoints import BreakpointController, Decision, DecisionAction
from process_orchestrator.runtime.clock import Clock
from process_orchestrator.runtime.effects import Artifact, Effect, EffectOutcome, effect_id_for
from process_orchestrator.runtime.invoker import EffectInvoker
from process_orchestrator.runtime.parallel import ParallelGroupExecutor
from process_orchestrator.runtime.scoring import ScoreBreakdown, ScoreLedger
from process_orchestrator.runtime.storage import Journal
from process_orchestrator.runtime.tasks import (
    TaskContext,
    TaskDefinition,
    TaskDescriptor,
    TaskIO,
    TaskRegistry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class _Absent:
    """Marker for the output of a step that was skipped."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass(frozen=True)
class PreparedEffect:
    """An effect whose id and descriptor were fixed in driver order.

    Calling it dispatches the effect; artifacts are not accumulated until the
    outcome is handed back to the context (``ctx.parallel`` does this at the
    join, in input order).
    """

    effect: Effect
    descriptor: TaskDescriptor
    timeout: float | None = None
    max_attempts: int | None = None
    _invoker: EffectInvoker | None = field(default=None, repr=False, compare=False)

    @property
    def effect_id(self) -> str:
        return self.effect.effect_id

    def __call__(self) -> EffectOutcome:
        assert self._invoker is not None
        return self._invoker.invoke(
            self.effect, self.descriptor, timeout=self.timeout, max_attempts=self.max_attempts
        )


class RunContext:
    def __init__(
        self,
        *,
        run_id: str,
        process_id: str,
        registry: TaskRegistry,
        journal: Journal,
        invoker: EffectInvoker,
        breakpoints: BreakpointController,
        clock: Clock,
        ledger: ScoreLedger | None = None,
        parallel_executor: ParallelGroupExecutor | None = None,
    ) -> None:
        self._run_id = run_id
        self.process_id = process_id
        self.registry = registry
        self.journal = journal
        self.invoker = invoker
        self.breakpoints = breakpoints
        self.clock = clock
        self.ledger = ledger or ScoreLedger()
        self.parallel_executor = parallel_executor or ParallelGroupExecutor()
        self.started_at: datetime = clock.now()

        self._lock = threading.Lock()
        self._seq = 0
        self._breakpoint_seq = 0
        self._issued: set[str] = set()
        self._artifacts: list[Artifact] = []
        self._scored = False
        self._log = RunLoggerAdapter(logging.getLogger("process_orchestrator.run"), {"run_id": run_id})

    @property
    def run_id(self) -> str:
        return self._run_id

    def now(self) -> datetime:
        return self.clock.now()

    def log(self, level: str, message: str, **fields: Any) -> None:
        levelno = _LOG_LEVELS.get(level.lower())
        if levelno is None:
            raise ValueError(f"Unsupported log level: {level!r}")
        self._log.log(levelno, message, extra=fields)
        self.journal.append(
            "LOG",
            {"level": level.lower(), "message": message, "fields": fields},
            recorded_at=self.clock.now(),
        )

    # Artifacts

    @property
    def artifacts(self) -> list[Artifact]:
        with self._lock:
            return list(self._artifacts)

    def append_artifacts(
        self,
        artifacts: Sequence[Mapping[str, Any] | Artifact],
        *,
        effect_id: str | None = None,
        task: str | None = None,
    ) -> list[Artifact]:
        added: list[Artifact] = []
        for raw in artifacts:
            artifact = raw if isinstance(raw, Artifact) else Artifact.model_validate(dict(raw))
            updates: dict[str, Any] = {}
            if artifact.effect_id is None and effect_id is not None:
                updates["effect_id"] = effect_id
            if artifact.task is None and task is not None:
                updates["task"] = task
            added.append(artifact.model_copy(update=updates) if updates else artifact)
        if not added:
            return []
        with self._lock:
            self._artifacts.extend(added)
        self.journal.append(
            "ARTIFACTS_ADDED",
            {"effectId": effect_id, "task": task, "artifacts": [a.file_entry() for a in added]},
            recorded_at=self.clock.now(),
        )
        return added

    def _collect(self, outcome: EffectOutcome) -> EffectOutcome:
        if outcome.ok and outcome.artifacts:
            self.append_artifacts(
                outcome.artifacts, effect_id=outcome.effect_id, task=outcome.task_name
            )
        return outcome

    # Effects

    def prepare(
        self,
        task: str | TaskDefinition,
        args: Mapping[str, Any] | None = None,
        *,
        key: str | None = None,
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> PreparedEffect:
        """Allocate an effect id and resolve the descriptor without dispatching."""

        name = task.name if isinstance(task, TaskDefinition) else task
        definition = self.registry.get(name)
        with self._lock:
            if key is None:
                self._seq += 1
                effect_id = effect_id_for(name, self._seq)
            else:
                effect_id = effect_id_for(name, 0, key=key)
            if effect_id in self._issued:
                raise DuplicateEffect(effect_id)
            self._issued.add(effect_id)

        io = TaskIO.for_effect(effect_id)
        call_args = dict(args or {})
        descriptor = definition.build(
            call_args, TaskContext(run_id=self._run_id, effect_id=effect_id, task_name=name, io=io)
        )
        effect = Effect(effect_id=effect_id, task_name=name, args=call_args)
        return PreparedEffect(
            effect=effect,
            descriptor=descriptor,
            timeout=timeout,
            max_attempts=attempts,
            _invoker=self.invoker,
        )

    def task(
        self,
        task: str | TaskDefinition,
        args: Mapping[str, Any] | None = None,
        *,
        key: str | None = None,
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> EffectOutcome:
        """Invoke one task and return once its effect is terminal."""

        prepared = self.prepare(task, args, key=key, timeout=timeout, attempts=attempts)
        return self._collect(prepared())

    def parallel(self, effects: Sequence[PreparedEffect]) -> list[EffectOutcome]:
        """Run prepared effects concurrently; results follow input order."""

        for item in effects:
            if not isinstance(item, PreparedEffect):
                raise TypeError("ctx.parallel expects effects created with ctx.prepare")
        outcomes = self.parallel_executor.run_all(list(effects))
        return [self._collect(o) for o in outcomes]

    def optional(
        self,
        condition: bool,
        task: str | TaskDefinition,
        args: Mapping[str, Any] | None = None,
        *,
        step: str | None = None,
        key: str | None = None,
        reason: str | None = None,
    ) -> EffectOutcome | _Absent:
        """Run a conditional step, or return ``ABSENT`` and mark it skipped."""

        name = task.name if isinstance(task, TaskDefinition) else task
        if condition:
            return self.task(name, args, key=key)
        self.skip(step or name, reason=reason)
        return ABSENT

    def skip(self, step: str, *, reason: str | None = None) -> None:
        self.ledger.skip(step)
        self.journal.append(
            "STEP_SKIPPED", {"step": step, "reason": reason}, recorded_at=self.clock.now()
        )
        self._log.info("Step skipped", extra={"step": step, "reason": reason})

    # Control flow

    def gate(
        self,
        passed: bool,
        *,
        fail: bool = True,
        reason: str = "Gate failed",
        step: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Fail-fast gate: stop the run when ``passed`` is false and ``fail`` is set."""

        if passed:
            return True
        if fail:
            self._log.warning("Gate failed; stopping run", extra={"step": step, "reason": reason})
            raise ProcessFailed(reason, step=step, details=details)
        self._log.warning("Gate failed; continuing", extra={"step": step, "reason": reason})
        return False

    def breakpoint(
        self,
        question: str,
        title: str,
        context: Mapping[str, Any] | None = None,
    ) -> Decision:
        """Suspend until a reviewer decides. ``abort`` raises ``ProcessAborted``."""

        with self._lock:
            self._breakpoint_seq += 1
            breakpoint_id = f"bp-{self._breakpoint_seq:04d}"

        files = [a.file_entry() for a in self.artifacts]
        payload: dict[str, Any] = {"runId": self._run_id, "files": files, "score": self.ledger.raw}
        for k, v in (context or {}).items():
            if k == "files" and isinstance(v, list):
                payload["files"] = files + [f for f in v if f not in files]
            elif k != "runId":
                payload[k] = v

        decision = self.breakpoints.raise_breakpoint(
            breakpoint_id, question=question, title=title, context=payload
        )
        if decision.action == DecisionAction.ABORT:
            message = f"Aborted at breakpoint '{title}'"
            if decision.comment:
                message = f"{message}: {decision.comment}"
            raise ProcessAborted(message, breakpoint_id=breakpoint_id)
        return decision

    def review(
        self,
        step_fn: Callable[[], T],
        *,
        question: str,
        title: str,
        context: Mapping[str, Any] | Callable[[T], Mapping[str, Any]] | None = None,
        max_rounds: int = 3,
    ) -> T:
        """Run ``step_fn`` and ask for approval; re-run it when the reviewer says retry."""

        for round_no in range(1, max_rounds + 1):
            value = step_fn()
            bp_context = context(value) if callable(context) else context
            decision = self.breakpoint(question, title, bp_context)
            if decision.action != DecisionAction.RETRY:
                return value
            self._log.info("Reviewer requested retry", extra={"title": title, "round": round_no})
        raise ProcessAborted(f"Retry limit reached at '{title}' after {max_rounds} rounds")

    def checkpoint(self, title: str, message: str, context: Mapping[str, Any] | None = None) -> None:
        """Record an informational milestone; never suspends."""

        self.journal.append(
            "CHECKPOINT",
            {"title": title, "message": message, "context": dict(context or {})},
            recorded_at=self.clock.now(),
        )
        self._log.info(message, extra={"checkpoint": title})

    # Scoring

    def declare_score(self, step: str, weight: float) -> None:
        self.ledger.declare(step, weight)

    def add_score(self, delta: float, *, step: str | None = None) -> None:
        self.ledger.add(delta, step=step)
        self._scored = True
        self.journal.append(
            "SCORE_ADDED",
            {"delta": delta, "step": step, "raw": self.ledger.raw},
            recorded_at=self.clock.now(),
        )

    def skip_score(self, step: str) -> None:
        self.ledger.skip(step)

    def final_score(self) -> int:
        return self.ledger.final()

    def score_breakdown(self) -> ScoreBreakdown:
        return self.ledger.breakdown()

    @property
    def scored(self) -> bool:
        return self._scored
