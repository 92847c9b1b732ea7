"""Effect invoker: execute a resolved task descriptor exactly once per effect id.

Per effect:
  1. a recorded ``result.json`` is authoritative: replay it, never re-dispatch
  2. persist the input record before dispatch (forensic record of the attempt)
  3. dispatch by descriptor kind, bounded by a timeout
  4. validate the output against the declared schema and its artifact entries
  5. persist the result (or the error) and journal the terminal state

Effect-level failures are returned as :class:`EffectOutcome` values.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from pydantic import TypeAdapter, ValidationError

from process_orchestrator.core.config import EffectConfig
from process_orchestrator.core.errors import (
    EffectError,
    EffectTimeout,
    ExecutorFailure,
    SchemaViolation,
)
from process_orchestrator.runtime.clock import Clock, utc_iso
from process_orchestrator.runtime.effects import Artifact, Effect, EffectOutcome
from process_orchestrator.runtime.executors import AgentContract, AgentExecutor, run_shell
from process_orchestrator.runtime.schema import validate_output
from process_orchestrator.runtime.storage import Journal, RunStore
from process_orchestrator.runtime.tasks import TaskDescriptor, TaskIO

logger = logging.getLogger(__name__)

_ARTIFACT_LIST: TypeAdapter[list[Artifact]] = TypeAdapter(list[Artifact])


def artifact_violations(raw: object) -> list[str]:
    """Violations for an output's ``artifacts`` entry (empty when every item is usable)."""

    try:
        _ARTIFACT_LIST.validate_python(raw)
    except ValidationError as e:
        return [
            ".".join(["artifacts", *(str(part) for part in err["loc"])]) + f": {err['msg']}"
            for err in e.errors()
        ]
    return []


def _resolved_io(effect: Effect, descriptor: TaskDescriptor) -> TaskIO:
    if descriptor.io is None:
        raise ValueError(f"Descriptor for {effect.task_name!r} must be resolved with io paths")
    spec = {"shell": descriptor.shell, "agent": descriptor.agent, "native": descriptor.native}
    if spec.get(descriptor.kind) is None:
        raise ValueError(
            f"Descriptor of kind {descriptor.kind!r} requires a {descriptor.kind} spec"
        )
    return descriptor.io


class EffectInvoker:
    """Dispatch effects for one run and keep their durable I/O records."""

    def __init__(
        self,
        *,
        run_id: str,
        store: RunStore,
        journal: Journal,
        clock: Clock,
        agent_executor: AgentExecutor,
        config: EffectConfig | None = None,
    ) -> None:
        self.run_id = run_id
        self.store = store
        self.journal = journal
        self.clock = clock
        self.agent_executor = agent_executor
        self.config = config or EffectConfig()

    def invoke(
        self,
        effect: Effect,
        descriptor: TaskDescriptor,
        *,
        timeout: float | None = None,
        max_attempts: int | None = None,
    ) -> EffectOutcome:
        """Run ``effect`` to a terminal state.

        Raises:
            ValueError: The descriptor has no io paths or lacks the spec for its kind.
        """
        io = _resolved_io(effect, descriptor)

        replayed = self._replay(effect, io)
        if replayed is not None:
            return replayed

        input_path = self.store.write_effect_input(
            self.run_id,
            io.input_json_path,
            {
                "effectId": effect.effect_id,
                "task": effect.task_name,
                "args": effect.args,
                "contract": descriptor.contract_json(),
                "requestedAt": utc_iso(self.clock.now()),
            },
        )
        input_rel = input_path.relative_to(self.store.resolve_path(self.run_id, ".")).as_posix()
        self.journal.append(
            "EFFECT_REQUESTED",
            {
                "effectId": effect.effect_id,
                "task": effect.task_name,
                "kind": descriptor.kind,
                "inputPath": input_rel,
            },
            recorded_at=self.clock.now(),
        )

        effect.start()
        limit = timeout or descriptor.timeout_seconds or self.config.timeout_seconds
        attempts = max(1, max_attempts or self.config.max_attempts)

        attempt = 0
        while True:
            attempt += 1
            effect.attempts = attempt
            try:
                output = self._dispatch(effect, descriptor, limit)
                self._validate(effect, descriptor, output)
            except EffectError as e:
                error = e
            except Exception as e:
                logger.exception(
                    "Executor raised",
                    extra={"run_id": self.run_id, "effect_id": effect.effect_id},
                )
                error = ExecutorFailure(
                    f"{type(e).__name__}: {e}",
                    effect_id=effect.effect_id,
                    task_name=effect.task_name,
                )
            else:
                return self._succeed(effect, io, output)

            if error.effect_id is None:
                error.effect_id = effect.effect_id
                error.task_name = effect.task_name
            if not error.retryable or attempt >= attempts:
                return self._fail(effect, error)
            delay = self.config.retry_backoff_seconds * (2 ** (attempt - 1))
            self.journal.append(
                "EFFECT_ATTEMPT_FAILED",
                {"effectId": effect.effect_id, "attempt": attempt, "error": error.to_json()},
                recorded_at=self.clock.now(),
            )
            logger.warning(
                "Effect attempt failed; retrying",
                extra={
                    "run_id": self.run_id,
                    "effect_id": effect.effect_id,
                    "attempt": attempt,
                    "delay_seconds": delay,
                },
            )
            if delay > 0:
                time.sleep(delay)

    def _replay(self, effect: Effect, io: TaskIO) -> EffectOutcome | None:
        recorded = self.store.read_effect_result(self.run_id, io.output_json_path)
        if recorded is None or "value" not in recorded:
            return None
        value = recorded["value"]
        effect.start()
        effect.succeed(value)
        self.journal.append(
            "EFFECT_REPLAYED",
            {"effectId": effect.effect_id, "task": effect.task_name, "status": "succeeded"},
            recorded_at=self.clock.now(),
        )
        logger.info(
            "Effect replayed from recorded result",
            extra={"run_id": self.run_id, "effect_id": effect.effect_id},
        )
        return EffectOutcome(
            effect_id=effect.effect_id,
            task_name=effect.task_name,
            ok=True,
            output=value,
            replayed=True,
        )

    def _dispatch(self, effect: Effect, descriptor: TaskDescriptor, timeout: float) -> Any:
        if descriptor.kind == "shell" and descriptor.shell is not None:
            return run_shell(
                descriptor.shell,
                timeout=timeout,
                effect_id=effect.effect_id,
                task_name=effect.task_name,
            )

        if descriptor.kind == "agent" and descriptor.agent is not None:
            contract = AgentContract(
                effect_id=effect.effect_id,
                task_name=effect.task_name,
                agent_name=descriptor.agent.name,
                prompt=descriptor.agent.prompt,
                output_schema=descriptor.schema,
            )

            def call() -> Any:
                return self.agent_executor.run(contract)

        elif descriptor.kind == "native" and descriptor.native is not None:
            native = descriptor.native
            args = copy.deepcopy(effect.args)

            def call() -> Any:
                return native.run(args)

        else:
            raise ValueError(
                f"Descriptor of kind {descriptor.kind!r} requires a {descriptor.kind} spec"
            )

        return self._run_bounded(effect, call, timeout)

    def _run_bounded(self, effect: Effect, call: Callable[[], Any], timeout: float) -> Any:
        """Run ``call`` on a daemon thread and wait at most ``timeout`` seconds.

        A call still running at the deadline is abandoned. Its thread never
        blocks interpreter exit, and the timeout is not retried while it lives.
        """
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = call()
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=target, name=f"effect-{effect.effect_id}", daemon=True)
        worker.start()
        worker.join(timeout)

        if worker.is_alive():
            timed_out = EffectTimeout(
                f"Effect timed out after {timeout}s",
                effect_id=effect.effect_id,
                task_name=effect.task_name,
                details={"timeoutSeconds": timeout, "abandoned": True},
            )
            timed_out.retryable = False
            raise timed_out
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("value")

    def _validate(self, effect: Effect, descriptor: TaskDescriptor, output: Any) -> None:
        violations = validate_output(descriptor.schema, output, name=effect.task_name)
        if not violations and isinstance(output, dict) and "artifacts" in output:
            violations = artifact_violations(output["artifacts"])
        if violations:
            raise SchemaViolation(
                f"Output of {effect.task_name} violates its schema",
                effect_id=effect.effect_id,
                task_name=effect.task_name,
                details={"violations": violations},
            )

    def _succeed(self, effect: Effect, io: TaskIO, output: Any) -> EffectOutcome:
        self.store.write_effect_result(
            self.run_id,
            io.output_json_path,
            {
                "effectId": effect.effect_id,
                "task": effect.task_name,
                "status": "succeeded",
                "value": output,
                "attempts": effect.attempts,
                "resolvedAt": utc_iso(self.clock.now()),
            },
        )
        effect.succeed(output)
        self.journal.append(
            "EFFECT_RESOLVED",
            {
                "effectId": effect.effect_id,
                "task": effect.task_name,
                "status": "succeeded",
                "resultPath": io.output_json_path,
            },
            recorded_at=self.clock.now(),
        )
        logger.debug(
            "Effect succeeded", extra={"run_id": self.run_id, "effect_id": effect.effect_id}
        )
        return EffectOutcome(
            effect_id=effect.effect_id, task_name=effect.task_name, ok=True, output=output
        )

    def _fail(self, effect: Effect, error: EffectError) -> EffectOutcome:
        self.store.write_effect_error(
            self.run_id,
            effect.effect_id,
            {
                "effectId": effect.effect_id,
                "task": effect.task_name,
                "status": "failed",
                "error": error.to_json(),
                "attempts": effect.attempts,
                "resolvedAt": utc_iso(self.clock.now()),
            },
        )
        effect.fail(error)
        self.journal.append(
            "EFFECT_RESOLVED",
            {
                "effectId": effect.effect_id,
                "task": effect.task_name,
                "status": "failed",
                "error": error.to_json(),
            },
            recorded_at=self.clock.now(),
        )
        logger.warning(
            "Effect failed",
            extra={
                "run_id": self.run_id,
                "effect_id": effect.effect_id,
                "error_kind": error.kind,
                "error": error.message,
            },
        )
        return EffectOutcome(
            effect_id=effect.effect_id, task_name=effect.task_name, ok=False, error=error
        )
