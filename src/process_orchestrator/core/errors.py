"""Error taxonomy for the process orchestrator.

Effect-level errors (``EffectError`` and subclasses) are returned as values by
the effect invoker and only raised when driver code explicitly unwraps an
outcome. Everything else is raised at the point of failure.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception for the process orchestrator."""


class UnknownTask(OrchestratorError):
    """Raised when a task name was never registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown task: {name!r}")
        self.name = name


class RegistryFrozen(OrchestratorError):
    """Raised when registering a task after the registry was frozen."""


class DuplicateEffect(OrchestratorError):
    """Raised when the same effect id is issued twice within one run session."""

    def __init__(self, effect_id: str) -> None:
        super().__init__(f"Effect id already issued in this run: {effect_id}")
        self.effect_id = effect_id


class EffectError(OrchestratorError):
    """A failed effect.

    Carries enough context for the driver to decide whether to propagate,
    degrade or abort.
    """

    retryable: bool = False
    kind: str = "effect_error"

    def __init__(
        self,
        message: str,
        *,
        effect_id: str | None = None,
        task_name: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.effect_id = effect_id
        self.task_name = task_name
        self.details = details or {}

    def to_json(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "message": self.message,
            "effectId": self.effect_id,
            "task": self.task_name,
            "details": self.details,
        }


class SchemaViolation(EffectError):
    """The executor returned output that does not match the declared schema."""

    kind = "schema_violation"


class ExecutorFailure(EffectError):
    """The executor itself failed."""

    retryable = True
    kind = "executor_failure"


class EffectTimeout(ExecutorFailure):
    """Dispatch exceeded the effect timeout."""

    kind = "timeout"


class BreakpointUnresolved(OrchestratorError):
    """The decision channel could not deliver a decision."""


class ProcessAborted(OrchestratorError):
    """A reviewer decided to abort the run."""

    def __init__(self, message: str, *, breakpoint_id: str | None = None) -> None:
        super().__init__(message)
        self.breakpoint_id = breakpoint_id


class ProcessFailed(OrchestratorError):
    """Raised by driver code to stop the run with a failure result."""

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.details = details or {}


class RunSuspended(OrchestratorError):
    """The run is parked at a durable breakpoint awaiting a decision."""

    def __init__(self, breakpoint_id: str) -> None:
        super().__init__(f"Run suspended at breakpoint {breakpoint_id}")
        self.breakpoint_id = breakpoint_id


class ScoreNotFinal(OrchestratorError):
    """The final score was requested before all declared steps reported."""


class RunNotFound(OrchestratorError):
    """No run directory exists for the given run id."""


class RunAlreadyExists(OrchestratorError):
    """A run with the given id was already started."""


class BreakpointNotFound(OrchestratorError):
    """No breakpoint record exists for the given id."""


class BreakpointAlreadyResolved(OrchestratorError):
    """The breakpoint already carries a decision."""
