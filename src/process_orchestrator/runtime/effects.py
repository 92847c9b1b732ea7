"""Effects: one durable, at-most-once invocation of a task definition."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from process_orchestrator.core.errors import EffectError
from process_orchestrator.runtime.storage import CamelModel


class EffectStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[EffectStatus, set[EffectStatus]] = {
    EffectStatus.PENDING: {EffectStatus.RUNNING, EffectStatus.FAILED},
    EffectStatus.RUNNING: {EffectStatus.SUCCEEDED, EffectStatus.FAILED},
    EffectStatus.SUCCEEDED: set(),
    EffectStatus.FAILED: set(),
}


class IllegalTransitionError(ValueError):
    pass


class Artifact(CamelModel):
    path: str
    format: str = "markdown"
    label: str | None = None
    content: str | None = None
    reference: str | None = None
    effect_id: str | None = None
    task: str | None = None

    def file_entry(self) -> dict[str, Any]:
        return {"path": self.path, "format": self.format, "label": self.label}


def effect_id_for(task_name: str, seq: int, key: str | None = None) -> str:
    """Effect ids are a pure function of task name and counter (or caller key)."""

    slug = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in task_name).strip("-")
    if key is not None:
        safe_key = "".join(ch if ch.isalnum() or ch in "-_." else "-" for ch in key).strip("-.")
        if not safe_key:
            raise ValueError(f"Effect key {key!r} has no usable characters")
        return f"{slug}--{safe_key}"
    return f"{seq:04d}-{slug}"


@dataclass
class Effect:
    """Mutable lifecycle of one invocation. Reaches a terminal state exactly once."""

    effect_id: str
    task_name: str
    args: dict[str, Any]
    status: EffectStatus = EffectStatus.PENDING
    result: Any = None
    error: EffectError | None = None
    attempts: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _move(self, to: EffectStatus) -> None:
        if to not in ALLOWED_TRANSITIONS[self.status]:
            raise IllegalTransitionError(
                f"Illegal effect transition for {self.effect_id}: {self.status.value} -> {to.value}"
            )
        self.status = to

    def start(self) -> None:
        with self._lock:
            self._move(EffectStatus.RUNNING)

    def succeed(self, result: Any) -> None:
        with self._lock:
            self._move(EffectStatus.SUCCEEDED)
            self.result = result

    def fail(self, error: EffectError) -> None:
        with self._lock:
            self._move(EffectStatus.FAILED)
            self.error = error

    @property
    def terminal(self) -> bool:
        return self.status in (EffectStatus.SUCCEEDED, EffectStatus.FAILED)


@dataclass(frozen=True, slots=True)
class EffectOutcome:
    """Typed result of an effect: either an output or an ``EffectError``.

    Driver code must inspect ``ok`` (or call :meth:`unwrap`, which raises the
    error); failures are never thrown implicitly.
    """

    effect_id: str
    task_name: str
    ok: bool
    output: Any = None
    error: EffectError | None = None
    replayed: bool = False

    def unwrap(self) -> Any:
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.output

    def get(self, key: str, default: Any = None) -> Any:
        if not self.ok or not isinstance(self.output, dict):
            return default
        return self.output.get(key, default)

    @property
    def artifacts(self) -> list[dict[str, Any]]:
        raw = self.get("artifacts")
        if not isinstance(raw, list):
            return []
        return [a for a in raw if isinstance(a, dict)]
