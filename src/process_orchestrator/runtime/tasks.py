"""Task definitions, descriptors and the task registry.

A task definition is a pure factory ``(args, task_ctx) -> TaskDescriptor``.
Descriptors describe *what* must run (kind, execution contract, output shape
and I/O locations); the registry only resolves them and never executes
anything.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from process_orchestrator.core.errors import RegistryFrozen, UnknownTask

logger = logging.getLogger(__name__)

TaskKind = Literal["agent", "native", "shell"]


@dataclass(frozen=True, slots=True)
class AgentPrompt:
    """What an external agent receives for one effect."""

    role: str
    task: str
    context: Mapping[str, Any] = field(default_factory=dict)
    instructions: tuple[str, ...] = ()
    output_format: str = "JSON"

    def to_json(self) -> dict[str, object]:
        return {
            "role": self.role,
            "task": self.task,
            "context": dict(self.context),
            "instructions": list(self.instructions),
            "outputFormat": self.output_format,
        }


@dataclass(frozen=True, slots=True)
class AgentSpec:
    name: str
    prompt: AgentPrompt
    output_schema: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class NativeSpec:
    run: Callable[[dict[str, Any]], object]


@dataclass(frozen=True, slots=True)
class ShellSpec:
    command: str
    cwd: str | None = None
    env: Mapping[str, str] | None = None


@dataclass(frozen=True, slots=True)
class TaskIO:
    """Where an effect's input and result are durably recorded (run-relative)."""

    input_json_path: str
    output_json_path: str

    @staticmethod
    def for_effect(effect_id: str) -> TaskIO:
        return TaskIO(
            input_json_path=f"tasks/{effect_id}/input.json",
            output_json_path=f"tasks/{effect_id}/result.json",
        )

    def to_json(self) -> dict[str, str]:
        return {"inputJsonPath": self.input_json_path, "outputJsonPath": self.output_json_path}


@dataclass(frozen=True, slots=True)
class TaskDescriptor:
    """Resolved, ready-to-execute description of work. Immutable."""

    kind: TaskKind
    title: str
    agent: AgentSpec | None = None
    native: NativeSpec | None = None
    shell: ShellSpec | None = None
    output_schema: Mapping[str, Any] | None = None
    io: TaskIO | None = None
    labels: tuple[str, ...] = ()
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        present = {
            "agent": self.agent is not None,
            "native": self.native is not None,
            "shell": self.shell is not None,
        }
        if not present.get(self.kind, False):
            raise ValueError(f"Descriptor of kind {self.kind!r} requires a {self.kind} spec")
        others = [k for k, v in present.items() if v and k != self.kind]
        if others:
            raise ValueError(f"Descriptor of kind {self.kind!r} must not carry {others}")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @property
    def schema(self) -> Mapping[str, Any] | None:
        if self.output_schema is not None:
            return self.output_schema
        if self.agent is not None:
            return self.agent.output_schema
        return None

    def contract_json(self) -> dict[str, object]:
        """JSON view of the execution contract (native callables are omitted)."""

        out: dict[str, object] = {"kind": self.kind, "title": self.title, "labels": list(self.labels)}
        if self.agent is not None:
            out["agent"] = {"name": self.agent.name, "prompt": self.agent.prompt.to_json()}
        if self.shell is not None:
            out["shell"] = {"command": self.shell.command, "cwd": self.shell.cwd}
        if self.schema is not None:
            out["outputSchema"] = dict(self.schema)
        if self.io is not None:
            out["io"] = self.io.to_json()
        return out


@dataclass(frozen=True, slots=True)
class TaskContext:
    """Invocation context handed to task factories."""

    run_id: str
    effect_id: str
    task_name: str
    io: TaskIO


TaskFactory = Callable[[dict[str, Any], TaskContext], TaskDescriptor]


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    name: str
    factory: TaskFactory

    def build(self, args: dict[str, Any], task_ctx: TaskContext) -> TaskDescriptor:
        descriptor = self.factory(args, task_ctx)
        if not isinstance(descriptor, TaskDescriptor):
            raise TypeError(
                f"Task {self.name!r} factory returned {type(descriptor).__name__}, "
                "expected TaskDescriptor"
            )
        if descriptor.io is None:
            descriptor = dataclasses.replace(descriptor, io=task_ctx.io)
        return descriptor


class TaskRegistry:
    """Name -> task definition map. Read-only once frozen."""

    def __init__(self) -> None:
        self._definitions: dict[str, TaskDefinition] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, name: str, factory: TaskFactory) -> TaskDefinition:
        normalized = name.strip()
        if not normalized:
            raise ValueError("Task name must be non-empty")
        with self._lock:
            if self._frozen:
                raise RegistryFrozen(f"Cannot register {normalized!r}: registry is frozen")
            if normalized in self._definitions:
                raise ValueError(f"Task already registered: {normalized!r}")
            definition = TaskDefinition(name=normalized, factory=factory)
            self._definitions[normalized] = definition
        logger.debug("Task registered", extra={"task": normalized})
        return definition

    def task(self, name: str) -> Callable[[TaskFactory], TaskDefinition]:
        """Decorator form of :meth:`register`."""

        def decorator(factory: TaskFactory) -> TaskDefinition:
            return self.register(name, factory)

        return decorator

    def get(self, name: str) -> TaskDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise UnknownTask(name)
        return definition

    def resolve(self, name: str, args: dict[str, Any], task_ctx: TaskContext) -> TaskDescriptor:
        return self.get(name).build(args, task_ctx)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return sorted(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
