"""Executor capabilities the effect invoker dispatches to.

Agent work is opaque to the orchestrator: it hands an :class:`AgentContract`
to an injected :class:`AgentExecutor` and only validates what comes back.
Tests inject a fake executor returning canned, schema-valid outputs.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from process_orchestrator.core.errors import EffectTimeout, ExecutorFailure, SchemaViolation
from process_orchestrator.llm.provider import InvalidJSONResponse, LLMError, LLMProvider
from process_orchestrator.runtime.tasks import AgentPrompt, ShellSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AgentContract:
    """Everything an external agent needs to perform one effect."""

    effect_id: str
    task_name: str
    agent_name: str
    prompt: AgentPrompt
    output_schema: Mapping[str, Any] | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "effectId": self.effect_id,
            "task": self.task_name,
            "agent": self.agent_name,
            "prompt": self.prompt.to_json(),
            "outputSchema": dict(self.output_schema) if self.output_schema else None,
        }


class AgentExecutor(Protocol):
    def run(self, contract: AgentContract) -> object: ...


class UnavailableAgentExecutor:
    """Placeholder used when no agent backend is configured."""

    def run(self, contract: AgentContract) -> object:
        raise ExecutorFailure(
            "No agent executor configured",
            effect_id=contract.effect_id,
            task_name=contract.task_name,
        )


class LLMAgentExecutor:
    """Serve agent tasks with a chat-completion LLM.

    The role, output format and schema go into the system message; the task,
    its JSON context and numbered instructions go into the user message.
    The model must answer with a single JSON document.
    """

    def __init__(self, provider: LLMProvider, *, max_tokens: int | None = None) -> None:
        self.provider = provider
        self.max_tokens = max_tokens

    def build_messages(self, contract: AgentContract) -> list[dict[str, str]]:
        prompt = contract.prompt
        system_parts = [
            f"You are a {prompt.role}." if prompt.role else "You are a careful assistant.",
            f"Respond with {prompt.output_format}.",
            "Reply with a single JSON document and nothing else.",
        ]
        if contract.output_schema:
            system_parts.append(
                "The JSON must satisfy this JSON Schema:\n"
                + json.dumps(contract.output_schema, indent=2, default=str)
            )

        user_parts = [f"Task: {prompt.task}"]
        if prompt.context:
            user_parts.append(
                "Context:\n" + json.dumps(dict(prompt.context), indent=2, default=str)
            )
        if prompt.instructions:
            numbered = "\n".join(f"{i}. {step}" for i, step in enumerate(prompt.instructions, 1))
            user_parts.append("Instructions:\n" + numbered)

        return [
            {"role": "system", "content": "\n\n".join(system_parts)},
            {"role": "user", "content": "\n\n".join(user_parts)},
        ]

    def run(self, contract: AgentContract) -> object:
        messages = self.build_messages(contract)
        logger.debug(
            "Dispatching agent contract",
            extra={"effect_id": contract.effect_id, "agent": contract.agent_name},
        )
        try:
            output, completion = self.provider.complete_json(messages, max_tokens=self.max_tokens)
        except InvalidJSONResponse as e:
            raise SchemaViolation(
                str(e),
                effect_id=contract.effect_id,
                task_name=contract.task_name,
                details={"excerpt": e.content[:500]},
            ) from e
        except LLMError as e:
            failure = ExecutorFailure(
                str(e),
                effect_id=contract.effect_id,
                task_name=contract.task_name,
                details={"agent": contract.agent_name},
            )
            failure.retryable = e.retryable
            raise failure from e

        if completion.finish_reason == "length":
            logger.warning(
                "Agent reply hit the token limit",
                extra={"effect_id": contract.effect_id, "agent": contract.agent_name},
            )
        return output


def run_shell(
    spec: ShellSpec, *, timeout: float | None, effect_id: str, task_name: str
) -> dict[str, object]:
    """Run a shell task; non-zero exit codes are executor failures."""

    env = None
    if spec.env:
        env = {**os.environ, **dict(spec.env)}
    try:
        completed = subprocess.run(
            spec.command,
            shell=True,
            cwd=spec.cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise EffectTimeout(
            f"Shell command timed out after {timeout}s",
            effect_id=effect_id,
            task_name=task_name,
            details={"command": spec.command},
        ) from e
    except OSError as e:
        raise ExecutorFailure(
            f"Shell command could not start: {e}",
            effect_id=effect_id,
            task_name=task_name,
            details={"command": spec.command},
        ) from e

    output: dict[str, object] = {
        "exitCode": completed.returncode,
        "stdout": completed.stdout,
        "stderr": completed.stderr,
    }
    if completed.returncode != 0:
        raise ExecutorFailure(
            f"Shell command exited with {completed.returncode}",
            effect_id=effect_id,
            task_name=task_name,
            details={"command": spec.command, **output},
        )
    return output
