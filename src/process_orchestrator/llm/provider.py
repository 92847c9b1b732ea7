"""Provider interface used by LLM-backed agent tasks."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class LLMError(Exception):
    """The provider could not produce a completion."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class InvalidJSONResponse(LLMError):
    """The model answered, but not with a JSON document."""

    def __init__(self, message: str, content: str) -> None:
        super().__init__(message, retryable=False)
        self.content = content


@dataclass(frozen=True, slots=True)
class Completion:
    content: str
    model: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


def strip_code_fence(text: str) -> str:
    """Drop a surrounding markdown code fence (```json ... ```), if any."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    lines = stripped.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


class LLMProvider(ABC):
    """A chat-completion backend.

    Agent tasks reach a model only through this interface, so executors can
    be tested against a stub provider.
    """

    @abstractmethod
    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        """Run one chat completion.

        Args:
            messages: Message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            json_mode: Ask the backend to constrain output to a JSON object.

        Raises:
            LLMError: The backend failed or refused the request.
        """

    def complete_json(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int | None = None,
    ) -> tuple[Any, Completion]:
        """Complete in JSON mode and parse the answer.

        Raises:
            InvalidJSONResponse: The answer is not a JSON document.
        """
        completion = self.complete(messages, max_tokens=max_tokens, json_mode=True)
        try:
            return json.loads(strip_code_fence(completion.content)), completion
        except json.JSONDecodeError as e:
            raise InvalidJSONResponse(f"Model returned non-JSON output: {e}", completion.content) from e
