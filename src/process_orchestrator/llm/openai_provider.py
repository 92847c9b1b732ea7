"""OpenAI chat-completions backend."""

import logging

import openai
from openai import OpenAI

from process_orchestrator.core.config import LLMConfig
from process_orchestrator.llm.provider import Completion, LLMError, LLMProvider

logger = logging.getLogger(__name__)

# Client-side mistakes that a retry will not fix.
_PERMANENT_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
)


class OpenAIProvider(LLMProvider):
    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        """Build the provider; tests pass a mock ``client``.

        Raises:
            ValueError: No client given and no API key configured.
        """
        if client is None and not config.openai_api_key:
            raise ValueError("OpenAI API key is required")

        self.model = config.openai_model
        self.temperature = config.openai_temperature
        self.client = client or OpenAI(
            api_key=config.openai_api_key,
            timeout=config.request_timeout_seconds,
            max_retries=0,
        )
        logger.info("OpenAI provider ready", extra={"model": self.model})

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        request: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**request)  # type: ignore[call-overload]
        except _PERMANENT_ERRORS as e:
            raise LLMError(f"OpenAI rejected the request: {e}", retryable=False) from e
        except openai.OpenAIError as e:
            raise LLMError(f"OpenAI request failed: {e}") from e

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        completion = Completion(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or self.model,
            finish_reason=getattr(choice, "finish_reason", None),
            usage={
                "promptTokens": getattr(usage, "prompt_tokens", 0) or 0,
                "completionTokens": getattr(usage, "completion_tokens", 0) or 0,
            }
            if usage is not None
            else {},
        )
        logger.debug(
            "Completion received",
            extra={"model": completion.model, "chars": len(completion.content), **completion.usage},
        )
        return completion
