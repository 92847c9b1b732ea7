"""Unit tests for the LLM provider and the LLM-backed agent executor."""

from __future__ import annotations

from unittest.mock import MagicMock, Mock

import httpx
import openai
import pytest

from process_orchestrator.core.config import LLMConfig
from process_orchestrator.core.errors import ExecutorFailure, SchemaViolation
from process_orchestrator.llm.factory import LLMFactory
from process_orchestrator.llm.openai_provider import OpenAIProvider
from process_orchestrator.llm.provider import (
    Completion,
    InvalidJSONResponse,
    LLMError,
    LLMProvider,
    strip_code_fence,
)
from process_orchestrator.runtime.executors import AgentContract, LLMAgentExecutor
from process_orchestrator.runtime.tasks import AgentPrompt


def _contract() -> AgentContract:
    return AgentContract(
        effect_id="0003-policy-enforcement",
        task_name="policy-enforcement",
        agent_name="policy-enforcer",
        prompt=AgentPrompt(
            role="container security policy engineer",
            task="Enforce security policies",
            context={"images": ["app:1.0"]},
            instructions=("Check for critical vulnerabilities", "Report violations"),
        ),
        output_schema={"type": "object", "required": ["passed"]},
    )


def _chat_response(content: str, finish_reason: str = "stop") -> Mock:
    response = Mock()
    response.model = "gpt-4-0613"
    response.choices = [Mock(message=Mock(content=content), finish_reason=finish_reason)]
    response.usage = Mock(prompt_tokens=120, completion_tokens=30)
    return response


def _openai_error(cls: type[openai.APIStatusError], status: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return cls("boom", response=httpx.Response(status, request=request), body=None)


def test_openai_provider_requires_key() -> None:
    with pytest.raises(ValueError):
        OpenAIProvider(LLMConfig(openai_api_key=None))


def test_openai_provider_complete(llm_config: LLMConfig) -> None:
    client = MagicMock()
    client.chat.completions.create.return_value = _chat_response('{"passed": true}')

    provider = OpenAIProvider(llm_config, client=client)
    completion = provider.complete([{"role": "user", "content": "hi"}], max_tokens=50)

    assert completion == Completion(
        content='{"passed": true}',
        model="gpt-4-0613",
        finish_reason="stop",
        usage={"promptTokens": 120, "completionTokens": 30},
    )
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4"
    assert kwargs["max_tokens"] == 50
    assert kwargs["temperature"] == llm_config.openai_temperature
    assert "response_format" not in kwargs


def test_complete_json_requests_json_mode(llm_config: LLMConfig) -> None:
    client = MagicMock()
    client.chat.completions.create.return_value = _chat_response('{"passed": false}')

    output, completion = OpenAIProvider(llm_config, client=client).complete_json(
        [{"role": "user", "content": "check"}]
    )

    assert output == {"passed": False}
    assert completion.finish_reason == "stop"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "max_tokens" not in kwargs


@pytest.mark.parametrize(
    ("error", "retryable"),
    [
        (_openai_error(openai.RateLimitError, 429), True),
        (_openai_error(openai.InternalServerError, 500), True),
        (_openai_error(openai.AuthenticationError, 401), False),
        (_openai_error(openai.BadRequestError, 400), False),
    ],
)
def test_openai_errors_become_llm_errors(
    llm_config: LLMConfig, error: Exception, retryable: bool
) -> None:
    client = MagicMock()
    client.chat.completions.create.side_effect = error

    with pytest.raises(LLMError) as exc:
        OpenAIProvider(llm_config, client=client).complete([{"role": "user", "content": "hi"}])

    assert exc.value.retryable is retryable


def test_strip_code_fence() -> None:
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_factory_creates_openai_provider(llm_config: LLMConfig) -> None:
    assert isinstance(LLMFactory.create(llm_config), OpenAIProvider)


def test_factory_rejects_unknown_provider(llm_config: LLMConfig) -> None:
    config = llm_config.model_copy(update={"provider": "llama"})
    with pytest.raises(ValueError):
        LLMFactory.create(config)


def test_executor_builds_messages_from_contract() -> None:
    executor = LLMAgentExecutor(Mock(spec=LLMProvider))

    system, user = executor.build_messages(_contract())

    assert system["role"] == "system"
    assert "container security policy engineer" in system["content"]
    assert '"required"' in system["content"]
    assert user["role"] == "user"
    assert "Task: Enforce security policies" in user["content"]
    assert '"app:1.0"' in user["content"]
    assert "1. Check for critical vulnerabilities" in user["content"]
    assert "2. Report violations" in user["content"]


def test_executor_returns_parsed_reply() -> None:
    provider = Mock(spec=LLMProvider)
    provider.complete_json.return_value = (
        {"passed": False, "violations": []},
        Completion(content="{}", model="gpt-4", finish_reason="stop"),
    )

    output = LLMAgentExecutor(provider, max_tokens=800).run(_contract())

    assert output == {"passed": False, "violations": []}
    assert provider.complete_json.call_args.kwargs["max_tokens"] == 800


def test_executor_maps_non_json_reply_to_schema_violation() -> None:
    provider = Mock(spec=LLMProvider)
    provider.complete_json.side_effect = InvalidJSONResponse(
        "Model returned non-JSON output", "I think the image is fine."
    )

    with pytest.raises(SchemaViolation) as exc:
        LLMAgentExecutor(provider).run(_contract())

    assert exc.value.effect_id == "0003-policy-enforcement"
    assert exc.value.details["excerpt"].startswith("I think")


@pytest.mark.parametrize("retryable", [True, False])
def test_executor_maps_provider_errors_to_executor_failure(retryable: bool) -> None:
    provider = Mock(spec=LLMProvider)
    provider.complete_json.side_effect = LLMError("unavailable", retryable=retryable)

    with pytest.raises(ExecutorFailure) as exc:
        LLMAgentExecutor(provider).run(_contract())

    assert exc.value.retryable is retryable
    assert exc.value.details == {"agent": "policy-enforcer"}
