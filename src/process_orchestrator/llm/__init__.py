"""LLM backends for agent tasks."""

from process_orchestrator.llm.factory import LLMFactory
from process_orchestrator.llm.provider import Completion, InvalidJSONResponse, LLMError, LLMProvider

__all__ = ["Completion", "InvalidJSONResponse", "LLMError", "LLMFactory", "LLMProvider"]
