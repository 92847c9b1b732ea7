"""Provider lookup by the configured provider name."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import ClassVar

from process_orchestrator.core.config import LLMConfig
from process_orchestrator.llm.openai_provider import OpenAIProvider
from process_orchestrator.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[[LLMConfig], LLMProvider]


class LLMFactory:
    _builders: ClassVar[dict[str, ProviderBuilder]] = {"openai": OpenAIProvider}

    @classmethod
    def register(cls, name: str, builder: ProviderBuilder) -> None:
        cls._builders[name] = builder

    @classmethod
    def create(cls, config: LLMConfig) -> LLMProvider:
        """Build the provider named by ``config.provider``.

        Raises:
            ValueError: If no builder is registered under that name.
        """
        builder = cls._builders.get(config.provider)
        if builder is None:
            raise ValueError(f"Unsupported LLM provider: {config.provider}")
        logger.info("Creating LLM provider", extra={"provider": config.provider})
        return builder(config)
