"""Core configuration for the orchestrator."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from process_orchestrator.orchestrator.logging import configure_logging


class LLMConfig(BaseSettings):
    """Configuration for the LLM provider backing agent tasks."""

    provider: Literal["openai"] = Field(
        default="openai",
        description="LLM provider to use",
    )

    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model to use",
    )
    openai_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a single provider request",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_LLM_",
        env_file=".env",
        extra="ignore",
    )


class RunStorageConfig(BaseSettings):
    """Configuration for durable run storage."""

    root: Path = Field(
        default=Path(".runs"),
        description="Directory holding one sub-directory per run",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_RUNS_",
        env_file=".env",
        extra="ignore",
    )


class EffectConfig(BaseSettings):
    """Configuration for effect dispatch."""

    timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Default dispatch timeout for a single effect",
    )
    max_attempts: int = Field(
        default=1,
        ge=1,
        description="Attempts per effect for retryable executor failures",
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay between attempts (doubled per attempt)",
    )
    max_parallel: int = Field(
        default=8,
        ge=1,
        description="Worker threads available to a parallel group",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_EFFECT_",
        env_file=".env",
        extra="ignore",
    )


class BreakpointConfig(BaseSettings):
    """Configuration for human review at breakpoints."""

    reviewer: Literal["auto", "console", "store", "defer"] = Field(
        default="defer",
        description="Decision channel used when a breakpoint is raised",
    )
    decision_timeout_seconds: float = Field(
        default=3600.0,
        ge=0,
        description="How long the store channel waits for a decision (0 = forever)",
    )
    poll_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Polling interval for the store channel",
    )
    webhook_url: str | None = Field(
        default=None,
        description="Optional URL notified when breakpoints are raised or released",
    )
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for webhook delivery",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_BREAKPOINT_",
        env_file=".env",
        extra="ignore",
    )


class ScoringConfig(BaseSettings):
    """Configuration for final score aggregation."""

    policy: Literal["normalized", "fixed"] = Field(
        default="normalized",
        description="How skipped steps affect the final score",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_SCORE_",
        env_file=".env",
        extra="ignore",
    )


class OrchestratorConfig(BaseSettings):
    """Main configuration for the orchestrator."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="LLM configuration",
    )
    runs: RunStorageConfig = Field(
        default_factory=RunStorageConfig,
        description="Run storage configuration",
    )
    effects: EffectConfig = Field(
        default_factory=EffectConfig,
        description="Effect dispatch configuration",
    )
    breakpoints: BreakpointConfig = Field(
        default_factory=BreakpointConfig,
        description="Breakpoint configuration",
    )
    scoring: ScoringConfig = Field(
        default_factory=ScoringConfig,
        description="Scoring configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, fmt=self.log_format)
        if self.debug:
            logging.getLogger("process_orchestrator").setLevel(logging.DEBUG)
