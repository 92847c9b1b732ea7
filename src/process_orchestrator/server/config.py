"""Configuration for the review API server."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the review API.

    The server only reads and writes run state on disk; it never executes
    processes, so it needs no LLM credentials.
    """

    runs_root: Path = Field(default=Path(".runs"), validation_alias="ORCHESTRATOR_RUNS_ROOT")
    decision_author: str = Field(
        default="review-api",
        validation_alias="ORCHESTRATOR_REVIEW_AUTHOR",
        description="Author recorded on decisions posted without one.",
    )

    # Dev-friendly CORS. Override via ORCHESTRATOR_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="ORCHESTRATOR_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
