"""Core package initialization."""

from process_orchestrator.core.config import OrchestratorConfig
from process_orchestrator.core.errors import OrchestratorError

__all__ = [
    "OrchestratorConfig",
    "OrchestratorError",
]
