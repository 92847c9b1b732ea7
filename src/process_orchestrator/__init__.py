"""Process Orchestrator.

Durable runtime for process definitions: task effects dispatched to agent,
native or shell executors, parallel groups with ordered joins, fail-fast
gates, scoring, and human breakpoints that survive a restart.
"""

__version__ = "0.1.0"

from process_orchestrator.core.config import OrchestratorConfig

__all__ = ["__version__", "OrchestratorConfig"]
