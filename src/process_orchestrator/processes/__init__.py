"""Process definitions shipped with the orchestrator."""

from process_orchestrator.processes.catalog import BUILTIN_PROCESSES, ProcessCatalog

__all__ = ["BUILTIN_PROCESSES", "ProcessCatalog"]
