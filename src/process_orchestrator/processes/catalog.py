"""Process catalog: process ids mapped to their entrypoints.

Entrypoints are imported lazily so listing the catalog never loads every
process module. Any ``"module:attribute"`` string naming a
``ProcessDefinition`` can be used directly in place of a catalog id.
"""

from __future__ import annotations

import logging

from process_orchestrator.runtime.driver import ProcessDefinition, load_entrypoint

logger = logging.getLogger(__name__)

BUILTIN_PROCESSES: dict[str, str] = {
    "security-compliance/container-security": (
        "process_orchestrator.processes.container_security:PROCESS"
    ),
}


class ProcessCatalog:
    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self._entries = dict(BUILTIN_PROCESSES if entries is None else entries)

    def register(self, process_id: str, entrypoint: str) -> None:
        self._entries[process_id] = entrypoint

    def ids(self) -> list[str]:
        return sorted(self._entries)

    def entrypoint(self, process_id: str) -> str:
        if process_id in self._entries:
            return self._entries[process_id]
        if ":" in process_id:
            return process_id
        raise KeyError(f"Unknown process: {process_id}")

    def load(self, process_id: str) -> ProcessDefinition:
        entrypoint = self.entrypoint(process_id)
        logger.debug("Loading process", extra={"process_id": process_id, "entrypoint": entrypoint})
        return load_entrypoint(entrypoint)
