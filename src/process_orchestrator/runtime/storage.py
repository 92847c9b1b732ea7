"""Durable, file-backed run storage.

Layout under the runs root::

    {runId}/run.json                  run metadata and status
    {runId}/journal.jsonl             append-only event log
    {runId}/tasks/{effectId}/input.json   written before the first dispatch
    {runId}/tasks/{effectId}/input.N.json written before each later dispatch
    {runId}/tasks/{effectId}/result.json  written after success
    {runId}/tasks/{effectId}/error.json   written after failure
    {runId}/breakpoints/{id}.json     breakpoint records
    {runId}/result.json               final process result

Records are plain JSON so runs stay inspectable with ordinary tools.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import uuid
from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from process_orchestrator.core.errors import RunAlreadyExists, RunNotFound

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class CamelModel(BaseModel):
    """Persisted records use camelCase keys on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RunStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunRecord(CamelModel):
    run_id: str
    process_id: str
    entrypoint: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    request: str | None = None
    status: RunStatus = RunStatus.CREATED
    created_at: str
    updated_at: str


class JournalEvent(CamelModel):
    seq: int
    event_id: str
    recorded_at: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class RunSnapshot(CamelModel):
    run_id: str
    status: RunStatus
    journal_head: int | None
    effects_by_status: dict[str, int] = Field(default_factory=dict)
    pending_breakpoints: list[str] = Field(default_factory=list)
    artifacts: int = 0


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def new_run_id() -> str:
    return uuid.uuid4().hex


def write_json(path: Path, payload: object) -> None:
    """Write JSON atomically (temp file + rename)."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    tmp.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8"
    )
    os.replace(tmp, path)


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class Journal:
    """Append-only JSONL event log for one run.

    Sequence numbers are strictly increasing; appends are serialized with a
    lock because parallel group members journal from worker threads.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._seq = self._recover_seq()

    @property
    def path(self) -> Path:
        return self._path

    def _recover_seq(self) -> int:
        if not self._path.exists():
            return 0
        with open(self._path, "rb+") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    # Terminate a torn final line so the next append starts clean.
                    f.write(b"\n")
        last = 0
        for event in self._read_events():
            last = max(last, event.seq)
        return last

    def _read_events(self) -> list[JournalEvent]:
        events: list[JournalEvent] = []
        with open(self._path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(JournalEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValueError):
                    # A torn final line from a crash is skipped; the rest stays usable.
                    logger.warning(
                        "Skipping unreadable journal line",
                        extra={"path": str(self._path), "line": lineno},
                    )
        return events

    def append(self, event_type: str, data: dict[str, Any], *, recorded_at: datetime) -> JournalEvent:
        with self._lock:
            self._seq += 1
            event = JournalEvent(
                seq=self._seq,
                event_id=uuid.uuid4().hex,
                recorded_at=recorded_at.astimezone(UTC).isoformat(),
                type=event_type,
                data=data,
            )
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_json(), ensure_ascii=False, default=str) + "\n")
            return event

    def load(self) -> list[JournalEvent]:
        with self._lock:
            if not self._path.exists():
                return []
            return self._read_events()


class RunStore:
    """File-backed store for runs, their journals and effect I/O records."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()
        self._journals: dict[str, Journal] = {}

    @property
    def root(self) -> Path:
        return self._root

    def run_dir(self, run_id: str) -> Path:
        if not _SAFE_ID.match(run_id):
            raise ValueError(f"Invalid run id: {run_id!r}")
        return self._root / run_id

    def resolve_path(self, run_id: str, relative: str) -> Path:
        """Resolve a run-relative path, refusing anything outside the run directory."""

        base = self.run_dir(run_id).resolve()
        candidate = (base / relative).resolve()
        if candidate != base and base not in candidate.parents:
            raise ValueError(f"Path escapes run directory: {relative!r}")
        return candidate

    # Runs

    def exists(self, run_id: str) -> bool:
        return (self.run_dir(run_id) / "run.json").exists()

    def create_run(
        self,
        *,
        run_id: str,
        process_id: str,
        inputs: dict[str, Any],
        entrypoint: str | None = None,
        request: str | None = None,
    ) -> RunRecord:
        with self._lock:
            if self.exists(run_id):
                raise RunAlreadyExists(f"Run already exists: {run_id}")
            now = _utc_iso_now()
            record = RunRecord(
                run_id=run_id,
                process_id=process_id,
                entrypoint=entrypoint,
                inputs=inputs,
                request=request,
                status=RunStatus.CREATED,
                created_at=now,
                updated_at=now,
            )
            write_json(self.run_dir(run_id) / "run.json", record.to_json())
        logger.info("Run created", extra={"run_id": run_id, "process_id": process_id})
        return record

    def load_run(self, run_id: str) -> RunRecord:
        path = self.run_dir(run_id) / "run.json"
        if not path.exists():
            raise RunNotFound(f"Run not found: {run_id}")
        return RunRecord.model_validate(read_json(path))

    def update_run(self, run_id: str, **updates: object) -> RunRecord:
        with self._lock:
            current = self.load_run(run_id)
            merged = current.model_copy(update={"updated_at": _utc_iso_now(), **updates})
            write_json(self.run_dir(run_id) / "run.json", merged.to_json())
            return merged

    def list_runs(self) -> list[RunRecord]:
        if not self._root.exists():
            return []
        runs: list[RunRecord] = []
        for child in sorted(self._root.iterdir()):
            path = child / "run.json"
            if not path.is_file():
                continue
            try:
                runs.append(RunRecord.model_validate(read_json(path)))
            except (json.JSONDecodeError, ValueError):
                logger.warning("Skipping unreadable run record", extra={"path": str(path)})
        runs.sort(key=lambda r: r.created_at)
        return runs

    def journal(self, run_id: str) -> Journal:
        with self._lock:
            journal = self._journals.get(run_id)
            if journal is None:
                journal = Journal(self.run_dir(run_id) / "journal.jsonl")
                self._journals[run_id] = journal
            return journal

    # Effect records

    def write_effect_input(self, run_id: str, relative: str, payload: dict[str, Any]) -> Path:
        """Write an input record without replacing an earlier one.

        A re-dispatch after resume lands in ``input.2.json``, ``input.3.json`` and so on.
        """

        first = self.resolve_path(run_id, relative)
        path = first
        n = 1
        while path.exists():
            n += 1
            path = first.with_name(f"{first.stem}.{n}{first.suffix}")
        write_json(path, payload)
        return path

    def write_effect_result(self, run_id: str, relative: str, payload: dict[str, Any]) -> Path:
        path = self.resolve_path(run_id, relative)
        write_json(path, payload)
        return path

    def write_effect_error(self, run_id: str, effect_id: str, payload: dict[str, Any]) -> Path:
        path = self.resolve_path(run_id, f"tasks/{effect_id}/error.json")
        write_json(path, payload)
        return path

    def read_effect_result(self, run_id: str, relative: str) -> dict[str, Any] | None:
        """Return a recorded result, or ``None`` when the effect never succeeded."""

        path = self.resolve_path(run_id, relative)
        if not path.exists():
            return None
        try:
            raw = read_json(path)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable effect result", extra={"path": str(path)})
            return None
        return raw if isinstance(raw, dict) else None

    # Final result

    def write_process_result(self, run_id: str, payload: dict[str, Any]) -> None:
        write_json(self.run_dir(run_id) / "result.json", payload)

    def read_process_result(self, run_id: str) -> dict[str, Any] | None:
        path = self.run_dir(run_id) / "result.json"
        if not path.exists():
            return None
        raw = read_json(path)
        return raw if isinstance(raw, dict) else None

    def snapshot(self, run_id: str) -> RunSnapshot:
        """Summarize a run from its journal (effects by status, pending breakpoints)."""

        record = self.load_run(run_id)
        events = self.journal(run_id).load()

        effect_state: dict[str, str] = {}
        pending: dict[str, None] = {}
        artifacts = 0
        for event in events:
            effect_id = event.data.get("effectId")
            if event.type == "EFFECT_REQUESTED" and isinstance(effect_id, str):
                effect_state[effect_id] = "running"
            elif event.type in {"EFFECT_RESOLVED", "EFFECT_REPLAYED"} and isinstance(effect_id, str):
                effect_state[effect_id] = str(event.data.get("status", "succeeded"))
            elif event.type == "BREAKPOINT_RAISED":
                pending[str(event.data.get("breakpointId"))] = None
            elif event.type == "BREAKPOINT_RESOLVED":
                pending.pop(str(event.data.get("breakpointId")), None)
            elif event.type == "RUN_RESUMED":
                # A resumed session re-accumulates artifacts from replayed effects.
                artifacts = 0
            elif event.type == "ARTIFACTS_ADDED":
                artifacts += len(event.data.get("artifacts") or [])

        return RunSnapshot(
            run_id=run_id,
            status=record.status,
            journal_head=events[-1].seq if events else None,
            effects_by_status=dict(Counter(effect_state.values())),
            pending_breakpoints=list(pending),
            artifacts=artifacts,
        )
