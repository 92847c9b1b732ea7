"""Breakpoints: durable human-in-the-loop checkpoints.

Lifecycle: raised -> waiting -> released(decision). Records live on disk under
``{runId}/breakpoints/`` so a run parked at a breakpoint survives a restart
and a decision can be recorded out-of-band (CLI or review API).
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import Field

from process_orchestrator.core.errors import (
    BreakpointAlreadyResolved,
    BreakpointNotFound,
    BreakpointUnresolved,
)
from process_orchestrator.runtime.clock import Clock, utc_iso
from process_orchestrator.runtime.storage import CamelModel, Journal, RunStore, read_json, write_json

logger = logging.getLogger(__name__)


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class DecisionAction(str, Enum):
    PROCEED = "proceed"
    ABORT = "abort"
    RETRY = "retry"


class Decision(CamelModel):
    action: DecisionAction
    comment: str | None = None
    author: str | None = None
    decided_at: str = Field(default_factory=_utc_iso_now)


class BreakpointStatus(str, Enum):
    WAITING = "waiting"
    RELEASED = "released"


class BreakpointRecord(CamelModel):
    breakpoint_id: str
    run_id: str
    question: str
    title: str
    context: dict[str, Any] = Field(default_factory=dict)
    status: BreakpointStatus = BreakpointStatus.WAITING
    decision: Decision | None = None
    created_at: str
    released_at: str | None = None


class BreakpointStore:
    """JSON-file backed store for breakpoint records, one file per breakpoint."""

    def __init__(self, runs: RunStore) -> None:
        self._runs = runs
        self._lock = threading.Lock()

    def _path(self, run_id: str, breakpoint_id: str):
        return self._runs.resolve_path(run_id, f"breakpoints/{breakpoint_id}.json")

    def get(self, run_id: str, breakpoint_id: str) -> BreakpointRecord | None:
        path = self._path(run_id, breakpoint_id)
        if not path.exists():
            return None
        return BreakpointRecord.model_validate(read_json(path))

    def require(self, run_id: str, breakpoint_id: str) -> BreakpointRecord:
        record = self.get(run_id, breakpoint_id)
        if record is None:
            raise BreakpointNotFound(f"Breakpoint not found: {run_id}/{breakpoint_id}")
        return record

    def create(self, record: BreakpointRecord) -> BreakpointRecord:
        with self._lock:
            existing = self.get(record.run_id, record.breakpoint_id)
            if existing is not None:
                return existing
            write_json(self._path(record.run_id, record.breakpoint_id), record.to_json())
            return record

    def resolve(
        self,
        run_id: str,
        breakpoint_id: str,
        *,
        action: DecisionAction | str,
        comment: str | None = None,
        author: str | None = None,
    ) -> BreakpointRecord:
        with self._lock:
            record = self.require(run_id, breakpoint_id)
            if record.status == BreakpointStatus.RELEASED:
                raise BreakpointAlreadyResolved(
                    f"Breakpoint already resolved: {run_id}/{breakpoint_id}"
                )
            decision = Decision(action=DecisionAction(action), comment=comment, author=author)
            updated = record.model_copy(
                update={
                    "status": BreakpointStatus.RELEASED,
                    "decision": decision,
                    "released_at": decision.decided_at,
                }
            )
            write_json(self._path(run_id, breakpoint_id), updated.to_json())
        logger.info(
            "Breakpoint resolved",
            extra={
                "run_id": run_id,
                "breakpoint_id": breakpoint_id,
                "action": decision.action.value,
                "author": author,
            },
        )
        return updated

    def list(
        self, *, run_id: str | None = None, status: BreakpointStatus | None = None
    ) -> list[BreakpointRecord]:
        run_ids = [run_id] if run_id else [r.run_id for r in self._runs.list_runs()]
        records: list[BreakpointRecord] = []
        for rid in run_ids:
            directory = self._runs.run_dir(rid) / "breakpoints"
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.json")):
                try:
                    record = BreakpointRecord.model_validate(read_json(path))
                except (json.JSONDecodeError, ValueError):
                    logger.warning("Skipping unreadable breakpoint", extra={"path": str(path)})
                    continue
                if status is None or record.status == status:
                    records.append(record)
        records.sort(key=lambda r: r.created_at)
        return records


class ReviewerChannel(Protocol):
    """Delivers a decision for a waiting breakpoint.

    Raises ``BreakpointUnresolved`` when no decision can be obtained, or
    ``RunSuspended`` to park the run durably.
    """

    def request_decision(self, breakpoint: BreakpointRecord) -> Decision: ...


class BreakpointNotifier(Protocol):
    def breakpoint_created(self, breakpoint: BreakpointRecord) -> None: ...

    def breakpoint_released(self, breakpoint: BreakpointRecord) -> None: ...


class BreakpointController:
    """Raise breakpoints for one run and block until a decision exists.

    A missing or timed-out decision channel fails closed: the breakpoint is
    released with an ``abort`` decision.
    """

    def __init__(
        self,
        *,
        run_id: str,
        store: BreakpointStore,
        journal: Journal,
        clock: Clock,
        reviewer: ReviewerChannel,
        notifier: BreakpointNotifier | None = None,
    ) -> None:
        self.run_id = run_id
        self.store = store
        self.journal = journal
        self.clock = clock
        self.reviewer = reviewer
        self.notifier = notifier

    def raise_breakpoint(
        self,
        breakpoint_id: str,
        *,
        question: str,
        title: str,
        context: dict[str, Any],
    ) -> Decision:
        record = self.store.get(self.run_id, breakpoint_id)
        if record is not None and record.decision is not None:
            self.journal.append(
                "BREAKPOINT_RESOLVED",
                {
                    "breakpointId": breakpoint_id,
                    "action": record.decision.action.value,
                    "author": record.decision.author,
                    "recorded": True,
                },
                recorded_at=self.clock.now(),
            )
            return record.decision

        if record is None:
            record = self.store.create(
                BreakpointRecord(
                    breakpoint_id=breakpoint_id,
                    run_id=self.run_id,
                    question=question,
                    title=title,
                    context=context,
                    created_at=utc_iso(self.clock.now()),
                )
            )
            self.journal.append(
                "BREAKPOINT_RAISED",
                {"breakpointId": breakpoint_id, "title": title, "question": question},
                recorded_at=self.clock.now(),
            )
            logger.info(
                "Breakpoint raised",
                extra={"run_id": self.run_id, "breakpoint_id": breakpoint_id, "title": title},
            )
            self._notify("created", record)

        try:
            decision = self.reviewer.request_decision(record)
        except BreakpointUnresolved as e:
            logger.warning(
                "No decision available; failing closed",
                extra={"run_id": self.run_id, "breakpoint_id": breakpoint_id, "reason": str(e)},
            )
            decision = Decision(
                action=DecisionAction.ABORT,
                comment=f"No decision: {e}",
                author="system",
            )

        released = self._record(breakpoint_id, decision)
        self.journal.append(
            "BREAKPOINT_RESOLVED",
            {
                "breakpointId": breakpoint_id,
                "action": released.decision.action.value if released.decision else None,
                "author": released.decision.author if released.decision else None,
            },
            recorded_at=self.clock.now(),
        )
        self._notify("released", released)
        assert released.decision is not None
        return released.decision

    def _record(self, breakpoint_id: str, decision: Decision) -> BreakpointRecord:
        try:
            return self.store.resolve(
                self.run_id,
                breakpoint_id,
                action=decision.action,
                comment=decision.comment,
                author=decision.author,
            )
        except BreakpointAlreadyResolved:
            # The channel read a decision somebody else already recorded.
            return self.store.require(self.run_id, breakpoint_id)

    def _notify(self, event: str, record: BreakpointRecord) -> None:
        if self.notifier is None:
            return
        if event == "created":
            self.notifier.breakpoint_created(record)
        else:
            self.notifier.breakpoint_released(record)
