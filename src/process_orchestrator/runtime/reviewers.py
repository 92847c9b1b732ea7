"""Decision channels for breakpoints.

Each channel implements ``request_decision(breakpoint) -> Decision``.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Callable
from typing import TextIO

from process_orchestrator.core.config import BreakpointConfig
from process_orchestrator.core.errors import BreakpointUnresolved, RunSuspended
from process_orchestrator.runtime.breakpoints import (
    BreakpointRecord,
    BreakpointStore,
    Decision,
    DecisionAction,
    ReviewerChannel,
)

logger = logging.getLogger(__name__)


class AutoApproveReviewer:
    """Non-interactive channel that always returns the same action."""

    def __init__(self, action: DecisionAction = DecisionAction.PROCEED, author: str = "auto") -> None:
        self.action = action
        self.author = author

    def request_decision(self, breakpoint: BreakpointRecord) -> Decision:
        return Decision(action=self.action, author=self.author, comment="auto-approved")


class ConsoleReviewer:
    """Prompt a human on a terminal."""

    _CHOICES = {
        "p": DecisionAction.PROCEED,
        "proceed": DecisionAction.PROCEED,
        "a": DecisionAction.ABORT,
        "abort": DecisionAction.ABORT,
        "r": DecisionAction.RETRY,
        "retry": DecisionAction.RETRY,
    }

    def __init__(
        self,
        *,
        input_fn: Callable[[str], str] = input,
        output: TextIO | None = None,
        author: str = "console",
        max_prompts: int = 3,
    ) -> None:
        self.input_fn = input_fn
        self.output = output or sys.stderr
        self.author = author
        self.max_prompts = max_prompts

    def _render(self, breakpoint: BreakpointRecord) -> None:
        out = self.output
        out.write(f"\n=== Breakpoint {breakpoint.breakpoint_id}: {breakpoint.title} ===\n")
        out.write(f"{breakpoint.question}\n")
        files = breakpoint.context.get("files") or []
        if files:
            out.write("Files:\n")
            for f in files:
                out.write(f"  - {f.get('path')} ({f.get('format')})\n")
        summary = breakpoint.context.get("summary")
        if summary is not None:
            out.write("Summary:\n")
            out.write(json.dumps(summary, indent=2, default=str) + "\n")
        out.flush()

    def request_decision(self, breakpoint: BreakpointRecord) -> Decision:
        self._render(breakpoint)
        for _ in range(self.max_prompts):
            try:
                answer = self.input_fn("[p]roceed / [a]bort / [r]etry: ")
            except EOFError as e:
                raise BreakpointUnresolved("Console closed before a decision was made") from e
            action = self._CHOICES.get(answer.strip().lower())
            if action is not None:
                comment: str | None = None
                try:
                    comment = self.input_fn("Comment (optional): ").strip() or None
                except EOFError:
                    comment = None
                return Decision(action=action, author=self.author, comment=comment)
            self.output.write(f"Unrecognized answer: {answer!r}\n")
        raise BreakpointUnresolved("No valid decision entered")


class StoreReviewer:
    """Poll the breakpoint store until a decision is recorded out-of-band.

    Decisions arrive through the CLI (``breakpoints resolve``) or the review
    API. A ``timeout_seconds`` of 0 waits forever.
    """

    def __init__(
        self,
        store: BreakpointStore,
        *,
        poll_seconds: float = 2.0,
        timeout_seconds: float = 3600.0,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.poll_seconds = poll_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._monotonic = monotonic

    def request_decision(self, breakpoint: BreakpointRecord) -> Decision:
        deadline = None
        if self.timeout_seconds > 0:
            deadline = self._monotonic() + self.timeout_seconds
        logger.info(
            "Waiting for breakpoint decision",
            extra={
                "run_id": breakpoint.run_id,
                "breakpoint_id": breakpoint.breakpoint_id,
                "timeout_seconds": self.timeout_seconds,
            },
        )
        while True:
            record = self.store.get(breakpoint.run_id, breakpoint.breakpoint_id)
            if record is None:
                raise BreakpointUnresolved(
                    f"Breakpoint record disappeared: {breakpoint.breakpoint_id}"
                )
            if record.decision is not None:
                return record.decision
            if deadline is not None and self._monotonic() >= deadline:
                raise BreakpointUnresolved(
                    f"No decision within {self.timeout_seconds}s for {breakpoint.breakpoint_id}"
                )
            self._sleep(self.poll_seconds)


class DeferredReviewer:
    """Park the run durably; it continues on ``resume`` once a decision exists."""

    def request_decision(self, breakpoint: BreakpointRecord) -> Decision:
        raise RunSuspended(breakpoint.breakpoint_id)


def build_reviewer(
    config: BreakpointConfig,
    store: BreakpointStore,
    *,
    kind: str | None = None,
) -> ReviewerChannel:
    """Create the reviewer channel named by ``kind`` (or the configured one)."""

    selected = kind or config.reviewer
    if selected == "auto":
        return AutoApproveReviewer()
    if selected == "console":
        return ConsoleReviewer()
    if selected == "store":
        return StoreReviewer(
            store,
            poll_seconds=config.poll_seconds,
            timeout_seconds=config.decision_timeout_seconds,
        )
    if selected == "defer":
        return DeferredReviewer()
    raise ValueError(f"Unsupported reviewer: {selected}")
