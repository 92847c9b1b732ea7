"""Unit tests for breakpoint records, reviewer channels and webhook delivery."""

from __future__ import annotations

import io
from unittest.mock import Mock

import pytest
import requests

from process_orchestrator.core.config import BreakpointConfig
from process_orchestrator.core.errors import (
    BreakpointAlreadyResolved,
    BreakpointNotFound,
    BreakpointUnresolved,
    RunSuspended,
)
from process_orchestrator.runtime.breakpoints import (
    BreakpointController,
    BreakpointRecord,
    BreakpointStatus,
    BreakpointStore,
    DecisionAction,
)
from process_orchestrator.runtime.clock import TickingClock
from process_orchestrator.runtime.notifier import WebhookNotifier
from process_orchestrator.runtime.reviewers import (
    AutoApproveReviewer,
    ConsoleReviewer,
    DeferredReviewer,
    StoreReviewer,
    build_reviewer,
)
from process_orchestrator.runtime.storage import RunStore


def _record(run_id: str = "run-1", bp_id: str = "bp-0001") -> BreakpointRecord:
    return BreakpointRecord(
        breakpoint_id=bp_id,
        run_id=run_id,
        question="Proceed with deployment?",
        title="Container Security Scan Results",
        context={
            "files": [{"path": "out/report.md", "format": "markdown"}],
            "summary": {"criticalCount": 1},
        },
        created_at="2025-01-01T00:00:00+00:00",
    )


@pytest.fixture
def bp_store(store: RunStore) -> BreakpointStore:
    store.create_run(run_id="run-1", process_id="p", inputs={})
    return BreakpointStore(store)


def test_store_create_is_idempotent(bp_store: BreakpointStore) -> None:
    first = bp_store.create(_record())
    second = bp_store.create(_record().model_copy(update={"title": "Changed"}))

    assert second == first
    assert bp_store.require("run-1", "bp-0001").title == "Container Security Scan Results"


def test_store_resolve_records_decision_once(bp_store: BreakpointStore) -> None:
    bp_store.create(_record())

    released = bp_store.resolve("run-1", "bp-0001", action="proceed", comment="ok", author="bob")

    assert released.status == BreakpointStatus.RELEASED
    assert released.decision is not None
    assert released.decision.action == DecisionAction.PROCEED
    assert released.released_at == released.decision.decided_at
    with pytest.raises(BreakpointAlreadyResolved):
        bp_store.resolve("run-1", "bp-0001", action="abort")
    with pytest.raises(BreakpointNotFound):
        bp_store.resolve("run-1", "bp-0099", action="abort")
    bp_store.create(_record(bp_id="bp-0002"))
    with pytest.raises(ValueError):
        bp_store.resolve("run-1", "bp-0002", action="maybe")


def test_store_list_filters_by_status(bp_store: BreakpointStore) -> None:
    bp_store.create(_record(bp_id="bp-0001"))
    bp_store.create(_record(bp_id="bp-0002"))
    bp_store.resolve("run-1", "bp-0001", action="proceed")

    waiting = bp_store.list(status=BreakpointStatus.WAITING)
    assert [r.breakpoint_id for r in waiting] == ["bp-0002"]
    assert len(bp_store.list(run_id="run-1")) == 2


def test_controller_returns_recorded_decision_without_asking(
    bp_store: BreakpointStore, store: RunStore, clock: TickingClock
) -> None:
    bp_store.create(_record())
    bp_store.resolve("run-1", "bp-0001", action="proceed", author="alice")
    reviewer = Mock()

    controller = BreakpointController(
        run_id="run-1",
        store=bp_store,
        journal=store.journal("run-1"),
        clock=clock,
        reviewer=reviewer,
    )
    decision = controller.raise_breakpoint(
        "bp-0001", question="q", title="t", context={}
    )

    assert decision.author == "alice"
    reviewer.request_decision.assert_not_called()


def test_controller_fails_closed(bp_store: BreakpointStore, store: RunStore, clock: TickingClock) -> None:
    reviewer = Mock()
    reviewer.request_decision.side_effect = BreakpointUnresolved("nobody home")
    notifier = Mock()

    controller = BreakpointController(
        run_id="run-1",
        store=bp_store,
        journal=store.journal("run-1"),
        clock=clock,
        reviewer=reviewer,
        notifier=notifier,
    )
    decision = controller.raise_breakpoint("bp-0001", question="q", title="t", context={})

    assert decision.action == DecisionAction.ABORT
    assert decision.author == "system"
    assert bp_store.require("run-1", "bp-0001").status == BreakpointStatus.RELEASED
    notifier.breakpoint_created.assert_called_once()
    notifier.breakpoint_released.assert_called_once()
    types = [e.type for e in store.journal("run-1").load()]
    assert types == ["BREAKPOINT_RAISED", "BREAKPOINT_RESOLVED"]


def test_console_reviewer_reads_answers() -> None:
    answers = iter(["what", "a", "too risky"])
    out = io.StringIO()

    decision = ConsoleReviewer(input_fn=lambda _p: next(answers), output=out).request_decision(
        _record()
    )

    assert decision.action == DecisionAction.ABORT
    assert decision.comment == "too risky"
    assert decision.author == "console"
    rendered = out.getvalue()
    assert "Container Security Scan Results" in rendered
    assert "out/report.md" in rendered
    assert '"criticalCount": 1' in rendered
    assert "Unrecognized answer" in rendered


def test_console_reviewer_closed_stdin_is_unresolved() -> None:
    def closed(_prompt: str) -> str:
        raise EOFError

    with pytest.raises(BreakpointUnresolved):
        ConsoleReviewer(input_fn=closed, output=io.StringIO()).request_decision(_record())


def test_store_reviewer_picks_up_out_of_band_decision(bp_store: BreakpointStore) -> None:
    bp_store.create(_record())
    polls: list[float] = []

    def sleep(seconds: float) -> None:
        polls.append(seconds)
        bp_store.resolve("run-1", "bp-0001", action="retry", author="api")

    reviewer = StoreReviewer(bp_store, poll_seconds=0.5, timeout_seconds=0, sleep=sleep)
    decision = reviewer.request_decision(_record())

    assert decision.action == DecisionAction.RETRY
    assert polls == [0.5]


def test_deferred_reviewer_suspends() -> None:
    with pytest.raises(RunSuspended) as exc:
        DeferredReviewer().request_decision(_record())
    assert exc.value.breakpoint_id == "bp-0001"


def test_build_reviewer_kinds(bp_store: BreakpointStore) -> None:
    config = BreakpointConfig(reviewer="store", poll_seconds=1, decision_timeout_seconds=5)

    assert isinstance(build_reviewer(config, bp_store), StoreReviewer)
    assert isinstance(build_reviewer(config, bp_store, kind="auto"), AutoApproveReviewer)
    assert isinstance(build_reviewer(config, bp_store, kind="console"), ConsoleReviewer)
    assert isinstance(build_reviewer(config, bp_store, kind="defer"), DeferredReviewer)
    with pytest.raises(ValueError):
        build_reviewer(config, bp_store, kind="carrier-pigeon")


def test_webhook_posts_breakpoint_payload() -> None:
    session = Mock(spec=requests.Session)
    session.headers = {}
    notifier = WebhookNotifier(
        "https://hooks.example/bp", session=session, headers={"X-Token": "t"}, timeout_seconds=3
    )

    notifier.breakpoint_created(_record())

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args == ("https://hooks.example/bp",)
    assert kwargs["timeout"] == 3
    assert kwargs["json"] == {
        "event": "breakpoint.created",
        "runId": "run-1",
        "breakpointId": "bp-0001",
        "title": "Container Security Scan Results",
        "question": "Proceed with deployment?",
        "status": "waiting",
        "files": ["out/report.md"],
        "decision": None,
    }
    assert session.headers == {"X-Token": "t"}


def test_webhook_failures_are_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    session = Mock(spec=requests.Session)
    session.headers = {}
    session.post.side_effect = requests.ConnectionError("refused")

    WebhookNotifier("https://hooks.example/bp", session=session).breakpoint_released(_record())

    assert "Webhook delivery failed" in caplog.text
