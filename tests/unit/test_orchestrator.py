"""Unit tests for the orchestrator facade and the process catalog."""

from __future__ import annotations

import pytest

from process_orchestrator.core.config import (
    BreakpointConfig,
    LLMConfig,
    OrchestratorConfig,
    RunStorageConfig,
)
from process_orchestrator.core.orchestrator import Orchestrator
from process_orchestrator.processes import BUILTIN_PROCESSES, ProcessCatalog
from process_orchestrator.processes import container_security
from process_orchestrator.runtime.breakpoints import DecisionAction
from process_orchestrator.runtime.driver import ProcessSuccess, load_entrypoint
from process_orchestrator.runtime.executors import LLMAgentExecutor, UnavailableAgentExecutor
from process_orchestrator.runtime.notifier import WebhookNotifier


def test_catalog_resolves_builtin_and_explicit_entrypoints() -> None:
    catalog = ProcessCatalog()

    assert catalog.ids() == sorted(BUILTIN_PROCESSES)
    assert catalog.load(container_security.PROCESS_ID) is container_security.PROCESS
    explicit = "process_orchestrator.processes.container_security:PROCESS"
    assert catalog.load(explicit) is container_security.PROCESS
    with pytest.raises(KeyError):
        catalog.entrypoint("unknown")

    catalog.register("alias/container", explicit)
    assert "alias/container" in catalog.ids()


def test_load_entrypoint_validation() -> None:
    with pytest.raises(ValueError):
        load_entrypoint("no-colon")
    with pytest.raises(TypeError):
        load_entrypoint("process_orchestrator.processes.container_security:PROCESS_ID")


def test_agent_executor_depends_on_api_key(runs_root) -> None:
    without_key = Orchestrator(
        OrchestratorConfig(llm=LLMConfig(openai_api_key=None), runs=RunStorageConfig(root=runs_root)),
        setup_logging=False,
    )
    assert isinstance(without_key.agent_executor, UnavailableAgentExecutor)
    assert without_key.notifier is None

    with_key = Orchestrator(
        OrchestratorConfig(
            llm=LLMConfig(openai_api_key="test-key"),
            runs=RunStorageConfig(root=runs_root),
            breakpoints=BreakpointConfig(webhook_url="https://hooks.example/bp"),
        ),
        setup_logging=False,
    )
    assert isinstance(with_key.agent_executor, LLMAgentExecutor)
    assert isinstance(with_key.notifier, WebhookNotifier)


def test_run_and_inspect(orchestrator_config: OrchestratorConfig, container_agent) -> None:
    orchestrator = Orchestrator(
        orchestrator_config, agent_executor=container_agent, setup_logging=False
    )

    result = orchestrator.run(
        container_security.PROCESS_ID,
        {"containerImages": ["app:1.0"]},
        run_id="scan",
        reviewer="defer",
        request="Scan the release candidate",
    )
    assert result.status == "waiting"
    assert orchestrator.get_run("scan").pending_breakpoints == ["bp-0001"]
    assert orchestrator.list_runs()[0].request == "Scan the release candidate"
    assert [b.breakpoint_id for b in orchestrator.list_breakpoints(waiting_only=True)] == ["bp-0001"]

    orchestrator.resolve_breakpoint("scan", "bp-0001", action=DecisionAction.PROCEED, author="me")
    resumed = orchestrator.resume("scan", reviewer="defer")

    assert isinstance(resumed, ProcessSuccess)
    assert orchestrator.journal("scan")[-1].type == "RUN_COMPLETED"
    assert orchestrator.list_breakpoints(run_id="scan", waiting_only=True) == []
