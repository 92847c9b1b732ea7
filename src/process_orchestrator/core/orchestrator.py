"""Main orchestrator implementation."""

import logging
from typing import Any

from process_orchestrator.core.config import OrchestratorConfig
from process_orchestrator.llm.factory import LLMFactory
from process_orchestrator.processes.catalog import ProcessCatalog
from process_orchestrator.runtime.breakpoints import (
    BreakpointRecord,
    BreakpointStatus,
    BreakpointStore,
    DecisionAction,
)
from process_orchestrator.runtime.driver import ProcessResult, ProcessRunner
from process_orchestrator.runtime.executors import (
    AgentExecutor,
    LLMAgentExecutor,
    UnavailableAgentExecutor,
)
from process_orchestrator.runtime.notifier import WebhookNotifier
from process_orchestrator.runtime.reviewers import build_reviewer
from process_orchestrator.runtime.storage import JournalEvent, RunRecord, RunSnapshot, RunStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """Entry point tying configuration to the process runtime.

    The orchestrator wires the run store, the agent executor (LLM-backed when
    an API key is configured), the breakpoint reviewer channel and the webhook
    notifier into a :class:`ProcessRunner`, and exposes run/breakpoint
    inspection for the CLI and the review API.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        *,
        agent_executor: AgentExecutor | None = None,
        catalog: ProcessCatalog | None = None,
        setup_logging: bool = True,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Configuration object. If None, loads from environment.
            agent_executor: Executor for agent tasks. If None, built from the
                LLM configuration.
            catalog: Process catalog. Defaults to the built-in processes.
            setup_logging: Configure logging from the settings.
        """
        self.config = config or OrchestratorConfig()
        if setup_logging:
            self.config.setup_logging()

        self.store = RunStore(self.config.runs.root)
        self.breakpoints = BreakpointStore(self.store)
        self.catalog = catalog or ProcessCatalog()
        self.agent_executor = agent_executor or self._build_agent_executor()

        self.notifier: WebhookNotifier | None = None
        if self.config.breakpoints.webhook_url:
            self.notifier = WebhookNotifier(
                self.config.breakpoints.webhook_url,
                timeout_seconds=self.config.breakpoints.webhook_timeout_seconds,
            )

        logger.info(
            "Orchestrator initialized",
            extra={"runs_root": str(self.config.runs.root), "reviewer": self.config.breakpoints.reviewer},
        )

    def _build_agent_executor(self) -> AgentExecutor:
        if not self.config.llm.openai_api_key:
            logger.warning("No LLM API key configured; agent tasks will fail")
            return UnavailableAgentExecutor()
        return LLMAgentExecutor(LLMFactory.create(self.config.llm))

    def runner(self, *, reviewer: str | None = None) -> ProcessRunner:
        return ProcessRunner(
            store=self.store,
            agent_executor=self.agent_executor,
            reviewer=build_reviewer(self.config.breakpoints, self.breakpoints, kind=reviewer),
            notifier=self.notifier,
            effect_config=self.config.effects,
            scoring_policy=self.config.scoring.policy,
        )

    def run(
        self,
        process_id: str,
        inputs: dict[str, Any],
        *,
        run_id: str | None = None,
        reviewer: str | None = None,
        request: str | None = None,
    ) -> ProcessResult:
        """Start a new run of a catalog process (or a ``module:attr`` entrypoint)."""
        process = self.catalog.load(process_id)
        logger.info("Starting run", extra={"process_id": process.process_id, "run_id": run_id})
        return self.runner(reviewer=reviewer).start(process, inputs, run_id=run_id, request=request)

    def resume(self, run_id: str, *, reviewer: str | None = None) -> ProcessResult:
        record = self.store.load_run(run_id)
        process = None
        if not record.entrypoint:
            process = self.catalog.load(record.process_id)
        return self.runner(reviewer=reviewer).resume(run_id, process=process)

    def list_processes(self) -> list[str]:
        return self.catalog.ids()

    def list_runs(self) -> list[RunRecord]:
        return self.store.list_runs()

    def get_run(self, run_id: str) -> RunSnapshot:
        return self.store.snapshot(run_id)

    def journal(self, run_id: str) -> list[JournalEvent]:
        self.store.load_run(run_id)
        return self.store.journal(run_id).load()

    def list_breakpoints(
        self, *, run_id: str | None = None, waiting_only: bool = False
    ) -> list[BreakpointRecord]:
        status = BreakpointStatus.WAITING if waiting_only else None
        return self.breakpoints.list(run_id=run_id, status=status)

    def resolve_breakpoint(
        self,
        run_id: str,
        breakpoint_id: str,
        *,
        action: DecisionAction | str,
        comment: str | None = None,
        author: str | None = None,
    ) -> BreakpointRecord:
        self.store.load_run(run_id)
        return self.breakpoints.resolve(
            run_id, breakpoint_id, action=action, comment=comment, author=author
        )
