"""Test configuration and fixtures."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from process_orchestrator.core.config import (
    BreakpointConfig,
    EffectConfig,
    LLMConfig,
    OrchestratorConfig,
    RunStorageConfig,
)
from process_orchestrator.core.errors import ExecutorFailure
from process_orchestrator.runtime.breakpoints import ReviewerChannel
from process_orchestrator.runtime.clock import TickingClock
from process_orchestrator.runtime.driver import ProcessRunner
from process_orchestrator.runtime.executors import AgentContract
from process_orchestrator.runtime.reviewers import AutoApproveReviewer
from process_orchestrator.runtime.storage import RunStore


class FakeAgentExecutor:
    """Agent executor returning canned outputs keyed by agent name."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[AgentContract] = []
        self._lock = threading.Lock()

    def run(self, contract: AgentContract) -> object:
        with self._lock:
            self.calls.append(contract)
        response = self.responses.get(contract.agent_name)
        if response is None:
            raise ExecutorFailure(f"No canned response for agent {contract.agent_name}")
        if isinstance(response, Exception):
            raise copy.copy(response)
        if callable(response):
            return response(contract)
        return copy.deepcopy(response)

    def called(self, agent_name: str) -> int:
        with self._lock:
            return sum(1 for c in self.calls if c.agent_name == agent_name)


@pytest.fixture
def runs_root(tmp_path: Path) -> Path:
    """Provide a temporary runs directory."""
    root = tmp_path / ".runs"
    root.mkdir()
    return root


@pytest.fixture
def store(runs_root: Path) -> RunStore:
    return RunStore(runs_root)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def effect_config() -> EffectConfig:
    return EffectConfig(timeout_seconds=5.0, max_attempts=1, retry_backoff_seconds=0.0)


@pytest.fixture
def container_responses() -> dict[str, Any]:
    """Schema-valid outputs for every agent of the container-security process."""
    return {
        "image-validator": {
            "success": True,
            "validatedImages": [
                {"name": "app:1.0", "tag": "1.0", "digest": "sha256:aaa", "layers": 7, "os": "linux"},
                {"name": "nginx:alpine", "tag": "alpine", "digest": "sha256:bbb", "layers": 4},
            ],
            "artifacts": [{"path": "out/inventory.json", "format": "json"}],
        },
        "trivy-scanner": {
            "vulnerabilities": [
                {"image": "app:1.0", "vulnerabilityId": "CVE-2024-0001", "severity": "CRITICAL"},
                {"image": "nginx:alpine", "vulnerabilityId": "CVE-2024-0002", "severity": "HIGH"},
            ],
            "imageResults": [
                {"image": "app:1.0", "totalVulnerabilities": 1, "critical": 1, "high": 0},
                {"image": "nginx:alpine", "totalVulnerabilities": 1, "critical": 0, "high": 1},
            ],
            "artifacts": [{"path": "out/trivy.json", "format": "json"}],
        },
        "grype-scanner": {
            "vulnerabilities": [
                {"image": "app:1.0", "vulnerabilityId": "CVE-2024-0003", "severity": "MEDIUM"},
            ],
            "imageResults": [
                {"image": "app:1.0", "totalVulnerabilities": 1},
                {"image": "nginx:alpine", "totalVulnerabilities": 0},
            ],
            "artifacts": [{"path": "out/grype.json", "format": "json"}],
        },
        "secret-scanner": {
            "secrets": [],
            "malware": [],
            "secretsFound": 0,
            "malwareFound": 0,
            "artifacts": [{"path": "out/secrets.md"}],
        },
        "config-assessor": {
            "issues": [{"check": "USER", "detail": "runs as root"}],
            "passedChecks": ["HEALTHCHECK"],
            "failedChecks": ["USER"],
            "artifacts": [{"path": "out/config.md"}],
        },
        "layer-analyzer": {
            "layerAnalysis": [],
            "baseImageIssues": [],
            "optimizations": [],
            "artifacts": [{"path": "out/layers.md"}],
        },
        "registry-validator": {
            "registrySecurityStatus": {
                "tlsEnabled": True,
                "authenticationConfigured": True,
                "imageSigningEnabled": False,
                "vulnerabilityScanningEnabled": True,
                "auditLoggingEnabled": False,
            },
            "issues": [],
            "artifacts": [{"path": "out/registry.md"}],
        },
        "policy-enforcer": {
            "passed": True,
            "violations": [],
            "criticalIssues": [],
            "artifacts": [{"path": "out/policy.md"}],
        },
        "compliance-validator": {
            "overallCompliance": {"percentage": 80, "passedChecks": 8, "totalChecks": 10},
            "standardResults": [],
            "gaps": [],
            "artifacts": [{"path": "out/compliance.md"}],
        },
        "image-signer": {
            "results": [],
            "signedImages": 2,
            "artifacts": [{"path": "out/signing.md"}],
        },
        "runtime-protector": {
            "policies": [],
            "rules": [],
            "artifacts": [{"path": "out/runtime.md"}],
        },
        "security-scorer": {
            "score": 80,
            "breakdown": {
                "vulnerabilityScore": 60,
                "configurationScore": 100,
                "secretsScore": 100,
                "malwareScore": 100,
                "layerScore": 80,
                "complianceScore": 80,
            },
            "artifacts": [{"path": "out/score.md"}],
        },
        "remediation-planner": {
            "plan": {"totalActions": 1},
            "prioritizedActions": [
                {"priority": "critical", "issue": "CVE-2024-0001", "remediation": "upgrade openssl"}
            ],
            "quickWins": [],
            "artifacts": [{"path": "out/remediation.md"}],
        },
        "security-reporter": {
            "reportPath": "out/report.md",
            "executiveSummary": "Two images scanned.",
            "keyFindings": ["One critical vulnerability"],
            "artifacts": [{"path": "out/report.md"}],
        },
    }


@pytest.fixture
def container_agent(container_responses: dict[str, Any]) -> FakeAgentExecutor:
    return FakeAgentExecutor(container_responses)


@pytest.fixture
def make_runner(
    store: RunStore, clock: TickingClock, effect_config: EffectConfig
) -> Callable[..., ProcessRunner]:
    """Build a runner over the temporary store with an auto-approving reviewer."""

    def factory(
        *,
        agent: Any = None,
        reviewer: ReviewerChannel | None = None,
        notifier: Any = None,
        scoring_policy: str = "normalized",
    ) -> ProcessRunner:
        return ProcessRunner(
            store=store,
            agent_executor=agent or FakeAgentExecutor(),
            reviewer=reviewer or AutoApproveReviewer(),
            notifier=notifier,
            clock=clock,
            effect_config=effect_config,
            scoring_policy=scoring_policy,  # type: ignore[arg-type]
        )

    return factory


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4",
    )


@pytest.fixture
def orchestrator_config(
    runs_root: Path, llm_config: LLMConfig, effect_config: EffectConfig
) -> OrchestratorConfig:
    """Provide a test orchestrator configuration."""
    return OrchestratorConfig(
        log_level="DEBUG",
        debug=True,
        llm=llm_config,
        runs=RunStorageConfig(root=runs_root),
        effects=effect_config,
        breakpoints=BreakpointConfig(reviewer="auto"),
    )
