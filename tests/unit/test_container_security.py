"""End-to-end tests for the container-security process against canned agents."""

from __future__ import annotations

import pytest

from process_orchestrator.core.errors import ExecutorFailure
from process_orchestrator.processes import container_security
from process_orchestrator.runtime.breakpoints import BreakpointStore, DecisionAction
from process_orchestrator.runtime.driver import ProcessFailure, ProcessSuccess
from process_orchestrator.runtime.reviewers import AutoApproveReviewer

IMAGES = {"containerImages": ["app:1.0", "nginx:alpine"]}

AFTER_POLICY = {
    "compliance-validator",
    "image-signer",
    "runtime-protector",
    "security-scorer",
    "remediation-planner",
    "security-reporter",
}


def _run(make_runner, agent, inputs, **kwargs):
    return make_runner(agent=agent, **kwargs).start(container_security.PROCESS, inputs, run_id="scan")


def test_clean_scan_without_registry(make_runner, container_agent, store) -> None:
    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessSuccess)
    # 71 raw points over 90 active weight once the registry step is skipped.
    assert result.score == 79
    assert result.outputs["securityScore"] == 79
    assert result.outputs["imagesScanned"] == 2
    assert len(result.outputs["vulnerabilities"]) == 3
    assert list(result.outputs["scanResults"]) == ["app:1.0", "nginx:alpine"]
    assert result.outputs["scanResults"]["app:1.0"]["trivy"]["critical"] == 1
    assert result.outputs["registryValidation"] is None
    assert result.outputs["reportPath"] == "out/report.md"
    assert [a.path for a in result.artifacts] == [
        "out/inventory.json",
        "out/trivy.json",
        "out/grype.json",
        "out/secrets.md",
        "out/config.md",
        "out/layers.md",
        "out/policy.md",
        "out/compliance.md",
        "out/score.md",
        "out/remediation.md",
        "out/report.md",
    ]
    assert container_agent.called("registry-validator") == 0
    assert container_agent.called("image-signer") == 0
    assert container_agent.called("runtime-protector") == 0

    events = store.journal("scan").load()
    skipped = [e.data["step"] for e in events if e.type == "STEP_SKIPPED"]
    assert skipped == ["registry", "image-signing", "runtime-protection-setup"]


def test_scanners_run_as_a_parallel_group(make_runner, container_agent, store) -> None:
    _run(make_runner, container_agent, IMAGES)

    requested = [
        e.data["effectId"] for e in store.journal("scan").load() if e.type == "EFFECT_REQUESTED"
    ]
    # Ids are allocated in driver order; dispatch order within the group is free.
    assert requested[0] == "0001-image-discovery"
    assert set(requested[1:3]) == {"0002-trivy-vulnerability-scan", "0003-grype-vulnerability-scan"}
    assert requested[3] == "0004-malware-secret-detection"


def test_registry_validation_contributes_to_the_score(make_runner, container_agent) -> None:
    result = _run(make_runner, container_agent, {**IMAGES, "registryUrl": "registry.example"})

    assert isinstance(result, ProcessSuccess)
    # Three of five registry checks pass: 6 of 10 points, no rescaling.
    assert result.score == 77
    assert result.outputs["registryValidation"]["issues"] == []
    assert "out/registry.md" in [a.path for a in result.artifacts]


def test_policy_violation_fails_fast(make_runner, container_agent, store) -> None:
    container_agent.responses["policy-enforcer"] = {
        "passed": False,
        "violations": [{"rule": "no-critical"}],
        "criticalIssues": ["CVE-2024-0001 in app:1.0"],
        "artifacts": [{"path": "out/policy.md"}],
    }

    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "policy-enforcement"
    assert result.error == "Critical security policy violations detected"
    assert result.details["criticalIssues"] == ["CVE-2024-0001 in app:1.0"]
    assert result.artifacts[-1].path == "out/policy.md"
    for agent_name in AFTER_POLICY:
        assert container_agent.called(agent_name) == 0
    assert store.read_process_result("scan")["failedStep"] == "policy-enforcement"


def test_policy_violation_tolerated_without_fail_on_critical(make_runner, container_agent) -> None:
    container_agent.responses["policy-enforcer"] = {
        "passed": False,
        "violations": [],
        "criticalIssues": ["CVE-2024-0001"],
        "artifacts": [],
    }

    result = _run(make_runner, container_agent, {**IMAGES, "failOnCritical": False})

    assert isinstance(result, ProcessSuccess)
    assert container_agent.called("security-reporter") == 1


def test_policy_enforcement_can_be_disabled(make_runner, container_agent) -> None:
    result = _run(make_runner, container_agent, {**IMAGES, "policyEnforcement": False})

    assert isinstance(result, ProcessSuccess)
    assert container_agent.called("policy-enforcer") == 0


def test_reviewer_abort_at_final_breakpoint(make_runner, container_agent, store) -> None:
    container_agent.responses["trivy-scanner"]["vulnerabilities"] = [
        {"image": "app:1.0", "vulnerabilityId": f"CVE-2024-100{i}", "severity": "CRITICAL"}
        for i in range(3)
    ]

    result = _run(
        make_runner, container_agent, IMAGES, reviewer=AutoApproveReviewer(DecisionAction.ABORT)
    )

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "bp-0001"
    record = BreakpointStore(store).require("scan", "bp-0001")
    assert record.title == "Container Security Scan Results"
    assert record.context["summary"]["criticalCount"] == 3
    assert record.context["summary"]["securityScore"] == 79
    assert "out/report.md" in [f["path"] for f in record.context["files"]]


def test_single_scanner_failure_degrades(make_runner, container_agent) -> None:
    container_agent.responses["grype-scanner"] = ExecutorFailure("grype database unavailable")

    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessSuccess)
    assert len(result.outputs["vulnerabilities"]) == 2
    assert "grype" not in result.outputs["scanResults"]["app:1.0"]


def test_all_scanners_failing_stops_the_run(make_runner, container_agent) -> None:
    container_agent.responses["trivy-scanner"] = ExecutorFailure("trivy crashed")
    container_agent.responses["grype-scanner"] = ExecutorFailure("grype crashed")

    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "vulnerability-scan"
    assert set(result.details) == {"trivy", "grype"}
    assert container_agent.called("secret-scanner") == 0


def test_missing_images_fail_before_any_effect(make_runner, container_agent) -> None:
    result = _run(make_runner, container_agent, {"containerImages": []})

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "inputs"
    assert container_agent.calls == []


def test_failed_discovery_stops_the_run(make_runner, container_agent) -> None:
    container_agent.responses["image-validator"] = {
        "success": False,
        "validatedImages": [],
        "artifacts": [],
        "errors": ["manifest unknown: app:1.0"],
    }

    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "image-discovery"
    assert result.details["errors"] == ["manifest unknown: app:1.0"]


def test_schema_violation_surfaces_as_failure(make_runner, container_agent) -> None:
    container_agent.responses["policy-enforcer"] = {"passed": "yes", "artifacts": []}

    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "policy-enforcement"
    assert result.details["kind"] == "schema_violation"


@pytest.mark.parametrize(
    ("flag", "agent_name", "field", "output_key"),
    [
        ("signImages", "image-signer", "results", "signingResults"),
        ("runtimeProtection", "runtime-protector", "policies", "runtimeProtection"),
    ],
)
def test_optional_hardening_steps(
    make_runner, container_agent, flag: str, agent_name: str, field: str, output_key: str
) -> None:
    container_agent.responses[agent_name][field] = [{"image": "app:1.0", "status": "ok"}]

    result = _run(make_runner, container_agent, {**IMAGES, flag: True})

    assert isinstance(result, ProcessSuccess)
    assert container_agent.called(agent_name) == 1
    assert result.outputs[output_key] == [{"image": "app:1.0", "status": "ok"}]
    other_key = ({"signingResults", "runtimeProtection"} - {output_key}).pop()
    assert result.outputs[other_key] is None

    report_call = next(c for c in container_agent.calls if c.agent_name == "security-reporter")
    assert report_call.prompt.context[output_key] == container_agent.responses[agent_name]


def test_report_and_remediation_see_every_finding(make_runner, container_agent) -> None:
    _run(make_runner, container_agent, IMAGES)

    by_agent = {c.agent_name: c.prompt.context for c in container_agent.calls}
    layers = container_agent.responses["layer-analyzer"]
    assert by_agent["remediation-planner"]["layerAnalysis"] == layers
    report = by_agent["security-reporter"]
    assert report["layerAnalysis"] == layers
    assert report["configAssessment"] == container_agent.responses["config-assessor"]
    assert report["malwareSecretScan"] == container_agent.responses["secret-scanner"]
    assert list(report["scanResults"]) == ["app:1.0", "nginx:alpine"]
    assert report["signingResults"] is None
    assert report["runtimeProtection"] is None


def test_artifact_without_path_is_a_schema_violation(make_runner, container_agent, store) -> None:
    container_agent.responses["compliance-validator"]["artifacts"] = [{"label": "no path"}]

    result = _run(make_runner, container_agent, IMAGES)

    assert isinstance(result, ProcessFailure)
    assert result.failed_step == "compliance-validation"
    assert result.details["kind"] == "schema_violation"
    assert "out/compliance.md" not in [a.path for a in result.artifacts]
    requested = [
        e.data for e in store.journal("scan").load() if e.type == "EFFECT_REQUESTED"
    ]
    effect_id = next(d["effectId"] for d in requested if d["task"] == "compliance-validation")
    assert not (store.run_dir("scan") / "tasks" / effect_id / "result.json").exists()


def test_agent_prompt_carries_task_arguments(make_runner, container_agent) -> None:
    _run(make_runner, container_agent, {**IMAGES, "severityThreshold": "high"})

    policy_call = next(c for c in container_agent.calls if c.agent_name == "policy-enforcer")
    assert policy_call.task_name == "policy-enforcement"
    assert policy_call.prompt.context["severityThreshold"] == "high"
    assert policy_call.output_schema is not None
    assert "passed" in policy_call.output_schema["required"]
