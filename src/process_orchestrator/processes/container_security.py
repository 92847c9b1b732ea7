"""security-compliance/container-security

Container image scanning: discovery, parallel vulnerability scanners,
secret/malware detection, configuration and layer assessment, optional
registry validation, a fail-fast policy gate, compliance validation,
scoring, remediation planning, a report and a final review breakpoint.

Inputs::

    containerImages: list[str]          (required)
    registryUrl: str                    enables registry validation
    scanDepth: str = "comprehensive"
    severityThreshold: str = "medium"
    policyEnforcement: bool = True
    failOnCritical: bool = True
    complianceStandards: list[str] = ["CIS-Docker", "NIST-800-190"]
    generateSBOM: bool = True
    signImages: bool = False
    runtimeProtection: bool = False
    outputDir: str = "container-security-output"
"""

from __future__ import annotations

from typing import Any

from process_orchestrator.core.errors import ProcessFailed
from process_orchestrator.runtime.context import ABSENT, RunContext
from process_orchestrator.runtime.driver import ProcessDefinition
from process_orchestrator.runtime.tasks import (
    AgentPrompt,
    AgentSpec,
    TaskContext,
    TaskDescriptor,
    TaskRegistry,
)

PROCESS_ID = "security-compliance/container-security"

registry = TaskRegistry()

SEVERITIES = ["CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN"]

# Declared score weights per step; "registry" only contributes when a
# registry URL was supplied.
SCORE_WEIGHTS: dict[str, float] = {
    "vulnerabilities": 35,
    "configuration": 15,
    "secrets-malware": 15,
    "layers": 10,
    "compliance": 15,
    "registry": 10,
}

_BREAKDOWN_KEYS: dict[str, tuple[str, ...]] = {
    "vulnerabilities": ("vulnerabilityScore",),
    "configuration": ("configurationScore",),
    "secrets-malware": ("secretsScore", "malwareScore"),
    "layers": ("layerScore",),
    "compliance": ("complianceScore",),
}

_ARTIFACTS = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "format": {"type": "string"},
            "label": {"type": "string"},
        },
        "required": ["path"],
    },
}

_VULNERABILITY = {
    "type": "object",
    "properties": {
        "image": {"type": "string"},
        "vulnerabilityId": {"type": "string"},
        "packageName": {"type": "string"},
        "installedVersion": {"type": "string"},
        "fixedVersion": {"type": "string"},
        "severity": {"type": "string", "enum": SEVERITIES},
        "title": {"type": "string"},
    },
}

_SCAN_SCHEMA = {
    "type": "object",
    "required": ["vulnerabilities", "imageResults", "artifacts"],
    "properties": {
        "vulnerabilities": {"type": "array", "items": _VULNERABILITY},
        "imageResults": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "image": {"type": "string"},
                    "totalVulnerabilities": {"type": "number"},
                    "critical": {"type": "number"},
                    "high": {"type": "number"},
                },
            },
        },
        "artifacts": _ARTIFACTS,
    },
}


def _agent_task(
    name: str,
    *,
    title: str,
    agent: str,
    role: str,
    task: str,
    instructions: list[str],
    output_format: str,
    schema: dict[str, Any],
    labels: list[str],
) -> None:
    def factory(args: dict[str, Any], task_ctx: TaskContext) -> TaskDescriptor:
        return TaskDescriptor(
            kind="agent",
            title=title,
            agent=AgentSpec(
                name=agent,
                prompt=AgentPrompt(
                    role=role,
                    task=task,
                    context=args,
                    instructions=tuple(instructions),
                    output_format=output_format,
                ),
                output_schema=schema,
            ),
            io=task_ctx.io,
            labels=("agent", "container-security", *labels),
        )

    registry.register(name, factory)


_agent_task(
    "image-discovery",
    title="Discover and validate container images",
    agent="image-validator",
    role="container security engineer",
    task="Discover, pull, and validate container images for security scanning",
    instructions=[
        "Validate image references and tags",
        "Check image accessibility from registry",
        "Extract image metadata (size, layers, created date, digest)",
        "Verify image integrity using digests",
        "Save image inventory to output directory",
    ],
    output_format="JSON with success, validatedImages, artifacts, errors",
    schema={
        "type": "object",
        "required": ["success", "validatedImages", "artifacts"],
        "properties": {
            "success": {"type": "boolean"},
            "validatedImages": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "tag": {"type": "string"},
                        "digest": {"type": "string"},
                        "layers": {"type": "number"},
                        "os": {"type": "string"},
                    },
                },
            },
            "artifacts": _ARTIFACTS,
            "errors": {"type": "array", "items": {"type": "string"}},
        },
    },
    labels=["image-discovery", "validation"],
)

_agent_task(
    "trivy-vulnerability-scan",
    title="Scan vulnerabilities with Trivy",
    agent="trivy-scanner",
    role="security scanner specialist",
    task="Scan container images for vulnerabilities using Trivy",
    instructions=[
        "Run Trivy scanner on each container image",
        "Scan OS packages and application dependencies for known CVEs",
        "Generate SBOM if requested",
        "Filter results by severity threshold",
        "Save scan reports to output directory",
    ],
    output_format="JSON with vulnerabilities, imageResults, sbom, artifacts",
    schema=_SCAN_SCHEMA,
    labels=["vulnerability-scan", "trivy"],
)

_agent_task(
    "grype-vulnerability-scan",
    title="Cross-validate vulnerabilities with Grype",
    agent="grype-scanner",
    role="vulnerability analyst",
    task="Cross-validate container vulnerabilities using Grype",
    instructions=[
        "Run Grype scanner on each container image",
        "Report vulnerabilities not found by other scanners",
        "Filter results by severity threshold",
        "Save scan reports to output directory",
    ],
    output_format="JSON with vulnerabilities, imageResults, artifacts",
    schema=_SCAN_SCHEMA,
    labels=["vulnerability-scan", "grype"],
)

_agent_task(
    "malware-secret-detection",
    title="Detect malware and exposed secrets",
    agent="secret-scanner",
    role="threat detection specialist",
    task="Scan container images for malware and exposed secrets",
    instructions=[
        "Scan image layers for hardcoded credentials, keys and tokens",
        "Scan for known malware signatures",
        "Report findings with file locations",
        "Save findings to output directory",
    ],
    output_format="JSON with secrets, malware, secretsFound, malwareFound, artifacts",
    schema={
        "type": "object",
        "required": ["secrets", "malware", "secretsFound", "malwareFound", "artifacts"],
        "properties": {
            "secrets": {"type": "array"},
            "malware": {"type": "array"},
            "secretsFound": {"type": "number"},
            "malwareFound": {"type": "number"},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["secrets", "malware"],
)

_agent_task(
    "container-configuration-assessment",
    title="Assess container configuration security",
    agent="config-assessor",
    role="container hardening specialist",
    task="Assess container configuration against security benchmarks",
    instructions=[
        "Check for containers running as root",
        "Check exposed ports, capabilities and health checks",
        "Evaluate against the requested compliance standards",
        "Save assessment to output directory",
    ],
    output_format="JSON with issues, passedChecks, failedChecks, recommendations, artifacts",
    schema={
        "type": "object",
        "required": ["issues", "passedChecks", "failedChecks", "artifacts"],
        "properties": {
            "issues": {"type": "array"},
            "passedChecks": {"type": "array", "items": {"type": "string"}},
            "failedChecks": {"type": "array", "items": {"type": "string"}},
            "recommendations": {"type": "array", "items": {"type": "string"}},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["configuration", "cis-benchmark"],
)

_agent_task(
    "layer-security-analysis",
    title="Analyze base images and layers",
    agent="layer-analyzer",
    role="container image analyst",
    task="Analyze base images and image layers for security issues",
    instructions=[
        "Identify base images and their support status",
        "Find layers that add vulnerable packages or secrets",
        "Suggest layer optimizations",
        "Save analysis to output directory",
    ],
    output_format="JSON with layerAnalysis, baseImageIssues, optimizations, artifacts",
    schema={
        "type": "object",
        "required": ["layerAnalysis", "baseImageIssues", "optimizations", "artifacts"],
        "properties": {
            "layerAnalysis": {"type": "array"},
            "baseImageIssues": {"type": "array"},
            "optimizations": {"type": "array"},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["layers", "base-image"],
)

_agent_task(
    "registry-security-validation",
    title="Validate container registry security",
    agent="registry-validator",
    role="registry security specialist",
    task="Validate container registry security configuration and policies",
    instructions=[
        "Verify registry authentication and TLS configuration",
        "Validate image signing and vulnerability scanning integration",
        "Check audit logging configuration",
        "Save assessment to output directory",
    ],
    output_format="JSON with registrySecurityStatus, issues, recommendations, artifacts",
    schema={
        "type": "object",
        "required": ["registrySecurityStatus", "issues", "artifacts"],
        "properties": {
            "registrySecurityStatus": {
                "type": "object",
                "properties": {
                    "tlsEnabled": {"type": "boolean"},
                    "authenticationConfigured": {"type": "boolean"},
                    "imageSigningEnabled": {"type": "boolean"},
                    "vulnerabilityScanningEnabled": {"type": "boolean"},
                    "auditLoggingEnabled": {"type": "boolean"},
                },
            },
            "issues": {"type": "array"},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["registry", "validation"],
)

_agent_task(
    "policy-enforcement",
    title="Enforce security policies",
    agent="policy-enforcer",
    role="security policy engineer",
    task="Enforce container security policies and generate policy violations",
    instructions=[
        "Define policy rules based on the severity threshold",
        "Check for critical vulnerability, secret and malware violations",
        "Determine pass/fail status based on the failOnCritical setting",
        "Save policy reports to output directory",
    ],
    output_format="JSON with passed, violations, criticalIssues, policies, artifacts",
    schema={
        "type": "object",
        "required": ["passed", "violations", "criticalIssues", "artifacts"],
        "properties": {
            "passed": {"type": "boolean"},
            "violations": {"type": "array"},
            "criticalIssues": {"type": "array", "items": {"type": "string"}},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["policy-enforcement", "opa"],
)

_agent_task(
    "compliance-validation",
    title="Validate compliance standards",
    agent="compliance-validator",
    role="compliance security analyst",
    task="Validate container security against compliance standards",
    instructions=[
        "Validate against each requested standard",
        "Generate a compliance matrix",
        "Identify compliance gaps",
        "Save compliance report to output directory",
    ],
    output_format="JSON with overallCompliance, standardResults, gaps, artifacts",
    schema={
        "type": "object",
        "required": ["overallCompliance", "standardResults", "gaps", "artifacts"],
        "properties": {
            "overallCompliance": {
                "type": "object",
                "properties": {
                    "percentage": {"type": "number"},
                    "passedChecks": {"type": "number"},
                    "totalChecks": {"type": "number"},
                },
            },
            "standardResults": {"type": "array"},
            "gaps": {"type": "array"},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["compliance"],
)

_agent_task(
    "image-signing",
    title="Sign container images",
    agent="image-signer",
    role="supply chain security engineer",
    task="Sign validated container images and record signatures",
    instructions=[
        "Sign each image with the configured key",
        "Push signatures to the registry",
        "Save signing results to output directory",
    ],
    output_format="JSON with results, signedImages, artifacts",
    schema={
        "type": "object",
        "required": ["results", "signedImages", "artifacts"],
        "properties": {
            "results": {"type": "array"},
            "signedImages": {"type": "number"},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["signing", "supply-chain"],
)

_agent_task(
    "runtime-protection-setup",
    title="Set up runtime protection",
    agent="runtime-protector",
    role="runtime security engineer",
    task="Generate runtime protection policies for the scanned images",
    instructions=[
        "Generate runtime detection rules for known vulnerabilities",
        "Generate network and syscall policies",
        "Save policies to output directory",
    ],
    output_format="JSON with policies, rules, artifacts",
    schema={
        "type": "object",
        "required": ["policies", "rules", "artifacts"],
        "properties": {
            "policies": {"type": "array"},
            "rules": {"type": "array"},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["runtime", "falco"],
)

_agent_task(
    "security-scoring",
    title="Calculate security score",
    agent="security-scorer",
    role="security metrics analyst",
    task="Calculate comprehensive security score for container images",
    instructions=[
        "Evaluate vulnerability severity distribution",
        "Assess configuration, secrets, malware, layer and compliance posture",
        "Provide a 0-100 score per category",
        "Save scoring report to output directory",
    ],
    output_format="JSON with score, breakdown, scorecard, artifacts",
    schema={
        "type": "object",
        "required": ["score", "breakdown", "artifacts"],
        "properties": {
            "score": {"type": "number"},
            "breakdown": {
                "type": "object",
                "properties": {
                    "vulnerabilityScore": {"type": "number"},
                    "configurationScore": {"type": "number"},
                    "secretsScore": {"type": "number"},
                    "malwareScore": {"type": "number"},
                    "layerScore": {"type": "number"},
                    "complianceScore": {"type": "number"},
                },
            },
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["scoring", "metrics"],
)

_agent_task(
    "remediation-plan-generation",
    title="Generate remediation plan",
    agent="remediation-planner",
    role="security remediation specialist",
    task="Generate prioritized remediation plan for security findings",
    instructions=[
        "Prioritize vulnerabilities by severity and exploitability",
        "Identify quick wins",
        "Estimate remediation effort for each item",
        "Save remediation plan to output directory",
    ],
    output_format="JSON with plan, prioritizedActions, quickWins, artifacts",
    schema={
        "type": "object",
        "required": ["plan", "prioritizedActions", "artifacts"],
        "properties": {
            "plan": {"type": "object"},
            "prioritizedActions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "priority": {"type": "string", "enum": ["critical", "high", "medium", "low"]},
                        "issue": {"type": "string"},
                        "remediation": {"type": "string"},
                    },
                },
            },
            "quickWins": {"type": "array", "items": {"type": "string"}},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["remediation", "planning"],
)

_agent_task(
    "security-report-generation",
    title="Generate comprehensive security report",
    agent="security-reporter",
    role="security documentation specialist",
    task="Generate an executive-ready container security report",
    instructions=[
        "Create executive summary with key findings",
        "Detail findings by severity and compliance status per standard",
        "Include remediation plan summary",
        "Format as Markdown and save report to output directory",
    ],
    output_format="JSON with reportPath, executiveSummary, keyFindings, artifacts",
    schema={
        "type": "object",
        "required": ["reportPath", "executiveSummary", "keyFindings", "artifacts"],
        "properties": {
            "reportPath": {"type": "string"},
            "executiveSummary": {"type": "string"},
            "keyFindings": {"type": "array", "items": {"type": "string"}},
            "artifacts": _ARTIFACTS,
        },
    },
    labels=["reporting", "documentation"],
)


def _category_score(breakdown: dict[str, Any], step: str, fallback: float) -> float:
    values = [breakdown[k] for k in _BREAKDOWN_KEYS[step] if isinstance(breakdown.get(k), (int, float))]
    if not values:
        return fallback
    return sum(values) / len(values)


def _registry_score(status: dict[str, Any]) -> float:
    checks = [v for v in status.values() if isinstance(v, bool)]
    if not checks:
        return 0.0
    return 100.0 * sum(checks) / len(checks)


def process(inputs: dict[str, Any], ctx: RunContext) -> dict[str, Any]:
    images = list(inputs.get("containerImages") or [])
    registry_url = inputs.get("registryUrl")
    scan_depth = inputs.get("scanDepth", "comprehensive")
    severity_threshold = inputs.get("severityThreshold", "medium")
    policy_enforcement = inputs.get("policyEnforcement", True)
    fail_on_critical = inputs.get("failOnCritical", True)
    standards = inputs.get("complianceStandards") or ["CIS-Docker", "NIST-800-190"]
    generate_sbom = inputs.get("generateSBOM", True)
    sign_images = inputs.get("signImages", False)
    runtime_protection = inputs.get("runtimeProtection", False)
    output_dir = inputs.get("outputDir", "container-security-output")

    if not images:
        raise ProcessFailed("No container images provided for scanning", step="inputs")

    for step, weight in SCORE_WEIGHTS.items():
        ctx.declare_score(step, weight)

    ctx.log("info", f"Starting container security scanning for {len(images)} image(s)")

    discovery = ctx.task(
        "image-discovery",
        {"containerImages": images, "registryUrl": registry_url, "outputDir": output_dir},
    ).unwrap()
    if not discovery["success"]:
        raise ProcessFailed(
            "Image discovery and validation failed",
            step="image-discovery",
            details={"errors": discovery.get("errors") or []},
        )
    validated = discovery["validatedImages"]

    ctx.log("info", "Running Trivy and Grype scans")
    trivy, grype = ctx.parallel(
        [
            ctx.prepare(
                "trivy-vulnerability-scan",
                {
                    "images": validated,
                    "scanDepth": scan_depth,
                    "severityThreshold": severity_threshold,
                    "generateSBOM": generate_sbom,
                    "outputDir": output_dir,
                },
            ),
            ctx.prepare(
                "grype-vulnerability-scan",
                {"images": validated, "severityThreshold": severity_threshold, "outputDir": output_dir},
            ),
        ]
    )
    scanners = {"trivy": trivy, "grype": grype}
    for label, outcome in scanners.items():
        if not outcome.ok:
            assert outcome.error is not None
            ctx.log("warning", f"{label} scan failed; continuing with partial results",
                    error=outcome.error.message)
    if not any(o.ok for o in scanners.values()):
        raise ProcessFailed(
            "All vulnerability scanners failed",
            step="vulnerability-scan",
            details={k: o.error.to_json() for k, o in scanners.items() if o.error is not None},
        )

    vulnerabilities: list[dict[str, Any]] = []
    for outcome in scanners.values():
        vulnerabilities.extend(outcome.get("vulnerabilities", []))

    scan_results: dict[str, dict[str, Any]] = {}
    for idx, image in enumerate(validated):
        per_image: dict[str, Any] = {}
        for label, outcome in scanners.items():
            image_results = outcome.get("imageResults", [])
            if idx < len(image_results):
                per_image[label] = image_results[idx]
        scan_results[image.get("name") or f"image-{idx}"] = per_image

    malware_secret = ctx.task(
        "malware-secret-detection", {"images": validated, "outputDir": output_dir}
    ).unwrap()
    config_assessment = ctx.task(
        "container-configuration-assessment",
        {"images": validated, "complianceStandards": standards, "outputDir": output_dir},
    ).unwrap()
    layer_analysis = ctx.task(
        "layer-security-analysis", {"images": validated, "outputDir": output_dir}
    ).unwrap()

    registry_outcome = ctx.optional(
        bool(registry_url),
        "registry-security-validation",
        {"registryUrl": registry_url, "images": validated, "outputDir": output_dir},
        step="registry",
        reason="no registryUrl supplied",
    )
    registry_validation = ABSENT if registry_outcome is ABSENT else registry_outcome.unwrap()

    if policy_enforcement:
        policy = ctx.task(
            "policy-enforcement",
            {
                "images": validated,
                "scanResults": scan_results,
                "vulnerabilities": vulnerabilities,
                "configAssessment": config_assessment,
                "severityThreshold": severity_threshold,
                "failOnCritical": fail_on_critical,
                "outputDir": output_dir,
            },
        ).unwrap()
        ctx.gate(
            policy["passed"],
            fail=fail_on_critical,
            reason="Critical security policy violations detected",
            step="policy-enforcement",
            details={
                "policyViolations": policy["violations"],
                "criticalIssues": policy["criticalIssues"],
                "vulnerabilities": len(vulnerabilities),
            },
        )

    compliance = ctx.task(
        "compliance-validation",
        {
            "images": validated,
            "scanResults": scan_results,
            "configAssessment": config_assessment,
            "layerAnalysis": layer_analysis,
            "complianceStandards": standards,
            "outputDir": output_dir,
        },
    ).unwrap()

    signing = ctx.optional(
        sign_images,
        "image-signing",
        {"images": validated, "registryUrl": registry_url, "outputDir": output_dir},
        reason="signImages disabled",
    )
    runtime = ctx.optional(
        runtime_protection,
        "runtime-protection-setup",
        {"images": validated, "vulnerabilities": vulnerabilities, "outputDir": output_dir},
        reason="runtimeProtection disabled",
    )

    scoring = ctx.task(
        "security-scoring",
        {
            "scanResults": scan_results,
            "vulnerabilities": vulnerabilities,
            "configAssessment": config_assessment,
            "malwareSecretScan": malware_secret,
            "layerAnalysis": layer_analysis,
            "complianceValidation": compliance,
            "severityThreshold": severity_threshold,
            "outputDir": output_dir,
        },
    ).unwrap()
    breakdown = scoring.get("breakdown") or {}
    for step in _BREAKDOWN_KEYS:
        value = _category_score(breakdown, step, float(scoring["score"]))
        ctx.add_score(SCORE_WEIGHTS[step] * value / 100, step=step)
    if registry_validation is not ABSENT:
        status = registry_validation.get("registrySecurityStatus") or {}
        ctx.add_score(SCORE_WEIGHTS["registry"] * _registry_score(status) / 100, step="registry")
    security_score = ctx.final_score()

    remediation = ctx.task(
        "remediation-plan-generation",
        {
            "vulnerabilities": vulnerabilities,
            "configAssessment": config_assessment,
            "malwareSecretScan": malware_secret,
            "layerAnalysis": layer_analysis,
            "complianceValidation": compliance,
            "securityScore": security_score,
            "severityThreshold": severity_threshold,
            "outputDir": output_dir,
        },
    ).unwrap()

    report = ctx.task(
        "security-report-generation",
        {
            "images": validated,
            "scanResults": scan_results,
            "vulnerabilities": vulnerabilities,
            "configAssessment": config_assessment,
            "malwareSecretScan": malware_secret,
            "layerAnalysis": layer_analysis,
            "complianceValidation": compliance,
            "securityScore": security_score,
            "remediationPlan": remediation,
            "signingResults": None if signing is ABSENT else signing.output,
            "runtimeProtection": None if runtime is ABSENT else runtime.output,
            "outputDir": output_dir,
        },
    ).unwrap()

    by_severity = {s: sum(1 for v in vulnerabilities if v.get("severity") == s) for s in SEVERITIES}
    ctx.breakpoint(
        question=(
            f"Container security scan complete. Security score: {security_score}/100. "
            f"{len(vulnerabilities)} vulnerabilities found. Review findings?"
        ),
        title="Container Security Scan Results",
        context={
            "summary": {
                "securityScore": security_score,
                "totalImages": len(images),
                "totalVulnerabilities": len(vulnerabilities),
                "criticalCount": by_severity["CRITICAL"],
                "highCount": by_severity["HIGH"],
                "mediumCount": by_severity["MEDIUM"],
                "complianceStatus": compliance["overallCompliance"],
                "secretsDetected": malware_secret["secretsFound"],
                "malwareDetected": malware_secret["malwareFound"],
            }
        },
    )

    return {
        "securityScore": security_score,
        "vulnerabilities": vulnerabilities,
        "scanResults": scan_results,
        "complianceStatus": compliance,
        "configurationIssues": config_assessment["issues"],
        "secretsDetected": malware_secret["secrets"],
        "malwareDetected": malware_secret["malware"],
        "registryValidation": None if registry_validation is ABSENT else registry_validation,
        "signingResults": None if signing is ABSENT else signing.get("results"),
        "runtimeProtection": None if runtime is ABSENT else runtime.get("policies"),
        "remediationPlan": remediation["plan"],
        "reportPath": report["reportPath"],
        "imagesScanned": len(images),
        "outputDir": output_dir,
    }


PROCESS = ProcessDefinition(
    process_id=PROCESS_ID,
    fn=process,
    registry=registry,
    description="Container image scanning with a policy gate and a final review breakpoint",
    entrypoint="process_orchestrator.processes.container_security:PROCESS",
)
