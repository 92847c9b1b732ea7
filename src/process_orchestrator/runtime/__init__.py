"""Orchestration runtime: tasks, effects, breakpoints, run context and driver."""

from process_orchestrator.runtime.breakpoints import (
    BreakpointController,
    BreakpointRecord,
    BreakpointStatus,
    BreakpointStore,
    Decision,
    DecisionAction,
)
from process_orchestrator.runtime.clock import SystemClock, TickingClock
from process_orchestrator.runtime.context import ABSENT, Artifact, PreparedEffect, RunContext
from process_orchestrator.runtime.driver import (
    ProcessDefinition,
    ProcessFailure,
    ProcessResult,
    ProcessRunner,
    ProcessSuccess,
    ProcessSuspended,
)
from process_orchestrator.runtime.effects import EffectOutcome
from process_orchestrator.runtime.reviewers import (
    AutoApproveReviewer,
    ConsoleReviewer,
    DeferredReviewer,
    StoreReviewer,
)
from process_orchestrator.runtime.storage import RunStore
from process_orchestrator.runtime.tasks import (
    AgentPrompt,
    AgentSpec,
    NativeSpec,
    ShellSpec,
    TaskContext,
    TaskDescriptor,
    TaskRegistry,
)

__all__ = [
    "ABSENT",
    "AgentPrompt",
    "AgentSpec",
    "Artifact",
    "AutoApproveReviewer",
    "BreakpointController",
    "BreakpointRecord",
    "BreakpointStatus",
    "BreakpointStore",
    "ConsoleReviewer",
    "Decision",
    "DecisionAction",
    "DeferredReviewer",
    "EffectOutcome",
    "NativeSpec",
    "PreparedEffect",
    "ProcessDefinition",
    "ProcessFailure",
    "ProcessResult",
    "ProcessRunner",
    "ProcessSuccess",
    "ProcessSuspended",
    "RunContext",
    "RunStore",
    "ShellSpec",
    "StoreReviewer",
    "SystemClock",
    "TaskContext",
    "TaskDescriptor",
    "TaskRegistry",
    "TickingClock",
]
