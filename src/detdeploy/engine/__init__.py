"""Deployment engine — version gate, step state machine and orchestration."""

from detdeploy.engine.orchestrator import DeploymentOrchestrator, RunContext
from detdeploy.engine.state_machine import RunStateMachine, TransitionError
from detdeploy.engine.version_registry import GateDecision, VersionRegistry

__all__ = [
    "DeploymentOrchestrator",
    "GateDecision",
    "RunContext",
    "RunStateMachine",
    "TransitionError",
    "VersionRegistry",
]
