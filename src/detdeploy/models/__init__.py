"""Core data models for deployment runs."""

from detdeploy.models.deployment import (
    ChainClass,
    DeployedRecord,
    DeploymentReport,
    DeploymentTarget,
    OwnershipState,
    RunStatus,
    RunStep,
    parse_version,
)

__all__ = [
    "ChainClass",
    "DeployedRecord",
    "DeploymentReport",
    "DeploymentTarget",
    "OwnershipState",
    "RunStatus",
    "RunStep",
    "parse_version",
]
