"""Failure taxonomy for deployment runs.

Every fatal condition aborts the whole run. Each error records the last
step that completed successfully so an operator can tell whether the
chain was mutated before the failure (anything at or after DEPLOY means
code may exist on-chain without a matching artifact record). A
transaction that was broadcast but never confirmed counts as a possible
mutation whatever the last step was.

AlreadyDeployed is deliberately absent: a recorded version is a
successful no-op, reported through RunStatus.SKIPPED.
"""

from __future__ import annotations

from typing import Optional

from detdeploy.models.deployment import RunStep


class DeploymentError(Exception):
    """Base class for fatal deployment-run failures."""

    category = "deployment_error"

    def __init__(
        self,
        message: str,
        last_step: Optional[RunStep] = None,
        unconfirmed_tx: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.last_step = last_step
        self.unconfirmed_tx = unconfirmed_tx

    @property
    def chain_mutated(self) -> bool:
        """True if the run got far enough to (possibly) leave state on-chain."""
        if self.unconfirmed_tx is not None:
            return True
        if self.last_step is None:
            return False
        return self.last_step.mutates_chain

    def describe(self) -> str:
        step = self.last_step.value if self.last_step else "none"
        text = f"[{self.category}] {self} (last completed step: {step})"
        if self.unconfirmed_tx:
            text += f"; transaction {self.unconfirmed_tx} outcome unknown"
        return text


class ConfigurationError(DeploymentError):
    category = "configuration_error"


class UnauthorizedSender(DeploymentError):
    category = "unauthorized_sender"


class DeploymentFailed(DeploymentError):
    category = "deployment_failed"


class InitializationFailed(DeploymentError):
    category = "initialization_failed"


class PostDeployVerificationFailed(DeploymentError):
    """On-chain state diverges from the request. Needs manual reconciliation."""

    category = "post_deploy_verification_failed"

    def __init__(
        self,
        message: str,
        last_step: Optional[RunStep] = None,
        mismatches: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, last_step)
        self.mismatches = list(mismatches or [])


class OwnershipTransferFailed(DeploymentError):
    """Transfer failed after a successful deploy. Needs manual reconciliation."""

    category = "ownership_transfer_failed"


class RegistryUnavailable(DeploymentError):
    category = "registry_unavailable"


class ArtifactStoreUnavailable(DeploymentError):
    category = "artifact_store_unavailable"
