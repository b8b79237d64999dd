"""Version registry — the version gate in front of every deployment.

Answers whether (category, contract_name, version, chain_id) has already
been deployed, using the artifact store as its source of truth. An
unreadable registry is fatal: without it idempotency cannot be
guaranteed, so no deployment may proceed.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

from detdeploy.errors import ArtifactStoreUnavailable, RegistryUnavailable
from detdeploy.models.deployment import DeployedRecord
from detdeploy.persistence.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)


class GateDecision(str, enum.Enum):
    DEPLOY = "deploy"  # not recorded yet
    SKIP = "skip"  # recorded, not forced: AlreadyDeployed
    FORCE = "force"  # recorded, forced redeploy


class VersionRegistry:
    """Idempotency check and record keeping for deployments."""

    def __init__(self, store: ArtifactStore) -> None:
        self._store = store

    def lookup(
        self,
        category: str,
        contract_name: str,
        version: str,
        chain_id: int,
    ) -> Optional[str]:
        """Recorded address for this exact version on this chain, or None."""
        try:
            return self._store.read(category, chain_id, contract_name, version)
        except ArtifactStoreUnavailable as exc:
            raise RegistryUnavailable(f"Version registry unreadable: {exc}") from exc

    def gate(
        self,
        category: str,
        contract_name: str,
        version: str,
        chain_id: int,
        force: bool = False,
    ) -> tuple[GateDecision, Optional[str]]:
        existing = self.lookup(category, contract_name, version, chain_id)
        if existing is None:
            return GateDecision.DEPLOY, None
        if force:
            logger.warning(
                "%s %s already recorded on chain %d at %s; forcing redeploy",
                contract_name, version, chain_id, existing,
            )
            return GateDecision.FORCE, existing
        return GateDecision.SKIP, existing

    def record(
        self,
        record: DeployedRecord,
        verification: Optional[dict[str, Any]] = None,
    ) -> None:
        """Persist a deployment. Store failures propagate as ArtifactStoreUnavailable."""
        self._store.write(
            record.category,
            record.chain_id,
            record.contract_name,
            record,
            verification=verification,
        )
