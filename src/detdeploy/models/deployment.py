"""Deployment data model.

A DeploymentTarget and its salt are computed fresh for every run from
static configuration. A DeployedRecord is created once per successful
run and never mutated afterwards; a new version produces a new record.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# {major}.{minor}.{patch}-{contractName}
VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)-([A-Za-z_][A-Za-z0-9_]*)$")


class ChainClass(str, enum.Enum):
    """Network classification used by the ownership policy."""
    MAINNET = "mainnet"
    NON_MAINNET = "non_mainnet"


class RunStep(str, enum.Enum):
    """Steps of a deployment run, in protocol order."""
    INIT = "init"
    CHECK_EXISTING = "check_existing"
    DEPLOY = "deploy"
    POST_INIT = "post_init"
    POST_VERIFY = "post_verify"
    OWNERSHIP_DECISION = "ownership_decision"
    TRANSFER = "transfer"
    PERSIST = "persist"
    SKIP_TO_VERIFY = "skip_to_verify"
    DONE = "done"

    @property
    def mutates_chain(self) -> bool:
        """Whether on-chain state exists once this step has completed."""
        return self in _MUTATED_AFTER


_MUTATED_AFTER = frozenset({
    RunStep.DEPLOY,
    RunStep.POST_INIT,
    RunStep.POST_VERIFY,
    RunStep.OWNERSHIP_DECISION,
    RunStep.TRANSFER,
    RunStep.PERSIST,
})


class RunStatus(str, enum.Enum):
    """Outcome of a successful run."""
    DEPLOYED = "deployed"
    SKIPPED = "skipped"  # AlreadyDeployed: recognised no-op
    SIMULATED = "simulated"  # dry run, nothing broadcast or persisted


def parse_version(version: str) -> tuple[int, int, int, str]:
    """Split a version string into (major, minor, patch, contract_name).

    Raises ValueError if the string does not follow
    ``{major}.{minor}.{patch}-{contractName}``.
    """
    match = VERSION_PATTERN.match(version or "")
    if match is None:
        raise ValueError(
            f"Invalid version {version!r}: expected "
            "'{major}.{minor}.{patch}-{contractName}'"
        )
    major, minor, patch, name = match.groups()
    return int(major), int(minor), int(patch), name


@dataclass(frozen=True)
class DeploymentTarget:
    """What to deploy and how to initialise it.

    expected_state maps read-only getter names to the values they must
    return once the initializer has run (e.g. {"value": 42}). It drives
    post-deploy verification; the version is always checked separately.

    init_args is the human-readable form of the initializer arguments,
    kept for the verification metadata written next to the artifact.
    """
    category: str
    contract_name: str
    version: str
    creation_code: bytes
    init_payload: bytes
    expected_state: dict[str, Any] = field(default_factory=dict)
    init_args: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.category:
            raise ValueError("category must be non-empty")
        if not self.contract_name:
            raise ValueError("contract_name must be non-empty")
        _, _, _, name = parse_version(self.version)
        if name != self.contract_name:
            raise ValueError(
                f"Version {self.version!r} names contract {name!r}, "
                f"expected {self.contract_name!r}"
            )
        if not self.creation_code:
            raise ValueError("creation_code must be non-empty")


@dataclass(frozen=True)
class DeployedRecord:
    """Durable record of one deployment. Immutable once written."""
    chain_id: int
    category: str
    contract_name: str
    version: str
    address: str
    timestamp_utc: str
    tx_hash: Optional[str]

    @staticmethod
    def create(
        chain_id: int,
        category: str,
        contract_name: str,
        version: str,
        address: str,
        tx_hash: Optional[str],
        timestamp_utc: Optional[datetime] = None,
    ) -> DeployedRecord:
        ts = timestamp_utc or datetime.now(timezone.utc)
        return DeployedRecord(
            chain_id=chain_id,
            category=category,
            contract_name=contract_name,
            version=version,
            address=address,
            timestamp_utc=ts.strftime("%Y-%m-%dT%H:%M:%SZ"),
            tx_hash=tx_hash,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "category": self.category,
            "contract_name": self.contract_name,
            "version": self.version,
            "address": self.address,
            "timestamp_utc": self.timestamp_utc,
            "tx_hash": self.tx_hash,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> DeployedRecord:
        return DeployedRecord(
            chain_id=int(data["chain_id"]),
            category=data["category"],
            contract_name=data["contract_name"],
            version=data["version"],
            address=data["address"],
            timestamp_utc=data["timestamp_utc"],
            tx_hash=data.get("tx_hash"),
        )


@dataclass(frozen=True)
class OwnershipState:
    """Ownership as reported by the target contract."""
    current_owner: str
    pending_owner: Optional[str] = None


@dataclass
class DeploymentReport:
    """Result of a successful (or skipped, or simulated) run."""
    status: RunStatus
    step: RunStep
    chain_id: int
    address: str
    salt: bytes
    owner: Optional[str] = None
    record: Optional[DeployedRecord] = None
    transactions: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "step": self.step.value,
            "chain_id": self.chain_id,
            "address": self.address,
            "salt": "0x" + self.salt.hex(),
            "owner": self.owner,
            "record": self.record.to_dict() if self.record else None,
            "transactions": list(self.transactions),
            "planned": list(self.planned),
        }
