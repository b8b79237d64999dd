"""Shared fixtures: an in-memory chain with a CREATE3 factory.

The fake factory lands contracts at the real CREATE3 address for
(factory, guarded salt) and runs the initializer inside the same
"transaction", mirroring the atomic deploy-and-call primitive. Creation
code for fake contracts is ``FAKE_CODE_PREFIX + version`` (anything
after a NUL byte is ignored), so the deployed contract reports whatever
version its bytecode was built with.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import pytest
from eth_abi import decode
from eth_utils import to_checksum_address

from detdeploy.addressing.derivation import CREATEX_ADDRESS, derive_for
from detdeploy.chain.example_contract import INITIALIZE_SELECTOR, example_target
from detdeploy.chain.interfaces import (
    ChainError,
    RevertKind,
    TransactionReverted,
    TransactionUnconfirmed,
    TxResult,
)
from detdeploy.config import DeployConfig
from detdeploy.engine.orchestrator import RunContext
from detdeploy.models.deployment import DeploymentTarget
from detdeploy.persistence.artifact_store import ArtifactStore

ZERO = "0x0000000000000000000000000000000000000000"
DEPLOYER = to_checksum_address("0x" + "11" * 20)
OTHER = to_checksum_address("0x" + "22" * 20)
PROD_OWNER = to_checksum_address("0x" + "aa" * 20)
MAINNET = 1
SEPOLIA = 11155111
FAKE_CODE_PREFIX = b"\x60\x80"


def creation_code(version: str) -> bytes:
    return FAKE_CODE_PREFIX + version.encode("utf-8")


def make_target(
    version: str = "1.0.0-ExampleContract",
    initial_value: int = 42,
    owner: str = DEPLOYER,
    category: str = "example",
    code_version: Optional[str] = None,
) -> DeploymentTarget:
    return example_target(
        category, version, creation_code(code_version or version), initial_value, owner
    )


class FakeContract:
    """ExampleContract semantics: value store, owner, version, init guard."""

    def __init__(self, chain: FakeChain, address: str, version: str) -> None:
        self._chain = chain
        self.address = address
        self._version = version
        self._owner = ZERO
        self.state: dict[str, Any] = {}
        self.initialized = False

    def initialize(self, payload: bytes) -> None:
        if self.initialized:
            raise TransactionReverted("InvalidInitialization", kind=RevertKind.INITIALIZATION)
        if payload[:4] != INITIALIZE_SELECTOR:
            raise TransactionReverted("unknown selector", kind=RevertKind.INITIALIZATION)
        value, owner = decode(["uint256", "address"], payload[4:])
        self.state["value"] = value
        self._owner = to_checksum_address(owner)
        self.initialized = True

    def version(self) -> str:
        if self._chain.read_failure:
            raise ChainError("node unavailable")
        return self._version

    def owner(self) -> str:
        return self._owner

    def pending_owner(self) -> Optional[str]:
        return None

    def is_initialized(self) -> bool:
        return self.initialized

    def read(self, getter: str) -> Any:
        if getter not in self.state:
            raise ChainError(f"{getter}() is not part of the contract ABI")
        return self.state[getter]

    def transfer_ownership(self, new_owner: str, sender: str) -> TxResult:
        if self._chain.transfer_reverts or to_checksum_address(sender) != self._owner:
            tx_hash = self._chain.next_tx("transferOwnership", reverted=True)
            raise TransactionReverted("OwnableUnauthorizedAccount", tx_hash=tx_hash)
        tx_hash = self._chain.next_tx("transferOwnership")
        if not self._chain.transfer_is_noop:
            self._owner = to_checksum_address(new_owner)
        return TxResult(tx_hash=tx_hash, block_number=len(self._chain.transactions))


class FakeFactory:
    """CREATE3 factory with a combined deploy-and-initialize call."""

    def __init__(self, chain: FakeChain, address: str) -> None:
        self._chain = chain
        self.address = to_checksum_address(address)
        self.calls: list[tuple[bytes, bytes, bytes, str]] = []

    def _land(self, salt: bytes, creation_code: bytes, init_payload: bytes, sender: str) -> FakeContract:
        address = derive_for(self.address, salt, sender)
        if address in self._chain.contracts:
            raise TransactionReverted("FailedContractCreation", kind=RevertKind.CREATION)
        version = creation_code[len(FAKE_CODE_PREFIX):].split(b"\x00")[0].decode("utf-8")
        contract = FakeContract(self._chain, address, version)
        if self._chain.initializer_reverts:
            raise TransactionReverted("FailedContractInitialisation", kind=RevertKind.INITIALIZATION)
        contract.initialize(init_payload)
        return contract

    def simulate_deploy_and_init(
        self, salt: bytes, creation_code: bytes, init_payload: bytes, sender: str,
    ) -> str:
        self._chain.simulations += 1
        return self._land(salt, creation_code, init_payload, sender).address

    def deploy_and_init(
        self, salt: bytes, creation_code: bytes, init_payload: bytes, sender: str,
    ) -> TxResult:
        self.calls.append((salt, creation_code, init_payload, sender))
        try:
            contract = self._land(salt, creation_code, init_payload, sender)
        except TransactionReverted as exc:
            # Reverted transactions are still mined; nothing lands on-chain.
            exc.tx_hash = self._chain.next_tx("deployCreate3AndInit", reverted=True)
            raise
        tx_hash = self._chain.next_tx("deployCreate3AndInit")
        self._chain.contracts[contract.address] = contract
        if self._chain.receipt_timeout:
            # Mined, but the receipt never reached the caller.
            raise TransactionUnconfirmed("deployCreate3AndInit outcome unknown", tx_hash=tx_hash)
        reported = self._chain.misreport_address or contract.address
        return TxResult(tx_hash=tx_hash, block_number=len(self._chain.transactions), address=reported)


class FakeChain:
    """In-memory network: code by address, a transaction ledger, failure switches."""

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id
        self.contracts: dict[str, FakeContract] = {}
        self.transactions: list[tuple[str, str, bool]] = []
        self.factories: dict[str, FakeFactory] = {}
        self.simulations = 0
        self.initializer_reverts = False
        self.transfer_reverts = False
        self.transfer_is_noop = False
        self.read_failure = False
        self.receipt_timeout = False
        self.misreport_address: Optional[str] = None

    def next_tx(self, name: str, reverted: bool = False) -> str:
        tx_hash = f"0x{self.chain_id:08x}{len(self.transactions) + 1:056x}"
        self.transactions.append((tx_hash, name, reverted))
        return tx_hash

    def tx_names(self) -> list[str]:
        return [name for _, name, _ in self.transactions]

    def get_code(self, address: str) -> bytes:
        return b"\x01" if to_checksum_address(address) in self.contracts else b""

    def factory(self, address: str) -> FakeFactory:
        address = to_checksum_address(address)
        if address not in self.factories:
            self.factories[address] = FakeFactory(self, address)
        return self.factories[address]

    def contract(self, address: str) -> FakeContract:
        address = to_checksum_address(address)
        if address not in self.contracts:
            raise ChainError(f"no contract at {address}")
        return self.contracts[address]


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "deployments")


@pytest.fixture
def mainnet() -> FakeChain:
    return FakeChain(MAINNET)


@pytest.fixture
def sepolia() -> FakeChain:
    return FakeChain(SEPOLIA)


def make_config(**overrides: Any) -> DeployConfig:
    base = {"prod_owner": PROD_OWNER, "factory_address": CREATEX_ADDRESS}
    base.update(overrides)
    return DeployConfig(**base)


def make_ctx(
    chain: FakeChain,
    config: Optional[DeployConfig] = None,
    deployer: str = DEPLOYER,
    dry_run: bool = False,
) -> RunContext:
    return RunContext(
        deployer=deployer,
        chain_id=chain.chain_id,
        chain=chain,
        config=config or make_config(),
        dry_run=dry_run,
    )
