"""Capability surfaces the orchestrator needs from the chain.

The target contract is not modelled as a class hierarchy. The
orchestrator depends only on the independent capabilities it uses:

- Versionable: reports its version string
- Ownable: reports and transfers ownership
- InitGuarded: reports whether its one-time initializer has run
- StateReader: answers read-only getters for post-deploy verification

The deterministic factory must offer a single combined
deploy-and-initialize primitive. There is deliberately no separate
"deploy" followed by "initialize": two broadcast transactions would
leave a window where anyone could call the initializer first.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


class RevertKind(str, enum.Enum):
    """Which half of the atomic deploy+init unit reverted."""
    CREATION = "creation"
    INITIALIZATION = "initialization"
    INVALID_SALT = "invalid_salt"
    UNKNOWN = "unknown"


class ChainError(Exception):
    """Transport-level or node-level failure talking to the chain."""


class TransactionReverted(ChainError):
    """A transaction (or its pre-flight simulation) reverted."""

    def __init__(
        self,
        message: str,
        kind: RevertKind = RevertKind.UNKNOWN,
        tx_hash: Optional[str] = None,
        revert_data: Optional[bytes] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.tx_hash = tx_hash
        self.revert_data = revert_data


class TransactionUnconfirmed(ChainError):
    """A transaction was broadcast but no receipt arrived in time.

    The transaction may still be mined, so its outcome is unknown.
    """

    def __init__(self, message: str, tx_hash: str) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


@dataclass(frozen=True)
class TxResult:
    """A confirmed transaction."""
    tx_hash: str
    block_number: Optional[int] = None
    address: Optional[str] = None  # contract created by this tx, if any


@runtime_checkable
class Versionable(Protocol):
    def version(self) -> str: ...


@runtime_checkable
class Ownable(Protocol):
    def owner(self) -> str: ...

    def pending_owner(self) -> Optional[str]: ...

    def transfer_ownership(self, new_owner: str, sender: str) -> TxResult: ...


@runtime_checkable
class InitGuarded(Protocol):
    def is_initialized(self) -> bool: ...


@runtime_checkable
class StateReader(Protocol):
    def read(self, getter: str) -> Any: ...


@runtime_checkable
class DeterministicFactory(Protocol):
    """Content-independent deterministic deployer with deploy-and-call."""

    address: str

    def deploy_and_init(
        self,
        salt: bytes,
        creation_code: bytes,
        init_payload: bytes,
        sender: str,
    ) -> TxResult: ...

    def simulate_deploy_and_init(
        self,
        salt: bytes,
        creation_code: bytes,
        init_payload: bytes,
        sender: str,
    ) -> str: ...


class Chain(Protocol):
    """RPC handle for one network."""

    @property
    def chain_id(self) -> int: ...

    def get_code(self, address: str) -> bytes: ...

    def factory(self, address: str) -> DeterministicFactory: ...

    def contract(self, address: str) -> Any: ...
