"""Chain collaborators — capability protocols and web3.py adapters."""

from detdeploy.chain.interfaces import (
    Chain,
    ChainError,
    DeterministicFactory,
    InitGuarded,
    Ownable,
    RevertKind,
    StateReader,
    TransactionReverted,
    TransactionUnconfirmed,
    TxResult,
    Versionable,
)

__all__ = [
    "Chain",
    "ChainError",
    "DeterministicFactory",
    "InitGuarded",
    "Ownable",
    "RevertKind",
    "StateReader",
    "TransactionReverted",
    "TransactionUnconfirmed",
    "TxResult",
    "Versionable",
]
