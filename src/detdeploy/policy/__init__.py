"""Network classification and ownership handover rules."""

from detdeploy.policy.ownership import (
    DEFAULT_MAINNET_CHAIN_IDS,
    ChainClassifier,
    OwnershipPolicy,
)

__all__ = ["DEFAULT_MAINNET_CHAIN_IDS", "ChainClassifier", "OwnershipPolicy"]
