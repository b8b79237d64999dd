"""Chain classification and post-deployment ownership policy.

Ownership handover is a pure function of chain identity and static
configuration: no history, no implicit state.

- Mainnet: the configured production owner if set, else the deployer
  (which makes the transfer a no-op).
- Anything else: always the deployer, whatever prod_owner says.
"""

from __future__ import annotations

from typing import Iterable, Optional

from eth_utils import to_checksum_address

from detdeploy.models.deployment import ChainClass


# Ethereum, Optimism, BNB Chain, Polygon, Base, Arbitrum One, Avalanche C-Chain
DEFAULT_MAINNET_CHAIN_IDS: frozenset[int] = frozenset({1, 10, 56, 137, 8453, 42161, 43114})


class ChainClassifier:
    """Maps a chain id to MAINNET or NON_MAINNET."""

    def __init__(self, mainnet_chain_ids: Iterable[int] = DEFAULT_MAINNET_CHAIN_IDS) -> None:
        self._mainnets = frozenset(int(c) for c in mainnet_chain_ids)

    @property
    def mainnet_chain_ids(self) -> frozenset[int]:
        return self._mainnets

    def classify(self, chain_id: int) -> ChainClass:
        if chain_id in self._mainnets:
            return ChainClass.MAINNET
        return ChainClass.NON_MAINNET


class OwnershipPolicy:
    """Decides who must own a freshly deployed contract."""

    def __init__(self, classifier: ChainClassifier) -> None:
        self._classifier = classifier

    def target_owner(
        self,
        chain_id: int,
        deployer: str,
        prod_owner: Optional[str] = None,
    ) -> str:
        if self._classifier.classify(chain_id) == ChainClass.MAINNET and prod_owner:
            return to_checksum_address(prod_owner)
        return to_checksum_address(deployer)

    def requires_transfer(
        self,
        chain_id: int,
        deployer: str,
        current_owner: str,
        prod_owner: Optional[str] = None,
    ) -> bool:
        target = self.target_owner(chain_id, deployer, prod_owner)
        return target != to_checksum_address(current_owner)
