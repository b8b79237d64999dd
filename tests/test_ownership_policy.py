"""Tests for chain classification and the ownership policy."""

import pytest

from detdeploy.models.deployment import ChainClass
from detdeploy.policy.ownership import (
    DEFAULT_MAINNET_CHAIN_IDS,
    ChainClassifier,
    OwnershipPolicy,
)

from conftest import DEPLOYER, MAINNET, PROD_OWNER, SEPOLIA


@pytest.fixture
def policy() -> OwnershipPolicy:
    return OwnershipPolicy(ChainClassifier())


class TestChainClassifier:
    @pytest.mark.parametrize("chain_id", sorted(DEFAULT_MAINNET_CHAIN_IDS))
    def test_default_mainnets(self, chain_id) -> None:
        assert ChainClassifier().classify(chain_id) == ChainClass.MAINNET

    @pytest.mark.parametrize("chain_id", [SEPOLIA, 31337, 84532])
    def test_everything_else_is_non_mainnet(self, chain_id) -> None:
        assert ChainClassifier().classify(chain_id) == ChainClass.NON_MAINNET

    def test_configured_set_replaces_default(self) -> None:
        classifier = ChainClassifier([SEPOLIA])
        assert classifier.classify(SEPOLIA) == ChainClass.MAINNET
        assert classifier.classify(MAINNET) == ChainClass.NON_MAINNET
        assert classifier.mainnet_chain_ids == frozenset({SEPOLIA})


class TestOwnershipPolicy:
    def test_mainnet_with_prod_owner(self, policy) -> None:
        assert policy.target_owner(MAINNET, DEPLOYER, PROD_OWNER) == PROD_OWNER

    def test_mainnet_without_prod_owner_keeps_deployer(self, policy) -> None:
        assert policy.target_owner(MAINNET, DEPLOYER, None) == DEPLOYER

    def test_testnet_ignores_prod_owner(self, policy) -> None:
        assert policy.target_owner(SEPOLIA, DEPLOYER, PROD_OWNER) == DEPLOYER

    def test_result_is_checksummed(self, policy) -> None:
        assert policy.target_owner(MAINNET, DEPLOYER.lower(), PROD_OWNER.lower()) == PROD_OWNER

    def test_requires_transfer_on_mainnet(self, policy) -> None:
        assert policy.requires_transfer(MAINNET, DEPLOYER, DEPLOYER, PROD_OWNER)

    def test_no_transfer_when_already_owned(self, policy) -> None:
        assert not policy.requires_transfer(MAINNET, DEPLOYER, PROD_OWNER, PROD_OWNER)

    def test_no_transfer_on_testnet(self, policy) -> None:
        assert not policy.requires_transfer(SEPOLIA, DEPLOYER, DEPLOYER, PROD_OWNER)

    def test_address_case_does_not_force_transfer(self, policy) -> None:
        assert not policy.requires_transfer(SEPOLIA, DEPLOYER, DEPLOYER.lower())
