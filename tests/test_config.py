"""Tests for configuration parsing and the data model."""

from pathlib import Path

import pytest
from eth_abi import decode

from detdeploy.addressing.derivation import CREATEX_ADDRESS
from detdeploy.chain.example_contract import INITIALIZE_SELECTOR, encode_initialize, example_target
from detdeploy.config import DeployConfig, parse_bool, parse_chain_ids
from detdeploy.errors import ConfigurationError, DeploymentFailed, UnauthorizedSender
from detdeploy.models.deployment import (
    DeployedRecord,
    DeploymentTarget,
    RunStep,
    parse_version,
)
from detdeploy.policy.ownership import DEFAULT_MAINNET_CHAIN_IDS

from conftest import DEPLOYER, OTHER, PROD_OWNER, SEPOLIA


class TestDeployConfig:
    def test_defaults_from_empty_env(self) -> None:
        config = DeployConfig.from_env({})
        assert config.deployer_key is None
        assert config.mainnet_chain_ids == DEFAULT_MAINNET_CHAIN_IDS
        assert config.prod_owner is None
        assert config.allowed_senders == frozenset()
        assert config.force_deploy is False
        assert config.artifacts_dir == Path("deployments")
        assert config.factory_address == CREATEX_ADDRESS
        assert config.salt_strategy == "default"
        assert config.tx_timeout == 300
        assert config.log_level == "INFO"

    def test_full_env(self) -> None:
        config = DeployConfig.from_env({
            "DEPLOYER_PRIVATE_KEY": "0x" + "01" * 32,
            "MAINNET_CHAIN_IDS": "1, 137",
            "PROD_OWNER": PROD_OWNER.lower(),
            "ALLOWED_SENDERS": f"{DEPLOYER},{OTHER.lower()}",
            "FORCE_DEPLOY": "yes",
            "RPC_URL": "http://localhost:8545",
            "ARTIFACTS_DIR": "out/deployments",
            "SALT_STRATEGY": "Versioned",
            "SALT_PREFIX": "acme",
            "TX_TIMEOUT": "60",
            "LOG_LEVEL": "debug",
        })
        assert config.mainnet_chain_ids == frozenset({1, 137})
        assert config.prod_owner == PROD_OWNER
        assert config.allowed_senders == frozenset({DEPLOYER, OTHER})
        assert config.force_deploy is True
        assert config.rpc_url == "http://localhost:8545"
        assert config.artifacts_dir == Path("out/deployments")
        assert config.salt_strategy == "versioned"
        assert config.salt_prefix == "acme"
        assert config.tx_timeout == 60
        assert config.log_level == "DEBUG"

    def test_key_is_not_in_repr(self) -> None:
        config = DeployConfig.from_env({"DEPLOYER_PRIVATE_KEY": "0x" + "01" * 32})
        assert "01010101" not in repr(config)

    @pytest.mark.parametrize("env", [
        {"PROD_OWNER": "0x1234"},
        {"ALLOWED_SENDERS": f"{DEPLOYER},nope"},
        {"MAINNET_CHAIN_IDS": "1,mainnet"},
        {"MAINNET_CHAIN_IDS": "1,-5"},
        {"FORCE_DEPLOY": "maybe"},
        {"SALT_STRATEGY": "random"},
        {"TX_TIMEOUT": "soon"},
        {"FACTORY_ADDRESS": "0xnot-an-address"},
    ])
    def test_bad_values_are_configuration_errors(self, env) -> None:
        with pytest.raises(ConfigurationError):
            DeployConfig.from_env(env)

    def test_with_overrides_ignores_none(self) -> None:
        config = DeployConfig(prod_owner=PROD_OWNER)
        updated = config.with_overrides(prod_owner=None, force_deploy=True)
        assert updated.prod_owner == PROD_OWNER
        assert updated.force_deploy is True
        assert config.force_deploy is False

    def test_empty_allowlist_allows_anyone(self) -> None:
        assert DeployConfig().is_sender_allowed(OTHER)

    def test_allowlist(self) -> None:
        config = DeployConfig(allowed_senders=frozenset({DEPLOYER}))
        assert config.is_sender_allowed(DEPLOYER.lower())
        assert not config.is_sender_allowed(OTHER)

    def test_parse_bool_default(self) -> None:
        assert parse_bool("X", None, default=True) is True
        assert parse_bool("X", "") is False

    def test_blank_chain_ids_use_default(self) -> None:
        assert parse_chain_ids("X", "  ") == DEFAULT_MAINNET_CHAIN_IDS


class TestVersions:
    def test_parse_version(self) -> None:
        assert parse_version("1.2.3-ExampleContract") == (1, 2, 3, "ExampleContract")

    @pytest.mark.parametrize("bad", [
        "",
        "1.2-ExampleContract",
        "1.2.3",
        "v1.2.3-ExampleContract",
        "1.2.3-Example-Contract",
        "1.2.3-",
    ])
    def test_malformed_versions_rejected(self, bad) -> None:
        with pytest.raises(ValueError, match="Invalid version"):
            parse_version(bad)

    def test_target_version_must_name_contract(self) -> None:
        with pytest.raises(ValueError, match="names contract"):
            DeploymentTarget("example", "ExampleContract", "1.0.0-OtherContract", b"\x60", b"")

    def test_target_requires_creation_code(self) -> None:
        with pytest.raises(ValueError, match="creation_code"):
            DeploymentTarget("example", "ExampleContract", "1.0.0-ExampleContract", b"", b"")

    def test_target_requires_category(self) -> None:
        with pytest.raises(ValueError, match="category"):
            DeploymentTarget("", "ExampleContract", "1.0.0-ExampleContract", b"\x60", b"")


class TestRecords:
    def test_dict_round_trip(self) -> None:
        record = DeployedRecord.create(SEPOLIA, "example", "ExampleContract", "1.0.0-ExampleContract", DEPLOYER, None)
        assert DeployedRecord.from_dict(record.to_dict()) == record
        assert record.timestamp_utc.endswith("Z")

    def test_from_dict_tolerates_missing_tx_hash(self) -> None:
        data = {
            "chain_id": "1",
            "category": "example",
            "contract_name": "ExampleContract",
            "version": "1.0.0-ExampleContract",
            "address": DEPLOYER,
            "timestamp_utc": "2026-01-01T00:00:00Z",
        }
        record = DeployedRecord.from_dict(data)
        assert record.chain_id == 1
        assert record.tx_hash is None


class TestExampleContract:
    def test_initialize_calldata(self) -> None:
        payload = encode_initialize(42, DEPLOYER.lower())
        assert payload[:4] == INITIALIZE_SELECTOR
        value, owner = decode(["uint256", "address"], payload[4:])
        assert value == 42
        assert owner.lower() == DEPLOYER.lower()

    def test_negative_value_rejected(self) -> None:
        with pytest.raises(ValueError):
            encode_initialize(-1, DEPLOYER)

    def test_example_target(self) -> None:
        target = example_target("example", "1.0.0-ExampleContract", b"\x60\x80", 7, DEPLOYER)
        assert target.contract_name == "ExampleContract"
        assert target.expected_state == {"value": 7}
        assert target.init_args == {"initialValue": 7, "initialOwner": DEPLOYER}
        assert target.init_payload == encode_initialize(7, DEPLOYER)


class TestErrors:
    def test_no_step_means_no_mutation(self) -> None:
        exc = UnauthorizedSender("nope")
        assert not exc.chain_mutated
        assert exc.describe() == "[unauthorized_sender] nope (last completed step: none)"

    def test_step_after_deploy_means_mutation(self) -> None:
        exc = DeploymentFailed("address mismatch", last_step=RunStep.DEPLOY)
        assert exc.chain_mutated
        assert "last completed step: deploy" in exc.describe()

    def test_check_existing_does_not_mutate(self) -> None:
        assert not DeploymentFailed("occupied", last_step=RunStep.CHECK_EXISTING).chain_mutated

    def test_unconfirmed_transaction_may_have_mutated(self) -> None:
        exc = DeploymentFailed("no receipt", last_step=RunStep.CHECK_EXISTING, unconfirmed_tx="0xabc")
        assert exc.chain_mutated
        assert "transaction 0xabc outcome unknown" in exc.describe()
