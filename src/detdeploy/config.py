"""Run configuration, read from the environment (and an optional .env file).

Recognised variables:

    DEPLOYER_PRIVATE_KEY  deployer credential (required to sign)
    MAINNET_CHAIN_IDS     comma-separated chain ids treated as mainnet
    PROD_OWNER            owner to hand mainnet deployments to
    ALLOWED_SENDERS       comma-separated allowlist of deployer addresses
    FORCE_DEPLOY          bypass the version gate (default false)
    RPC_URL               default network endpoint
    ARTIFACTS_DIR         artifact root (default: deployments)
    FACTORY_ADDRESS       deterministic factory (default: CreateX)
    SALT_STRATEGY         default | versioned | permissioned
    SALT_PREFIX           project-specific salt prefix
    TX_TIMEOUT            seconds to wait for a receipt
    LOG_LEVEL             logging level name
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address

from detdeploy.addressing.derivation import CREATEX_ADDRESS
from detdeploy.errors import ConfigurationError
from detdeploy.policy.ownership import DEFAULT_MAINNET_CHAIN_IDS

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}
_SALT_STRATEGIES = {"default", "versioned", "permissioned"}


def parse_bool(name: str, raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name}: expected a boolean, got {raw!r}")


def parse_address(name: str, raw: Optional[str]) -> Optional[str]:
    if raw is None or not raw.strip():
        return None
    value = raw.strip()
    if not is_address(value):
        raise ConfigurationError(f"{name}: {value!r} is not a valid address")
    return to_checksum_address(value)


def parse_address_list(name: str, raw: Optional[str]) -> frozenset[str]:
    if raw is None or not raw.strip():
        return frozenset()
    return frozenset(
        parse_address(name, item) for item in raw.split(",") if item.strip()
    )


def parse_chain_ids(name: str, raw: Optional[str]) -> frozenset[int]:
    if raw is None or not raw.strip():
        return DEFAULT_MAINNET_CHAIN_IDS
    ids: set[int] = set()
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            chain_id = int(item)
        except ValueError as exc:
            raise ConfigurationError(f"{name}: {item!r} is not a chain id") from exc
        if chain_id <= 0:
            raise ConfigurationError(f"{name}: chain id must be positive, got {chain_id}")
        ids.add(chain_id)
    return frozenset(ids)


@dataclass(frozen=True)
class DeployConfig:
    """Static configuration for one deployment run."""
    deployer_key: Optional[str] = field(default=None, repr=False)
    mainnet_chain_ids: frozenset[int] = DEFAULT_MAINNET_CHAIN_IDS
    prod_owner: Optional[str] = None
    allowed_senders: frozenset[str] = frozenset()
    force_deploy: bool = False
    rpc_url: Optional[str] = None
    artifacts_dir: Path = Path("deployments")
    factory_address: str = CREATEX_ADDRESS
    salt_strategy: str = "default"
    salt_prefix: str = ""
    tx_timeout: int = 300
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> DeployConfig:
        """Build configuration from ``env`` (default: os.environ).

        When reading os.environ, a .env file is loaded first; values
        already set in the environment take precedence.
        """
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        salt_strategy = env.get("SALT_STRATEGY", "default").strip().lower() or "default"
        if salt_strategy not in _SALT_STRATEGIES:
            raise ConfigurationError(
                f"SALT_STRATEGY: {salt_strategy!r} not in {sorted(_SALT_STRATEGIES)}"
            )

        raw_timeout = env.get("TX_TIMEOUT", "300")
        try:
            tx_timeout = int(raw_timeout)
        except ValueError as exc:
            raise ConfigurationError(f"TX_TIMEOUT: {raw_timeout!r} is not an integer") from exc

        factory = parse_address("FACTORY_ADDRESS", env.get("FACTORY_ADDRESS")) or CREATEX_ADDRESS

        return cls(
            deployer_key=env.get("DEPLOYER_PRIVATE_KEY") or None,
            mainnet_chain_ids=parse_chain_ids("MAINNET_CHAIN_IDS", env.get("MAINNET_CHAIN_IDS")),
            prod_owner=parse_address("PROD_OWNER", env.get("PROD_OWNER")),
            allowed_senders=parse_address_list("ALLOWED_SENDERS", env.get("ALLOWED_SENDERS")),
            force_deploy=parse_bool("FORCE_DEPLOY", env.get("FORCE_DEPLOY")),
            rpc_url=env.get("RPC_URL") or None,
            artifacts_dir=Path(env.get("ARTIFACTS_DIR") or "deployments"),
            factory_address=factory,
            salt_strategy=salt_strategy,
            salt_prefix=env.get("SALT_PREFIX", ""),
            tx_timeout=tx_timeout,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )

    def with_overrides(self, **changes: Any) -> DeployConfig:
        """Copy with non-None overrides applied (CLI flags win over env)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def is_sender_allowed(self, sender: str) -> bool:
        if not self.allowed_senders:
            return True
        return to_checksum_address(sender) in self.allowed_senders
