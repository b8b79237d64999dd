"""Salt strategies — deterministic 32-byte salts for deployments.

Identical inputs always give the identical salt. Distinct
(category, contract_name) pairs are assumed to give distinct salts; a
collision is a configuration error and is not detected at runtime.

Strategies are plain callables so a project can substitute its own
without touching the orchestrator:

    strategy(target, deployer) -> bytes  (32 bytes)

Whether the version takes part in the salt decides whether a version
bump lands at a new address (VersionedSalt) or collides with the
previous deployment (DefaultSalt).
"""

from __future__ import annotations

from typing import Callable, Optional

from eth_utils import keccak, to_canonical_address

from detdeploy.models.deployment import DeploymentTarget


SALT_LENGTH = 32

SaltStrategy = Callable[[DeploymentTarget, str], bytes]


def compute_salt(category: str, contract_name: str, prefix: str = "") -> bytes:
    """Default salt: keccak256 of ``[prefix:]category:contract_name``."""
    return keccak(text=_label(prefix, category, contract_name))


def _label(prefix: str, *parts: str) -> str:
    body = ":".join(parts)
    return f"{prefix}:{body}" if prefix else body


def validate_salt(salt: bytes) -> bytes:
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_LENGTH:
        raise ValueError(f"salt must be {SALT_LENGTH} bytes")
    return bytes(salt)


class DefaultSalt:
    """Salt from (category, contract_name). Versions share one address."""

    name = "default"

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix

    def __call__(self, target: DeploymentTarget, deployer: str) -> bytes:
        return compute_salt(target.category, target.contract_name, self._prefix)


class VersionedSalt:
    """Salt from (category, contract_name, version). Each version gets its own address."""

    name = "versioned"

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix

    def __call__(self, target: DeploymentTarget, deployer: str) -> bytes:
        return keccak(text=_label(
            self._prefix, target.category, target.contract_name, target.version
        ))


class PermissionedSalt:
    """Salt whose first 20 bytes are the deployer address.

    The factory only honours such a salt when the transaction comes from
    that address, so nobody else can occupy the deterministic address.
    Byte 21 is 0x00 (no per-chain redeploy protection) to keep the
    address identical across chains. The remaining 11 bytes come from
    the inner strategy.
    """

    name = "permissioned"

    def __init__(self, inner: Optional[SaltStrategy] = None) -> None:
        self._inner = inner or DefaultSalt()

    def __call__(self, target: DeploymentTarget, deployer: str) -> bytes:
        entropy = self._inner(target, deployer)
        return to_canonical_address(deployer) + b"\x00" + entropy[:11]


class ExplicitSalt:
    """Fixed salt supplied by the operator for a single deployment."""

    name = "explicit"

    def __init__(self, salt: bytes) -> None:
        self._salt = validate_salt(salt)

    def __call__(self, target: DeploymentTarget, deployer: str) -> bytes:
        return self._salt


def strategy_from_name(name: str, prefix: str = "") -> SaltStrategy:
    """Build a named strategy. Raises ValueError for unknown names."""
    if name == DefaultSalt.name:
        return DefaultSalt(prefix)
    if name == VersionedSalt.name:
        return VersionedSalt(prefix)
    if name == PermissionedSalt.name:
        return PermissionedSalt(DefaultSalt(prefix))
    raise ValueError(
        f"Unknown salt strategy {name!r}; "
        f"expected one of: default, versioned, permissioned"
    )
