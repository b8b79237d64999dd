"""Deterministic address derivation for the CreateX CREATE3 factory.

CREATE3 makes the deployment address independent of the deployed
bytecode. The factory first CREATE2-deploys a fixed proxy:

    proxy = keccak256(0xff ++ factory ++ salt ++ keccak256(PROXY_CODE))[12:]

and the proxy then CREATEs the real contract as its first (nonce 1)
deployment:

    address = keccak256(rlp([proxy, 1]))[12:]
            = keccak256(0xd6 ++ 0x94 ++ proxy ++ 0x01)[12:]

Neither step involves the contract's creation code, so for a fixed
(factory, salt) the address is the same on every network regardless of
nonce, block state, or what is deployed.

CreateX guards the caller-supplied salt before using it; guard_salt
reproduces that so the address can be predicted offline.
"""

from __future__ import annotations

from eth_abi import encode
from eth_utils import keccak, to_canonical_address, to_checksum_address

from detdeploy.addressing.salt import validate_salt


# Canonical CreateX deployment, identical on every supported chain.
CREATEX_ADDRESS = "0xba5Ed099633D3B313e4D5F7bdc1305d3c28ba5Ed"

# Proxy child bytecode CreateX CREATE2-deploys for every CREATE3 deployment.
PROXY_CHILD_BYTECODE = bytes.fromhex("67363d3d37363d34f03d5260086018f3")
PROXY_CHILD_CODEHASH = keccak(PROXY_CHILD_BYTECODE)

_ZERO_SENDER = b"\x00" * 20
_FLAG_OFF = 0x00
_FLAG_ON = 0x01


def create2_address(factory: str, salt: bytes, init_code_hash: bytes) -> str:
    preimage = b"\xff" + to_canonical_address(factory) + validate_salt(salt) + init_code_hash
    return to_checksum_address(keccak(preimage)[12:])


def derive(factory: str, salt: bytes) -> str:
    """Return the CREATE3 address for an effective (already guarded) salt.

    Pure and total for any valid factory address and 32-byte salt.
    """
    proxy = create2_address(factory, salt, PROXY_CHILD_CODEHASH)
    preimage = b"\xd6\x94" + to_canonical_address(proxy) + b"\x01"
    return to_checksum_address(keccak(preimage)[12:])


def guard_salt(salt: bytes, sender: str) -> bytes:
    """Apply the CreateX salt guard for a cross-chain deployment.

    - first 20 bytes == sender, byte 21 == 0x00: permissioned,
      effective salt is keccak256(abi.encode(sender, salt)).
    - any redeploy-protected salt (byte 21 == 0x01) mixes in the chain id
      and would land at a different address per chain: rejected.
    - sender-prefixed or zero-prefixed salts with any other flag byte
      are refused by the factory: rejected.
    - everything else: keccak256(abi.encode(salt)).
    """
    salt = validate_salt(salt)
    sender_bytes = to_canonical_address(sender)
    prefix, flag = salt[:20], salt[20]

    if prefix == sender_bytes:
        if flag == _FLAG_OFF:
            return keccak(encode(["address", "bytes32"], [to_checksum_address(sender_bytes), salt]))
        if flag == _FLAG_ON:
            raise ValueError("Redeploy-protected salts are chain-specific")
        raise ValueError("Invalid salt: sender-prefixed salt needs flag byte 0x00 or 0x01")

    if prefix == _ZERO_SENDER:
        if flag == _FLAG_ON:
            raise ValueError("Redeploy-protected salts are chain-specific")
        if flag != _FLAG_OFF:
            raise ValueError("Invalid salt: zero-prefixed salt needs flag byte 0x00 or 0x01")

    return keccak(encode(["bytes32"], [salt]))


def derive_for(factory: str, salt: bytes, sender: str) -> str:
    """Address a deployment by ``sender`` with ``salt`` lands at."""
    return derive(factory, guard_salt(salt, sender))


class AddressDeriver:
    """Bound deriver for one factory, injected into the orchestrator."""

    def __init__(self, factory: str = CREATEX_ADDRESS) -> None:
        self.factory = to_checksum_address(factory)

    def derive(self, salt: bytes) -> str:
        return derive(self.factory, salt)

    def derive_for(self, salt: bytes, sender: str) -> str:
        return derive_for(self.factory, salt, sender)
