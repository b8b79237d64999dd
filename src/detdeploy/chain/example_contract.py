"""ExampleContract — the demonstration target.

A value store with an owner, a one-time initializer and a pure version
getter. The factory calls ``initialize(initialValue, initialOwner)``
inside the deployment transaction, so msg.sender during initialization
is the factory; the owner therefore has to be passed explicitly.
"""

from __future__ import annotations

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from detdeploy.models.deployment import DeploymentTarget


CONTRACT_NAME = "ExampleContract"
INITIALIZE_SIGNATURE = "initialize(uint256,address)"
INITIALIZE_SELECTOR = function_signature_to_4byte_selector(INITIALIZE_SIGNATURE)


def encode_initialize(initial_value: int, initial_owner: str) -> bytes:
    """Calldata for ``initialize(initial_value, initial_owner)``."""
    if initial_value < 0:
        raise ValueError("initial_value must be non-negative")
    return INITIALIZE_SELECTOR + encode(
        ["uint256", "address"],
        [initial_value, to_checksum_address(initial_owner)],
    )


def example_target(
    category: str,
    version: str,
    creation_code: bytes,
    initial_value: int,
    initial_owner: str,
) -> DeploymentTarget:
    owner = to_checksum_address(initial_owner)
    return DeploymentTarget(
        category=category,
        contract_name=CONTRACT_NAME,
        version=version,
        creation_code=creation_code,
        init_payload=encode_initialize(initial_value, owner),
        expected_state={"value": initial_value},
        init_args={"initialValue": initial_value, "initialOwner": owner},
    )
