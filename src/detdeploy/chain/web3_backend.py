"""web3.py adapters for the chain collaborators.

Web3Chain wraps one RPC endpoint and the deployer's local account.
Every state-changing call is simulated with eth_call first so revert
reasons surface without spending gas, then signed locally, broadcast,
and waited on until a receipt arrives. Nothing is retried: re-sending a
deployment under an ambiguous nonce could double-submit it.
"""

from __future__ import annotations

import json
import logging
from functools import cached_property
from pathlib import Path
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from detdeploy.chain.interfaces import (
    ChainError,
    RevertKind,
    TransactionReverted,
    TransactionUnconfirmed,
    TxResult,
)

logger = logging.getLogger(__name__)

ABI_DIR = Path(__file__).resolve().parent / "abi"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# CreateX custom errors that tell the two halves of deploy+init apart.
_CREATEX_ERRORS: dict[bytes, RevertKind] = {
    function_signature_to_4byte_selector("FailedContractCreation(address)"): RevertKind.CREATION,
    function_signature_to_4byte_selector("FailedContractInitialisation(address,bytes)"): RevertKind.INITIALIZATION,
    function_signature_to_4byte_selector("InvalidSalt(address)"): RevertKind.INVALID_SALT,
}

CONTRACT_CREATION_TOPIC = keccak(text="ContractCreation(address)")


def load_abi(name: str) -> list[dict[str, Any]]:
    with (ABI_DIR / f"{name}.json").open("r", encoding="utf-8") as f:
        return json.load(f)


def revert_bytes(data: Any) -> bytes:
    """Normalise the revert payload web3 attaches to ContractLogicError."""
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str):
        try:
            return bytes(HexBytes(data))
        except ValueError:
            return b""
    return b""


def classify_revert(data: Any) -> RevertKind:
    payload = revert_bytes(data)
    return _CREATEX_ERRORS.get(payload[:4], RevertKind.UNKNOWN)


def created_address(receipt: Any, factory: str) -> Optional[str]:
    """Address announced by the factory's last ContractCreation(address) log."""
    found = None
    for log in receipt.get("logs", []):
        topics = log.get("topics") or []
        if len(topics) < 2 or bytes(HexBytes(topics[0])) != CONTRACT_CREATION_TOPIC:
            continue
        if to_checksum_address(log["address"]) != factory:
            continue
        found = to_checksum_address(bytes(HexBytes(topics[1]))[-20:])
    return found


class Web3Chain:
    """One network, reached over JSON-RPC, signing with a local key."""

    def __init__(
        self,
        w3: Web3,
        account: Optional[LocalAccount] = None,
        tx_timeout: int = 300,
        target_abi: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        self.w3 = w3
        self._account = account
        self._tx_timeout = tx_timeout
        self._target_abi = target_abi or load_abi("ExampleContract")

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        private_key: Optional[str] = None,
        tx_timeout: int = 300,
    ) -> Web3Chain:
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        if not w3.is_connected():
            raise ChainError(f"Could not connect to RPC endpoint {rpc_url}")
        account = Account.from_key(private_key) if private_key else None
        return cls(w3, account=account, tx_timeout=tx_timeout)

    @property
    def deployer(self) -> Optional[str]:
        return self._account.address if self._account else None

    @cached_property
    def chain_id(self) -> int:
        try:
            return int(self.w3.eth.chain_id)
        except Web3Exception as exc:
            raise ChainError(f"Cannot read chain id: {exc}") from exc

    def get_code(self, address: str) -> bytes:
        try:
            return bytes(self.w3.eth.get_code(to_checksum_address(address)))
        except Web3Exception as exc:
            raise ChainError(f"Cannot read code at {address}: {exc}") from exc

    def factory(self, address: str) -> CreateXFactory:
        return CreateXFactory(self, address)

    def contract(self, address: str) -> Web3TargetContract:
        return Web3TargetContract(self, address, self._target_abi)

    def call(self, fn: Any, sender: Optional[str] = None) -> Any:
        """Run a contract function as eth_call and return its output."""
        params = {"from": to_checksum_address(sender)} if sender else {}
        try:
            return fn.call(params)
        except ContractLogicError as exc:
            raise TransactionReverted(
                f"Simulation reverted: {exc}",
                kind=classify_revert(exc.data),
                revert_data=revert_bytes(exc.data),
            ) from exc
        except Web3Exception as exc:
            raise ChainError(f"Call failed: {exc}") from exc

    def transact(self, fn: Any, sender: str, description: str) -> Any:
        """Simulate, sign, broadcast and confirm. Returns the receipt."""
        account = self._require_account(sender)
        self.call(fn, sender)

        try:
            tx = fn.build_transaction({
                "from": account.address,
                "nonce": self.w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self.chain_id,
            })
            signed = account.sign_transaction(tx)
            raw_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise TransactionReverted(
                f"{description} rejected: {exc}",
                kind=classify_revert(exc.data),
                revert_data=revert_bytes(exc.data),
            ) from exc
        except Web3Exception as exc:
            raise ChainError(f"{description} could not be sent: {exc}") from exc

        tx_hash = Web3.to_hex(raw_hash)
        logger.info("Sent %s: %s", description, tx_hash)

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(raw_hash, timeout=self._tx_timeout)
        except TimeExhausted as exc:
            raise TransactionUnconfirmed(
                f"{description} ({tx_hash}) not confirmed within "
                f"{self._tx_timeout}s; outcome unknown",
                tx_hash=tx_hash,
            ) from exc

        if receipt["status"] != 1:
            raise TransactionReverted(f"{description} reverted in {tx_hash}", tx_hash=tx_hash)

        logger.info("Confirmed %s in block %s", tx_hash, receipt["blockNumber"])
        return receipt

    def _require_account(self, sender: str) -> LocalAccount:
        if self._account is None:
            raise ChainError("No deployer key loaded; cannot sign transactions")
        if to_checksum_address(sender) != self._account.address:
            raise ChainError(
                f"Sender {sender} does not match loaded key {self._account.address}"
            )
        return self._account


class CreateXFactory:
    """CreateX: CREATE3 deployment with an atomic initializer call."""

    def __init__(self, chain: Web3Chain, address: str) -> None:
        self.address = to_checksum_address(address)
        self._chain = chain
        self._contract = chain.w3.eth.contract(address=self.address, abi=load_abi("CreateX"))

    def _deploy_fn(self, salt: bytes, creation_code: bytes, init_payload: bytes) -> Any:
        return self._contract.functions.deployCreate3AndInit(
            salt, creation_code, init_payload, (0, 0)
        )

    def simulate_deploy_and_init(
        self,
        salt: bytes,
        creation_code: bytes,
        init_payload: bytes,
        sender: str,
    ) -> str:
        fn = self._deploy_fn(salt, creation_code, init_payload)
        return to_checksum_address(self._chain.call(fn, sender))

    def deploy_and_init(
        self,
        salt: bytes,
        creation_code: bytes,
        init_payload: bytes,
        sender: str,
    ) -> TxResult:
        fn = self._deploy_fn(salt, creation_code, init_payload)
        receipt = self._chain.transact(fn, sender, "deployCreate3AndInit")
        return TxResult(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            address=created_address(receipt, self.address),
        )


class Web3TargetContract:
    """Versionable, Ownable, InitGuarded and StateReader over a deployed contract."""

    def __init__(self, chain: Web3Chain, address: str, abi: list[dict[str, Any]]) -> None:
        self.address = to_checksum_address(address)
        self._chain = chain
        self._contract = chain.w3.eth.contract(address=self.address, abi=abi)
        self._functions = {item["name"] for item in abi if item.get("type") == "function"}

    def read(self, getter: str) -> Any:
        if getter not in self._functions:
            raise ChainError(f"{getter}() is not part of the contract ABI")
        return self._chain.call(getattr(self._contract.functions, getter)())

    def version(self) -> str:
        return self.read("version")

    def owner(self) -> str:
        return to_checksum_address(self.read("owner"))

    def pending_owner(self) -> Optional[str]:
        if "pendingOwner" not in self._functions:
            return None
        pending = to_checksum_address(self.read("pendingOwner"))
        return None if pending == ZERO_ADDRESS else pending

    def is_initialized(self) -> bool:
        # The initializer is the only path that sets a non-zero owner.
        return self.owner() != ZERO_ADDRESS

    def transfer_ownership(self, new_owner: str, sender: str) -> TxResult:
        fn = self._contract.functions.transferOwnership(to_checksum_address(new_owner))
        receipt = self._chain.transact(fn, sender, "transferOwnership")
        return TxResult(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
        )
