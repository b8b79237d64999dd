"""detdeploy CLI — deterministic contract deployment.

Usage:
    python -m detdeploy.cli deploy --rpc-url $RPC_URL --version 1.0.0-ExampleContract \
        --bytecode out/ExampleContract.json --initial-value 42 [--broadcast]
    python -m detdeploy.cli predict --version 1.0.0-ExampleContract --deployer 0x...
    python -m detdeploy.cli status
    python -m detdeploy.cli history --run-id run-0123456789ab

Without --broadcast, deploy is a dry run: the atomic deploy+init is
simulated with eth_call and nothing is written to the artifact store.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_utils import is_address, to_checksum_address

from detdeploy.addressing.derivation import AddressDeriver
from detdeploy.addressing.salt import ExplicitSalt, SaltStrategy, strategy_from_name
from detdeploy.chain.example_contract import CONTRACT_NAME, example_target
from detdeploy.chain.interfaces import ChainError
from detdeploy.config import DeployConfig
from detdeploy.engine.orchestrator import DeploymentOrchestrator, RunContext
from detdeploy.errors import DeploymentError
from detdeploy.models.deployment import DeploymentTarget, parse_version
from detdeploy.persistence.artifact_store import ArtifactStore
from detdeploy.persistence.run_journal import RunJournal

logger = logging.getLogger("detdeploy")

JOURNAL_FILE = "journal.jsonl"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config(args: argparse.Namespace) -> DeployConfig:
    config = DeployConfig.from_env(dotenv_path=args.env_file)
    return config.with_overrides(
        artifacts_dir=args.artifacts,
        rpc_url=getattr(args, "rpc_url", None),
        prod_owner=_checksum_or_none(getattr(args, "prod_owner", None)),
        force_deploy=True if getattr(args, "force", False) else None,
        salt_strategy=getattr(args, "salt_strategy", None),
    )


def _checksum_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not is_address(value):
        raise ValueError(f"{value!r} is not a valid address")
    return to_checksum_address(value)


def _hex_bytes(raw: str) -> bytes:
    raw = raw.strip()
    return bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)


def read_bytecode(path: Path) -> bytes:
    """Creation code from a hex file or a compiler artifact JSON."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        data = json.loads(text)
        bytecode = data.get("bytecode", "")
        if isinstance(bytecode, dict):
            bytecode = bytecode.get("object", "")
        return _hex_bytes(bytecode)
    return _hex_bytes(text)


def _salt_strategy(args: argparse.Namespace, config: DeployConfig) -> SaltStrategy:
    if getattr(args, "salt", None):
        return ExplicitSalt(_hex_bytes(args.salt))
    return strategy_from_name(config.salt_strategy, config.salt_prefix)


def _build_target(args: argparse.Namespace, deployer: str, creation_code: bytes) -> DeploymentTarget:
    _, _, _, contract_name = parse_version(args.version)
    if args.init_data:
        return DeploymentTarget(
            category=args.category,
            contract_name=contract_name,
            version=args.version,
            creation_code=creation_code,
            init_payload=_hex_bytes(args.init_data),
        )
    if contract_name != CONTRACT_NAME:
        raise ValueError(f"--init-data is required for {contract_name}")
    if args.initial_value is None:
        raise ValueError("--initial-value is required for ExampleContract")
    return example_target(args.category, args.version, creation_code, args.initial_value, deployer)


def cmd_deploy(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        if not config.deployer_key:
            print("Failed: DEPLOYER_PRIVATE_KEY is not set", file=sys.stderr)
            return 1
        if not config.rpc_url:
            print("Failed: no RPC endpoint (--rpc-url or RPC_URL)", file=sys.stderr)
            return 1
        deployer = Account.from_key(config.deployer_key).address
        target = _build_target(args, deployer, read_bytecode(args.bytecode))
        salt_strategy = _salt_strategy(args, config)
    except (DeploymentError, ValueError, OSError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    from detdeploy.chain.web3_backend import Web3Chain

    try:
        chain = Web3Chain.connect(config.rpc_url, config.deployer_key, config.tx_timeout)
        chain_id = chain.chain_id
        logger.info("Connected to chain %d at %s", chain_id, config.rpc_url)
    except ChainError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    store = ArtifactStore(config.artifacts_dir)
    try:
        journal = RunJournal(storage_path=config.artifacts_dir / JOURNAL_FILE)
    except (ValueError, OSError) as exc:
        print(f"Failed: run journal unreadable: {exc}", file=sys.stderr)
        return 1
    orchestrator = DeploymentOrchestrator(store, salt_strategy=salt_strategy, journal=journal)
    ctx = RunContext(
        deployer=deployer,
        chain_id=chain_id,
        chain=chain,
        config=config,
        dry_run=not args.broadcast,
    )

    try:
        report = orchestrator.run(ctx, target)
    except DeploymentError as exc:
        print(f"Failed: {exc.describe()}", file=sys.stderr)
        if exc.unconfirmed_tx:
            print(
                f"Transaction {exc.unconfirmed_tx} was broadcast but not confirmed; "
                "check its outcome before re-running. Manual reconciliation may be required.",
                file=sys.stderr,
            )
        elif exc.chain_mutated:
            print("On-chain state was modified; manual reconciliation required.", file=sys.stderr)
        return 1

    print(json.dumps(report.to_dict(), indent=2))
    return 0


def cmd_predict(args: argparse.Namespace) -> int:
    """Salt and address for a target, without touching the network."""
    try:
        config = _load_config(args)
        deployer = _checksum_or_none(args.deployer)
        if deployer is None and config.deployer_key:
            deployer = Account.from_key(config.deployer_key).address
        if deployer is None:
            print("Failed: --deployer or DEPLOYER_PRIVATE_KEY is required", file=sys.stderr)
            return 1
        _, _, _, contract_name = parse_version(args.version)
        target = DeploymentTarget(
            category=args.category,
            contract_name=contract_name,
            version=args.version,
            creation_code=b"\x00",
            init_payload=b"",
        )
        salt = _salt_strategy(args, config)(target, deployer)
        address = AddressDeriver(config.factory_address).derive_for(salt, deployer)
    except (DeploymentError, ValueError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps({
        "category": args.category,
        "contract_name": contract_name,
        "version": args.version,
        "deployer": deployer,
        "factory": config.factory_address,
        "salt_strategy": "explicit" if args.salt else config.salt_strategy,
        "salt": "0x" + salt.hex(),
        "address": address,
    }, indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        records = ArtifactStore(config.artifacts_dir).all_records()
    except DeploymentError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps([r.to_dict() for r in records], indent=2))
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        journal = RunJournal(storage_path=config.artifacts_dir / JOURNAL_FILE)
    except (DeploymentError, ValueError, OSError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    entries = journal.entries(run_id=args.run_id)
    print(json.dumps([e.to_dict() for e in entries], indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="detdeploy",
        description="Deterministic, version-gated contract deployment",
    )
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file")
    parser.add_argument(
        "--artifacts", type=Path, default=None,
        help="Artifact directory (default: ARTIFACTS_DIR or deployments/)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command")

    def add_target_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--category", default="example", help="Deployment category (default: example)")
        p.add_argument("--version", required=True, help="Version, e.g. 1.0.0-ExampleContract")
        p.add_argument(
            "--salt-strategy", choices=["default", "versioned", "permissioned"],
            help="Salt strategy (default: SALT_STRATEGY or default)",
        )
        p.add_argument("--salt", help="Explicit 32-byte salt (hex), overrides the strategy")

    # deploy
    p_deploy = sub.add_parser("deploy", help="Deploy (or dry-run) a contract")
    add_target_args(p_deploy)
    p_deploy.add_argument("--rpc-url", help="Network endpoint (default: RPC_URL)")
    p_deploy.add_argument("--bytecode", type=Path, required=True, help="Creation code (.hex or artifact .json)")
    p_deploy.add_argument("--initial-value", type=int, help="ExampleContract initial value")
    p_deploy.add_argument("--init-data", help="Raw initializer calldata (hex) for other contracts")
    p_deploy.add_argument("--prod-owner", help="Mainnet owner (default: PROD_OWNER)")
    p_deploy.add_argument("--force", action="store_true", help="Bypass the version gate")
    p_deploy.add_argument(
        "--broadcast", action="store_true",
        help="Send transactions and persist artifacts (default: dry run)",
    )

    # predict
    p_predict = sub.add_parser("predict", help="Print salt and deterministic address")
    add_target_args(p_predict)
    p_predict.add_argument("--deployer", help="Deployer address (default: from DEPLOYER_PRIVATE_KEY)")

    # status
    sub.add_parser("status", help="List recorded deployments")

    # history
    p_hist = sub.add_parser("history", help="Show the run journal")
    p_hist.add_argument("--run-id", help="Only entries for this run")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    load_dotenv(args.env_file)
    configure_logging(args.log_level or os.environ.get("LOG_LEVEL", "INFO"))

    commands = {
        "deploy": cmd_deploy,
        "predict": cmd_predict,
        "status": cmd_status,
        "history": cmd_history,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
