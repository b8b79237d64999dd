"""Deployment orchestrator — drives one run from version gate to artifact.

    Init → CheckExisting ┬→ Deploy → PostInit → PostVerify
                         │     → OwnershipDecision → [Transfer] → Persist → Done
                         └→ SkipToVerify → Done

Run requirements:
- Nothing touches the network before the sender allowlist is checked.
- Creation and initialization are ONE factory transaction; the contract
  is never observable deployed-but-uninitialized.
- Every step waits for the previous one's confirmed outcome.
- Bookkeeping is all-or-nothing: a record is written only after every
  prior step succeeded, and never for a dry run.
- Failures are raised, never retried; the error carries the last
  completed step.

All run inputs travel in an explicit RunContext. Salt generation and the
initializer payload are injectable strategies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from eth_utils import is_address, keccak, to_checksum_address

from detdeploy.addressing.derivation import AddressDeriver
from detdeploy.addressing.salt import DefaultSalt, SaltStrategy, validate_salt
from detdeploy.chain.interfaces import (
    Chain,
    ChainError,
    InitGuarded,
    RevertKind,
    TransactionReverted,
    TransactionUnconfirmed,
)
from detdeploy.config import DeployConfig
from detdeploy.engine.state_machine import RunStateMachine
from detdeploy.engine.version_registry import GateDecision, VersionRegistry
from detdeploy.errors import (
    ConfigurationError,
    DeploymentError,
    DeploymentFailed,
    InitializationFailed,
    OwnershipTransferFailed,
    PostDeployVerificationFailed,
    UnauthorizedSender,
)
from detdeploy.models.deployment import (
    DeployedRecord,
    DeploymentReport,
    DeploymentTarget,
    OwnershipState,
    RunStatus,
    RunStep,
)
from detdeploy.persistence.artifact_store import ArtifactStore
from detdeploy.persistence.run_journal import JournalKind, RunJournal
from detdeploy.policy.ownership import ChainClassifier, OwnershipPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Everything a run needs about who, where and how."""
    deployer: str
    chain_id: int
    chain: Chain
    config: DeployConfig
    dry_run: bool = False


InitPayloadBuilder = Callable[[RunContext, DeploymentTarget], bytes]


def default_init_payload(ctx: RunContext, target: DeploymentTarget) -> bytes:
    return target.init_payload


def _same_value(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str) and is_address(actual) and is_address(expected):
        return to_checksum_address(actual) == to_checksum_address(expected)
    return actual == expected


class _RunTracker:
    """Step bookkeeping for one run: state machine, journal, tx list."""

    def __init__(self, journal: RunJournal, simulation: bool) -> None:
        self.machine = RunStateMachine(simulation=simulation)
        self.journal = journal
        self.run_id = journal.new_run_id()
        self.transactions: list[str] = []
        self.planned: list[str] = []

    def complete(self, step: RunStep, **details: Any) -> None:
        self.machine.advance(step)
        self.journal.record(self.run_id, JournalKind.STEP_COMPLETED, step=step.value, **details)
        logger.info("[%s] %s completed", self.run_id, step.value)

    def sent(self, tx_hash: str) -> None:
        self.transactions.append(tx_hash)


class DeploymentOrchestrator:
    """Runs the deployment protocol for one target on one chain.

    Usage:
        orchestrator = DeploymentOrchestrator(ArtifactStore(Path("deployments")))
        ctx = RunContext(deployer, chain.chain_id, chain, config)
        report = orchestrator.run(ctx, target)
    """

    def __init__(
        self,
        store: ArtifactStore,
        registry: Optional[VersionRegistry] = None,
        salt_strategy: Optional[SaltStrategy] = None,
        init_payload_builder: Optional[InitPayloadBuilder] = None,
        policy: Optional[OwnershipPolicy] = None,
        journal: Optional[RunJournal] = None,
    ) -> None:
        self._store = store
        self._registry = registry or VersionRegistry(store)
        self._salt_strategy = salt_strategy or DefaultSalt()
        self._init_payload = init_payload_builder or default_init_payload
        self._policy = policy
        self._journal = journal or RunJournal()

    @property
    def journal(self) -> RunJournal:
        return self._journal

    def run(self, ctx: RunContext, target: DeploymentTarget) -> DeploymentReport:
        tracker = _RunTracker(self._journal, simulation=ctx.dry_run)
        self._journal.record(
            tracker.run_id,
            JournalKind.RUN_STARTED,
            category=target.category,
            contract_name=target.contract_name,
            version=target.version,
            chain_id=ctx.chain_id,
            deployer=ctx.deployer,
            dry_run=ctx.dry_run,
        )
        logger.info(
            "[%s] %s %s on chain %d (deployer %s%s)",
            tracker.run_id, target.contract_name, target.version, ctx.chain_id,
            ctx.deployer, ", dry run" if ctx.dry_run else "",
        )

        try:
            report = self._execute(ctx, target, tracker)
        except DeploymentError as exc:
            if exc.last_step is None:
                exc.last_step = tracker.machine.current
            self._journal.record(
                tracker.run_id,
                JournalKind.RUN_FAILED,
                category=exc.category,
                error=str(exc),
                last_step=exc.last_step.value if exc.last_step else None,
                unconfirmed_tx=exc.unconfirmed_tx,
                transactions=list(tracker.transactions),
            )
            logger.error("[%s] %s", tracker.run_id, exc.describe())
            raise

        self._journal.record(
            tracker.run_id,
            JournalKind.RUN_COMPLETED,
            status=report.status.value,
            address=report.address,
            transactions=list(report.transactions),
        )
        logger.info("[%s] %s at %s", tracker.run_id, report.status.value, report.address)
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _execute(
        self,
        ctx: RunContext,
        target: DeploymentTarget,
        tracker: _RunTracker,
    ) -> DeploymentReport:
        deployer = self._authorize(ctx)
        tracker.complete(RunStep.INIT, deployer=deployer)

        decision, existing = self._registry.gate(
            target.category,
            target.contract_name,
            target.version,
            ctx.chain_id,
            force=ctx.config.force_deploy,
        )
        tracker.complete(RunStep.CHECK_EXISTING, decision=decision.value, existing=existing)

        deriver = AddressDeriver(ctx.config.factory_address)
        salt = self._salt(target, deployer)

        if decision == GateDecision.SKIP:
            return self._skip_to_verify(ctx, target, existing, salt, tracker)

        try:
            address = deriver.derive_for(salt, deployer)
        except ValueError as exc:
            raise ConfigurationError(f"Unusable salt: {exc}") from exc
        logger.info("[%s] salt 0x%s → %s", tracker.run_id, salt.hex(), address)

        payload = self._payload(ctx, target)
        if ctx.dry_run:
            return self._simulate(ctx, target, deriver, salt, address, payload, tracker)

        self._deploy(ctx, target, deriver, salt, address, payload, tracker)
        tracker.complete(RunStep.POST_INIT, address=address)

        self._verify(ctx, target, address)
        tracker.complete(RunStep.POST_VERIFY, address=address)

        contract = ctx.chain.contract(address)
        ownership = self._ownership_state(contract)
        policy = self._policy_for(ctx)
        target_owner = policy.target_owner(ctx.chain_id, deployer, ctx.config.prod_owner)
        tracker.complete(
            RunStep.OWNERSHIP_DECISION,
            current_owner=ownership.current_owner,
            target_owner=target_owner,
        )

        if policy.requires_transfer(
            ctx.chain_id, deployer, ownership.current_owner, ctx.config.prod_owner
        ):
            self._transfer(ctx, contract, target_owner, tracker)
            tracker.complete(RunStep.TRANSFER, new_owner=target_owner)

        record = DeployedRecord.create(
            chain_id=ctx.chain_id,
            category=target.category,
            contract_name=target.contract_name,
            version=target.version,
            address=address,
            tx_hash=tracker.transactions[0],
        )
        self._registry.record(record, verification=self._verification_metadata(target, deriver, salt, payload))
        tracker.complete(RunStep.PERSIST, address=address)
        tracker.complete(RunStep.DONE)

        return DeploymentReport(
            status=RunStatus.DEPLOYED,
            step=RunStep.DONE,
            chain_id=ctx.chain_id,
            address=address,
            salt=salt,
            owner=target_owner,
            record=record,
            transactions=list(tracker.transactions),
        )

    def _authorize(self, ctx: RunContext) -> str:
        if not is_address(ctx.deployer):
            raise ConfigurationError(f"Deployer {ctx.deployer!r} is not an address")
        deployer = to_checksum_address(ctx.deployer)
        if not ctx.config.is_sender_allowed(deployer):
            raise UnauthorizedSender(f"Deployer {deployer} is not in the allowed sender list")
        return deployer

    def _salt(self, target: DeploymentTarget, deployer: str) -> bytes:
        try:
            return validate_salt(self._salt_strategy(target, deployer))
        except ValueError as exc:
            raise ConfigurationError(f"Salt strategy failed: {exc}") from exc

    def _policy_for(self, ctx: RunContext) -> OwnershipPolicy:
        if self._policy is not None:
            return self._policy
        return OwnershipPolicy(ChainClassifier(ctx.config.mainnet_chain_ids))

    def _skip_to_verify(
        self,
        ctx: RunContext,
        target: DeploymentTarget,
        address: str,
        salt: bytes,
        tracker: _RunTracker,
    ) -> DeploymentReport:
        """AlreadyDeployed: no mutation, read-only checks against the recorded address."""
        logger.info(
            "[%s] %s already deployed on chain %d at %s; skipping",
            tracker.run_id, target.version, ctx.chain_id, address,
        )
        self._verify(ctx, target, address, check_state=False)
        tracker.complete(RunStep.SKIP_TO_VERIFY, address=address)
        tracker.complete(RunStep.DONE)

        try:
            owner = ctx.chain.contract(address).owner()
        except ChainError as exc:
            logger.warning("[%s] could not read owner of %s: %s", tracker.run_id, address, exc)
            owner = None
        return DeploymentReport(
            status=RunStatus.SKIPPED,
            step=RunStep.DONE,
            chain_id=ctx.chain_id,
            address=to_checksum_address(address),
            salt=salt,
            owner=owner,
            record=self._store.read_record(target.category, ctx.chain_id, target.contract_name, target.version),
        )

    def _payload(self, ctx: RunContext, target: DeploymentTarget) -> bytes:
        payload = self._init_payload(ctx, target)
        if not payload:
            raise ConfigurationError("Initializer payload is empty; refusing an uninitialized deployment")
        return payload

    def _check_unoccupied(self, ctx: RunContext, address: str) -> None:
        try:
            code = ctx.chain.get_code(address)
        except ChainError as exc:
            raise DeploymentFailed(f"Cannot inspect {address}: {exc}") from exc
        if code:
            raise DeploymentFailed(
                f"Address {address} already holds code; the factory cannot deploy there again"
            )

    def _deploy(
        self,
        ctx: RunContext,
        target: DeploymentTarget,
        deriver: AddressDeriver,
        salt: bytes,
        address: str,
        payload: bytes,
        tracker: _RunTracker,
    ) -> None:
        self._check_unoccupied(ctx, address)

        factory = ctx.chain.factory(deriver.factory)
        try:
            result = factory.deploy_and_init(salt, target.creation_code, payload, ctx.deployer)
        except TransactionReverted as exc:
            if exc.tx_hash:
                tracker.sent(exc.tx_hash)
            if exc.kind == RevertKind.INITIALIZATION:
                raise InitializationFailed(f"Atomic deploy+init reverted in initializer: {exc}") from exc
            raise DeploymentFailed(f"Factory rejected deployment: {exc}") from exc
        except TransactionUnconfirmed as exc:
            tracker.sent(exc.tx_hash)
            raise DeploymentFailed(
                f"Deployment transaction unconfirmed: {exc}", unconfirmed_tx=exc.tx_hash
            ) from exc
        except ChainError as exc:
            raise DeploymentFailed(f"Deployment transaction failed: {exc}") from exc

        tracker.sent(result.tx_hash)
        tracker.complete(RunStep.DEPLOY, tx_hash=result.tx_hash, block_number=result.block_number)

        if result.address is not None and to_checksum_address(result.address) != address:
            raise DeploymentFailed(
                f"Factory deployed to {result.address}, expected {address}",
                last_step=RunStep.DEPLOY,
            )

    def _verify(
        self,
        ctx: RunContext,
        target: DeploymentTarget,
        address: str,
        check_state: bool = True,
    ) -> None:
        """Read-only post-deploy checks. Any mismatch is fatal."""
        mismatches: list[str] = []
        try:
            if not ctx.chain.get_code(address):
                raise PostDeployVerificationFailed(
                    f"No code at {address}", mismatches=[f"{address}: no code"]
                )
            contract = ctx.chain.contract(address)

            reported = contract.version()
            if reported != target.version:
                mismatches.append(f"version() = {reported!r}, expected {target.version!r}")

            if isinstance(contract, InitGuarded) and not contract.is_initialized():
                mismatches.append("contract reports it is not initialized")

            if check_state:
                for getter, expected in target.expected_state.items():
                    actual = contract.read(getter)
                    if not _same_value(actual, expected):
                        mismatches.append(f"{getter}() = {actual!r}, expected {expected!r}")
        except ChainError as exc:
            raise PostDeployVerificationFailed(
                f"Verification reads against {address} failed: {exc}"
            ) from exc

        if mismatches:
            raise PostDeployVerificationFailed(
                f"{address} does not match the requested deployment: " + "; ".join(mismatches),
                mismatches=mismatches,
            )

    def _ownership_state(self, contract: Any) -> OwnershipState:
        try:
            return OwnershipState(
                current_owner=to_checksum_address(contract.owner()),
                pending_owner=contract.pending_owner(),
            )
        except ChainError as exc:
            raise OwnershipTransferFailed(f"Cannot read current owner: {exc}") from exc

    def _transfer(
        self,
        ctx: RunContext,
        contract: Any,
        new_owner: str,
        tracker: _RunTracker,
    ) -> None:
        try:
            result = contract.transfer_ownership(new_owner, ctx.deployer)
        except TransactionReverted as exc:
            if exc.tx_hash:
                tracker.sent(exc.tx_hash)
            raise OwnershipTransferFailed(f"transferOwnership to {new_owner} reverted: {exc}") from exc
        except TransactionUnconfirmed as exc:
            tracker.sent(exc.tx_hash)
            raise OwnershipTransferFailed(
                f"transferOwnership to {new_owner} unconfirmed: {exc}", unconfirmed_tx=exc.tx_hash
            ) from exc
        except ChainError as exc:
            raise OwnershipTransferFailed(f"transferOwnership to {new_owner} failed: {exc}") from exc
        tracker.sent(result.tx_hash)

        try:
            owner = to_checksum_address(contract.owner())
        except ChainError as exc:
            raise OwnershipTransferFailed(f"Cannot confirm new owner: {exc}") from exc
        if owner != new_owner:
            raise OwnershipTransferFailed(f"owner() = {owner} after transfer, expected {new_owner}")

    def _simulate(
        self,
        ctx: RunContext,
        target: DeploymentTarget,
        deriver: AddressDeriver,
        salt: bytes,
        address: str,
        payload: bytes,
        tracker: _RunTracker,
    ) -> DeploymentReport:
        """Dry run: eth_call the atomic deploy+init, plan the rest, persist nothing."""
        self._check_unoccupied(ctx, address)

        factory = ctx.chain.factory(deriver.factory)
        try:
            simulated = factory.simulate_deploy_and_init(salt, target.creation_code, payload, ctx.deployer)
        except TransactionReverted as exc:
            if exc.kind == RevertKind.INITIALIZATION:
                raise InitializationFailed(f"Simulated deploy+init reverted in initializer: {exc}") from exc
            raise DeploymentFailed(f"Simulated deployment rejected: {exc}") from exc
        except ChainError as exc:
            raise DeploymentFailed(f"Simulation failed: {exc}") from exc

        if to_checksum_address(simulated) != address:
            raise DeploymentFailed(f"Simulation deployed to {simulated}, expected {address}")

        tracker.planned.append(f"deployCreate3AndInit via {deriver.factory} → {address}")
        tracker.complete(RunStep.DEPLOY, simulated=True)
        tracker.complete(RunStep.POST_INIT, address=address)

        checks = [f"version() == {target.version!r}"]
        checks.extend(f"{g}() == {v!r}" for g, v in target.expected_state.items())
        tracker.planned.append("verify " + ", ".join(checks))
        tracker.complete(RunStep.POST_VERIFY, simulated=True)

        policy = self._policy_for(ctx)
        target_owner = policy.target_owner(ctx.chain_id, ctx.deployer, ctx.config.prod_owner)
        if policy.requires_transfer(ctx.chain_id, ctx.deployer, ctx.deployer, ctx.config.prod_owner):
            tracker.planned.append(f"transferOwnership({target_owner})")
        tracker.complete(RunStep.OWNERSHIP_DECISION, target_owner=target_owner)
        tracker.complete(RunStep.DONE)

        return DeploymentReport(
            status=RunStatus.SIMULATED,
            step=RunStep.DONE,
            chain_id=ctx.chain_id,
            address=address,
            salt=salt,
            owner=target_owner,
            planned=list(tracker.planned),
        )

    def _verification_metadata(
        self,
        target: DeploymentTarget,
        deriver: AddressDeriver,
        salt: bytes,
        payload: bytes,
    ) -> dict[str, Any]:
        """Explorer verification inputs, built from the calldata actually sent."""
        return {
            "factory": deriver.factory,
            "salt": "0x" + salt.hex(),
            "creation_code_hash": "0x" + keccak(target.creation_code).hex(),
            "constructor_args": "0x",
            "init_calldata": "0x" + payload.hex(),
            "init_args_encoded": "0x" + payload[4:].hex(),
            "init_args": dict(target.init_args),
        }
