"""Multisig segments: propose, gather signatures, execute, confirm.

Phases::

    multisig_start -> multisig_wait_signers -> multisig_execute
        -> multisig_wait_confirm -> next segment

Waiting on co-signers or on the execution itself pauses the deploy
rather than blocking; the operator re-runs once the multisig moves.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from deployforge.collaborators.options import StrategyOptions
from deployforge.collaborators.protocols import MultisigService, SigningStrategy
from deployforge.collaborators.signing import SigningError
from deployforge.core.document_store import Document, Transaction
from deployforge.core.environment import injectable_environment
from deployforge.core.errors import HaltDeployError, PauseDeployError
from deployforge.core.paths import canonical_paths
from deployforge.core.phase_machine import advance, advance_segment
from deployforge.handlers.base import PhaseHandler
from deployforge.handlers.confirmations import wait_for_receipts
from deployforge.models.deploy import Deploy, DeployPhase, MultisigMetadata, SegmentType
from deployforge.models.runs import MultisigTransactionStatus

logger = logging.getLogger(__name__)

# Cancellable phases with a live proposal that a cancel must void onchain.
_CANCELLABLE_WITH_PROPOSAL = frozenset(
    {
        DeployPhase.MULTISIG_WAIT_SIGNERS,
        DeployPhase.MULTISIG_EXECUTE,
    }
)


class MultisigHandler(PhaseHandler):
    segment_type: ClassVar[SegmentType] = SegmentType.MULTISIG

    def execute(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        phase = DeployPhase(deploy.data.phase)
        if phase == DeployPhase.MULTISIG_START:
            self._start(deploy, txn, options)
        elif phase == DeployPhase.MULTISIG_WAIT_SIGNERS:
            self._wait_signers(deploy, txn, options)
        elif phase == DeployPhase.MULTISIG_EXECUTE:
            self._execute(deploy, txn, options)
        else:
            self._wait_confirm(deploy, txn, options)

    def cancel(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        metadata = record.current_metadata
        if DeployPhase(record.phase) not in _CANCELLABLE_WITH_PROPOSAL:
            return
        if not isinstance(metadata, MultisigMetadata) or not metadata.gnosis_transaction_hash:
            return
        if metadata.confirmed:
            return

        signer = self._signer(record, options)
        try:
            cancellation = signer.cancel(record)
        except SigningError as exc:
            raise HaltDeployError(record, f"Could not cancel the multisig proposal: {exc}.") from exc
        metadata.cancellation_transaction_hash = cancellation
        deploy.save()
        logger.info(
            "Voided proposal %s for %s with %s",
            metadata.gnosis_transaction_hash, record.name, cancellation,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _start(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        script = self.script_path(record)
        if not script.exists():
            raise HaltDeployError(record, f"Missing expected script: {script}.")
        signer = self._signer(record, options)

        if options.run_tests and options.script_runner is not None:
            env = {**options.default_env(), **injectable_environment(txn, record.env, record)}
            test_run = options.script_runner.test(script, env)
            test_doc = txn.get_document(
                canonical_paths.test_run(record.env, record.name, record.segment_id), optional=True
            )
            test_doc.data = test_run
            test_doc.save()
            if not test_run.success:
                self.save_and_commit(deploy, txn, f"[fail] tests for {script.name}")
                raise HaltDeployError(record, f"Tests for {script.name} failed.")

        try:
            result = signer.request_new(script, record)
        except SigningError as exc:
            raise HaltDeployError(record, f"Signing failed: {exc}.") from exc
        if not result.ready:
            raise HaltDeployError(record, "Signing strategy reported ready=false. Please try again.")

        metadata = MultisigMetadata(
            signer=result.signer,
            signer_type=signer.id,
            multisig=result.multisig or "",
            gnosis_transaction_hash=result.proposal_hash,
            confirmed=False,
        )
        record.set_current_metadata(metadata)

        run = txn.get_document(
            canonical_paths.multisig_run(record.env, record.name, record.segment_id), optional=True
        )
        run.data = result
        run.save()
        self.record_state_mutations(txn, record, result.state_mutations)
        self.record_deployed_contracts(txn, record, result.deployed_contracts, result.signer)

        immediate = result.immediate_execution
        if immediate is not None:
            if not immediate.success:
                self.save_and_commit(deploy, txn, "multisig immediate execution failed")
                raise HaltDeployError(record, "The multisig transaction failed to execute immediately.")
            metadata.confirmed = True
            metadata.immediate_execution_hash = immediate.transaction
            advance_segment(record)
            self.save_and_commit(deploy, txn, "multisig executed immediately")
            return

        if not result.proposal_hash:
            advance_segment(record)
            self.save_and_commit(deploy, txn, "multisig segment produced no proposal")
            return

        advance(record)
        self.save_and_commit(deploy, txn, f"multisig proposal {result.proposal_hash}")

    def _wait_signers(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        status = self._status(record, options)
        if not status.has_quorum:
            where = f" Share with signers: {status.share_url}" if status.share_url else ""
            raise PauseDeployError(
                record,
                f"Waiting for signers ({status.confirmations}/{status.confirmations_required}).{where}",
            )
        advance(record)
        self.save_and_commit(deploy, txn, "multisig quorum reached")

    def _execute(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        status = self._status(record, options)
        evidence = txn.get_document(
            canonical_paths.multisig_transaction(record.env, record.name, record.segment_id),
            optional=True,
        )
        evidence.data = status
        evidence.save()

        if not status.is_executed:
            self.save_and_commit(deploy, txn, "multisig awaiting execution")
            raise PauseDeployError(record, "Waiting for the multisig transaction to be executed.")

        if status.is_successful is False:
            record.phase = DeployPhase.FAILED
            record.mark_ended()
            self.save_and_commit(deploy, txn, "multisig execution failed")
            raise HaltDeployError(record, "The multisig transaction reverted during execution.")

        advance(record)
        self.save_and_commit(deploy, txn, "multisig executed")

    def _wait_confirm(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        metadata = self._metadata(record)
        evidence = txn.get_document(
            canonical_paths.multisig_transaction(record.env, record.name, record.segment_id),
            MultisigTransactionStatus,
            optional=True,
        )
        status: MultisigTransactionStatus | None = evidence.data
        if not evidence.exists or status is None or not status.transaction_hash:
            raise HaltDeployError(record, "No executed multisig transaction is on record.")

        (receipt,) = wait_for_receipts(record, [status.transaction_hash], options)
        if receipt.status != "success":
            record.phase = DeployPhase.FAILED
            record.mark_ended()
            self.save_and_commit(deploy, txn, "multisig transaction reverted")
            raise HaltDeployError(
                record, f"Multisig transaction {receipt.transaction_hash} reverted onchain."
            )

        metadata.confirmed = True
        advance(record)
        self.save_and_commit(deploy, txn, "multisig transaction confirmed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _signer(record: Deploy, options: StrategyOptions) -> SigningStrategy:
        signer = options.signer_for(SegmentType.MULTISIG)
        if signer is None:
            raise HaltDeployError(
                record, "This phase requires a multisig signing strategy (--signing-strategy)."
            )
        return signer

    @staticmethod
    def _metadata(record: Deploy) -> MultisigMetadata:
        metadata = record.current_metadata
        if not isinstance(metadata, MultisigMetadata):
            raise HaltDeployError(record, "Multisig segment metadata is missing or corrupted.")
        return metadata

    def _status(self, record: Deploy, options: StrategyOptions) -> MultisigTransactionStatus:
        metadata = self._metadata(record)
        if not metadata.gnosis_transaction_hash:
            raise HaltDeployError(record, "Multisig segment has no proposal hash on record.")
        service: MultisigService | None = options.multisig_client()
        if service is None:
            raise HaltDeployError(record, "This phase needs a multisig service; pass --safe-url.")
        return service.get_transaction(metadata.gnosis_transaction_hash)
