"""Externally-owned-account segments: sign and broadcast, then confirm.

Phases: ``eoa_start`` -> ``eoa_wait_confirm`` -> next segment.

Once broadcast, EOA transactions cannot be recalled, so cancelling an
EOA segment needs no compensating action.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from deployforge.collaborators.options import StrategyOptions
from deployforge.collaborators.signing import SigningError
from deployforge.core.document_store import Document, Transaction
from deployforge.core.errors import HaltDeployError
from deployforge.core.paths import canonical_paths
from deployforge.core.phase_machine import advance, advance_segment
from deployforge.handlers.base import PhaseHandler
from deployforge.handlers.confirmations import wait_for_receipts
from deployforge.models.deploy import Deploy, DeployPhase, EOAMetadata, SegmentType

logger = logging.getLogger(__name__)


class EOAHandler(PhaseHandler):
    segment_type: ClassVar[SegmentType] = SegmentType.EOA

    def execute(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        if deploy.data.phase == DeployPhase.EOA_START:
            self._start(deploy, txn, options)
        else:
            self._wait_confirm(deploy, txn, options)

    def _start(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        script = self.script_path(record)
        if not script.exists():
            raise HaltDeployError(record, f"Missing expected script: {script}.")

        signer = options.signer_for(SegmentType.EOA)
        if signer is None:
            raise HaltDeployError(
                record, "This phase requires an EOA signing strategy (--signing-strategy)."
            )
        try:
            result = signer.request_new(script, record)
        except SigningError as exc:
            raise HaltDeployError(record, f"Signing failed: {exc}.") from exc

        if not result.ready:
            raise HaltDeployError(record, "Signing strategy reported ready=false. Please try again.")

        record.set_current_metadata(
            EOAMetadata(
                signer=result.signer,
                transactions=list(result.transactions),
                deployments=[contract.to_document() for contract in result.deployed_contracts],
                confirmed=False,
            )
        )

        run = txn.get_document(
            canonical_paths.eoa_run(record.env, record.name, record.segment_id), optional=True
        )
        run.data = result
        run.save()

        contracts = self.record_deployed_contracts(
            txn, record, result.deployed_contracts, result.signer
        )
        mutations = self.record_state_mutations(txn, record, result.state_mutations)
        logger.info(
            "Recorded %d contract(s) and %d mutation(s) for %s",
            len(contracts), len(mutations), record.name,
        )

        if result.is_empty:
            # Nothing was broadcast, so there is nothing to confirm.
            advance_segment(record)
            self.save_and_commit(deploy, txn, "eoa segment produced no transactions")
            return

        advance(record)
        self.save_and_commit(deploy, txn, "eoa transaction")

    def _wait_confirm(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        metadata = record.current_metadata
        if not isinstance(metadata, EOAMetadata):
            raise HaltDeployError(record, "EOA segment metadata is missing or corrupted.")

        if metadata.transactions:
            receipts = wait_for_receipts(record, metadata.transactions, options)
            reverted = [r.transaction_hash for r in receipts if r.status != "success"]
            if reverted:
                record.phase = DeployPhase.FAILED
                record.mark_ended()
                self.save_and_commit(deploy, txn, "eoa transaction reverted")
                raise HaltDeployError(
                    record, f"Transaction(s) reverted onchain: {', '.join(reverted)}."
                )

        metadata.confirmed = True
        advance(record)
        self.save_and_commit(deploy, txn, "eoa transaction confirmed")
