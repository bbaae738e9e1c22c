"""Abstract phase handler with an enforced step lifecycle.

Every segment kind has one handler implementing ``execute()`` (and
optionally ``cancel()``). The ``run_step()`` wrapper is **not
overridable**: it checks that the deploy's phase belongs to the handler
before dispatching, so a handler can never be driven from a phase it does
not own.

A single ``execute()`` call is one phase step:

    validate preconditions -> one unit of external work -> write evidence
        -> advance -> save deploy -> commit

Steps halt or pause by raising ``HaltDeployError``/``PauseDeployError``.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import ClassVar, final

from deployforge.collaborators.options import StrategyOptions
from deployforge.core.document_store import CommitResult, Document, Transaction
from deployforge.core.environment import injectable_environment, parameter_variable
from deployforge.core.errors import HaltDeployError, UnknownPhaseError
from deployforge.core.paths import canonical_paths
from deployforge.core.phase_machine import phase_segment_type
from deployforge.models.deploy import Deploy, SegmentType
from deployforge.models.environment import (
    DeployedContract,
    DeployedContractsManifest,
    DeployStateMutations,
    LastUpdatedIn,
    Mutation,
)
from deployforge.models.runs import StateUpdate

logger = logging.getLogger(__name__)


class PhaseHandler(abc.ABC):
    """Base for the eoa, multisig, script and system handlers.

    Subclasses **must** set ``segment_type`` and implement ``execute``.
    Subclasses **may** override ``cancel``; the default has nothing to undo.
    """

    segment_type: ClassVar[SegmentType]

    # ------------------------------------------------------------------
    # Interface
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def execute(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        """Run one phase step for the deploy's current phase."""
        ...

    def cancel(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        """Compensate for outstanding external work before a cancel."""
        return None

    @final
    def run_step(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        try:
            owner = phase_segment_type(record.phase)
        except ValueError:
            raise UnknownPhaseError(
                record, f"Deploy is in unknown phase: {record.phase!r}"
            ) from None
        if owner != self.segment_type:
            raise UnknownPhaseError(
                record,
                f"{type(self).__name__} cannot run phase {record.phase_name!r}",
            )
        logger.debug(
            "%s handling %s at [%d] %s",
            type(self).__name__, record.name, record.segment_id, record.phase_name,
        )
        self.execute(deploy, txn, options)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def script_path(record: Deploy) -> Path:
        segment = record.current_segment
        if segment is None:
            raise HaltDeployError(record, f"Deploy has no segment {record.segment_id}.")
        return canonical_paths.script_location(record.upgrade_path, segment.filename)

    @staticmethod
    def save_and_commit(
        deploy: Document[Deploy], txn: Transaction, message: str
    ) -> CommitResult:
        deploy.save()
        return txn.commit(f"[deploy {deploy.data.name}] {message}")

    @staticmethod
    def record_state_mutations(
        txn: Transaction, record: Deploy, updates: list[StateUpdate]
    ) -> list[Mutation]:
        """Append parameter changes, capturing each parameter's current value as ``prev``."""
        if not updates:
            return []
        current = injectable_environment(txn, record.env, record)
        document = txn.get_document(
            canonical_paths.state_mutations(record.env, record.name),
            DeployStateMutations,
            optional=True,
        )
        added = [
            Mutation(
                name=update.name,
                prev=current.get(parameter_variable(update.name)),
                next=update.value,
                internal_type=update.internal_type,
            )
            for update in updates
        ]
        document.data.mutations.extend(added)
        document.save()
        return added

    @staticmethod
    def record_deployed_contracts(
        txn: Transaction, record: Deploy, contracts: list[DeployedContract], signer: str
    ) -> list[DeployedContract]:
        """Append contracts to the deploy's manifest, stamped with where they came from."""
        if not contracts:
            return []
        stamp = LastUpdatedIn(
            name=record.name,
            phase=record.phase_name,
            segment=record.segment_id,
            signer=signer,
        )
        stamped = [contract.model_copy(update={"last_updated_in": stamp}) for contract in contracts]
        document = txn.get_document(
            canonical_paths.deployed_contracts(record.env, record.name),
            DeployedContractsManifest,
            optional=True,
        )
        document.data.contracts.extend(stamped)
        document.save()
        return stamped
