"""System handler: deploy start and the three terminal phases.

Reaching a terminal phase does not finish a deploy by itself; the next
step through this handler folds its results into the environment (on
``complete``) and clears the in-progress pointer.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from deployforge.collaborators.options import StrategyOptions
from deployforge.core.document_store import Document, Transaction
from deployforge.core.errors import (
    DeployAlreadyFinalizedError,
    DeployInProgressError,
    HaltDeployError,
)
from deployforge.core.paths import canonical_paths
from deployforge.core.phase_machine import advance, is_terminal_phase
from deployforge.handlers.base import PhaseHandler
from deployforge.models.deploy import Deploy, DeployManifest, DeployPhase, SegmentType
from deployforge.models.environment import (
    DeployedContractsManifest,
    DeployStateMutations,
    EnvironmentManifest,
)
from deployforge.models.upgrade import Upgrade

logger = logging.getLogger(__name__)


def set_in_progress_deploy(txn: Transaction, env: str, name: str | None) -> None:
    """Point the environment at ``name``, or clear the pointer with ``None``.

    Raises ``DeployInProgressError`` when a different deploy already holds it.
    """
    document = txn.get_document(canonical_paths.deploys_manifest(env), DeployManifest, optional=True)
    manifest: DeployManifest = document.data
    active = manifest.in_progress_deploy
    if name is not None and active and active != name:
        raise DeployInProgressError(env, active)
    manifest.in_progress_deploy = name
    document.save()


class SystemHandler(PhaseHandler):
    segment_type: ClassVar[SegmentType] = SegmentType.SYSTEM

    def execute(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        phase = DeployPhase(record.phase)

        if phase == DeployPhase.NONE:
            advance(record)
            set_in_progress_deploy(txn, record.env, record.name)
            self.save_and_commit(deploy, txn, "started")
        elif phase == DeployPhase.COMPLETE:
            self._complete(deploy, txn)
        else:
            if record.end_time is None:
                record.mark_ended()
            set_in_progress_deploy(txn, record.env, None)
            deploy.save()
            txn.commit(f"Deploy {record.name} {record.phase_name}.")
            logger.warning("Deploy %s finished as %s", record.name, record.phase_name)

    def cancel(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        if is_terminal_phase(record.phase):
            raise DeployAlreadyFinalizedError(
                record, f"Deploy {record.name} is already {record.phase_name}."
            )

    def _complete(self, deploy: Document[Deploy], txn: Transaction) -> None:
        record = deploy.data
        manifest_doc = txn.get_document(
            canonical_paths.environment_manifest(record.env), EnvironmentManifest, optional=True
        )
        manifest: EnvironmentManifest = manifest_doc.data
        if not manifest.id:
            raise HaltDeployError(record, f"Environment manifest for {record.env!r} is corrupted.")

        mutations: DeployStateMutations = txn.get_document(
            canonical_paths.state_mutations(record.env, record.name),
            DeployStateMutations,
            optional=True,
        ).data
        if mutations.mutations:
            parameters = txn.get_document(canonical_paths.deploy_parameters(record.env), optional=True)
            parameters.data = {
                **(parameters.data or {}),
                **{mutation.name: mutation.next for mutation in mutations.mutations},
            }
            parameters.save()
            logger.info("Updated %d environment parameter(s)", len(mutations.mutations))

        deployed: DeployedContractsManifest = txn.get_document(
            canonical_paths.deployed_contracts(record.env, record.name),
            DeployedContractsManifest,
            optional=True,
        ).data
        for contract in deployed.contracts:
            if contract.singleton:
                previous = manifest.contracts.static.get(contract.contract)
                if previous is None or previous.address != contract.address:
                    logger.info(
                        "%s: %s -> %s",
                        contract.contract,
                        previous.address if previous else "<none>",
                        contract.address,
                    )
                manifest.contracts.static[contract.contract] = contract
            else:
                manifest.contracts.instances.append(contract)

        set_in_progress_deploy(txn, record.env, None)

        upgrade_doc = txn.get_document(
            canonical_paths.upgrade_manifest(record.upgrade), Upgrade, optional=True
        )
        if not upgrade_doc.exists:
            raise HaltDeployError(record, f"No upgrade manifest for {record.upgrade!r} found.")
        upgrade: Upgrade = upgrade_doc.data
        manifest.deployed_version = upgrade.to
        manifest.latest_deployed_commit = upgrade.commit

        manifest_doc.save()
        deploy.save()
        txn.commit(f"Deploy {record.name} completed!")
        logger.info("Deploy %s completed; %s is now at %s", record.name, record.env, upgrade.to)
