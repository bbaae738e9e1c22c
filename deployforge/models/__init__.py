"""Deployforge data models — all Pydantic v2, serialized with camelCase keys."""

from deployforge.models.deploy import (
    Deploy,
    DeployLock,
    DeployManifest,
    DeployPhase,
    DocumentModel,
    EOAMetadata,
    MultisigMetadata,
    ScriptArgument,
    Segment,
    SegmentMetadata,
    SegmentType,
)
from deployforge.models.environment import (
    DeployedContract,
    DeployedContractsManifest,
    DeployStateMutations,
    EnvironmentContracts,
    EnvironmentManifest,
    LastUpdatedIn,
    Mutation,
)
from deployforge.models.runs import (
    ImmediateExecution,
    MultisigTransactionStatus,
    ScriptRun,
    SigningResult,
    StateUpdate,
    TransactionReceipt,
)
from deployforge.models.upgrade import Upgrade, UpgradePhase

__all__ = [
    # deploy
    "DocumentModel",
    "Deploy",
    "DeployPhase",
    "SegmentType",
    "Segment",
    "ScriptArgument",
    "SegmentMetadata",
    "EOAMetadata",
    "MultisigMetadata",
    "DeployManifest",
    "DeployLock",
    # environment
    "EnvironmentManifest",
    "EnvironmentContracts",
    "DeployedContract",
    "DeployedContractsManifest",
    "LastUpdatedIn",
    "Mutation",
    "DeployStateMutations",
    # runs
    "ScriptRun",
    "SigningResult",
    "StateUpdate",
    "ImmediateExecution",
    "TransactionReceipt",
    "MultisigTransactionStatus",
    # upgrades
    "Upgrade",
    "UpgradePhase",
]
