"""Evidence records produced by collaborators and persisted per segment.

These are the shapes stored under ``deploys/{env}/{name}/{i}/*.json``.
They double as the return types of the collaborator protocols so that
what a signer or runner reports is exactly what gets committed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import Field

from deployforge.models.deploy import DocumentModel
from deployforge.models.environment import DeployedContract


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScriptRun(DocumentModel):
    """Outcome of running a script or its test suite."""

    success: bool
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    date: str = Field(default_factory=_now)
    structured_output: dict[str, Any] | None = None


class StateUpdate(DocumentModel):
    """An environment parameter change declared by a signing run."""

    name: str
    value: Any
    internal_type: str | None = None


class ImmediateExecution(DocumentModel):
    """Result of a strategy that executed a multisig proposal on the spot."""

    success: bool
    transaction: str | None = None


class SigningResult(DocumentModel):
    """What a signing strategy reports after ``request_new``.

    EOA strategies fill ``transactions``; multisig strategies fill
    ``proposal_hash`` and ``multisig``. A result with neither is empty:
    the script produced nothing to confirm.
    """

    ready: bool = True
    signer: str = ""
    transactions: list[str] = []
    deployed_contracts: list[DeployedContract] = []
    state_mutations: list[StateUpdate] = []
    proposal_hash: str | None = None
    multisig: str | None = None
    immediate_execution: ImmediateExecution | None = None
    raw_output: dict[str, Any] | None = None

    @property
    def is_empty(self) -> bool:
        return not self.transactions and not self.deployed_contracts and not self.proposal_hash


class TransactionReceipt(DocumentModel):
    transaction_hash: str
    status: Literal["success", "reverted"]
    block_number: int | None = None


class MultisigTransactionStatus(DocumentModel):
    """Multisig service view of a proposal."""

    proposal_hash: str
    confirmations: int = 0
    confirmations_required: int = 1
    is_executed: bool = False
    is_successful: bool | None = None
    transaction_hash: str | None = None
    execution_date: str | None = None
    share_url: str | None = None

    @property
    def has_quorum(self) -> bool:
        return self.confirmations >= self.confirmations_required
