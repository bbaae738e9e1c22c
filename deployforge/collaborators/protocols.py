"""Protocols for the external collaborators a deploy step calls out to.

The engine never signs, broadcasts, or runs contract tooling itself. It
drives these narrow interfaces and records what they report:

``ScriptRunner``
    Runs upgrade scripts and their tests.
``SigningStrategy``
    Produces signed transactions (EOA) or multisig proposals for a script.
``ChainClient``
    Looks up transaction receipts.
``MultisigService``
    Reports confirmation/execution status of a multisig proposal.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from deployforge.models.deploy import Deploy
from deployforge.models.runs import (
    MultisigTransactionStatus,
    ScriptRun,
    SigningResult,
    TransactionReceipt,
)


@runtime_checkable
class ScriptRunner(Protocol):
    def run(self, script: Path, args: list[str], env: dict[str, str]) -> ScriptRun:
        """Execute ``script`` with extra CLI ``args`` and ``env`` overlaid.

        A non-zero exit is reported as ``success=False``, never raised.
        """
        ...

    def test(self, script: Path, env: dict[str, str]) -> ScriptRun:
        """Run the script's test suite without broadcasting anything."""
        ...


@runtime_checkable
class SigningStrategy(Protocol):
    """Turns an upgrade script into signed work.

    ``id`` names the strategy in evidence records (``signerType``).
    """

    id: str

    def request_new(self, script: Path, deploy: Deploy) -> SigningResult:
        ...

    def cancel(self, deploy: Deploy) -> str | None:
        """Supersede an outstanding proposal. Returns the cancelling tx hash."""
        ...


@runtime_checkable
class ChainClient(Protocol):
    def get_transaction_receipt(self, transaction_hash: str) -> TransactionReceipt | None:
        """Return the receipt, or ``None`` while the transaction is unmined."""
        ...


@runtime_checkable
class MultisigService(Protocol):
    def get_transaction(self, proposal_hash: str) -> MultisigTransactionStatus:
        ...
