"""Signing strategy that delegates to the upgrade script itself.

The script is run in signing mode and must print one JSON object
describing what it did, for example::

    {
      "signer": "0xabc...",
      "transactions": ["0x01..."],
      "deployedContracts": [{"contract": "Vault", "address": "0x..", "singleton": true}],
      "stateMutations": [{"name": "vault", "value": "0x.."}],
      "proposalHash": null,
      "multisig": null
    }

Key management stays entirely inside the script's own tooling.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from deployforge.collaborators.protocols import ScriptRunner
from deployforge.models.deploy import Deploy
from deployforge.models.runs import SigningResult

logger = logging.getLogger(__name__)


class SigningError(RuntimeError):
    """The signing script failed or reported something unreadable."""


class ScriptSigningStrategy:
    """``SigningStrategy`` backed by a ``ScriptRunner``.

    Parameters
    ----------
    runner:
        Executes the script.
    strategy_id:
        Identifier recorded as the signer type (``"script.eoa"``...).
    mode:
        Passed to the script as ``DF_SIGNING_MODE``.
    env:
        Extra variables for every invocation (RPC URL, key references).
    """

    def __init__(
        self,
        runner: ScriptRunner,
        strategy_id: str = "script",
        *,
        mode: str = "eoa",
        env: dict[str, str] | None = None,
    ) -> None:
        self.id = strategy_id
        self._runner = runner
        self._mode = mode
        self._env = dict(env or {})

    def _env_for(self, deploy: Deploy) -> dict[str, str]:
        return {
            **self._env,
            "DF_SIGNING_MODE": self._mode,
            "DF_DEPLOY_NAME": deploy.name,
            "DF_DEPLOY_SEGMENT": str(deploy.segment_id),
            "DF_CHAIN_ID": str(deploy.chain_id),
        }

    def request_new(self, script: Path, deploy: Deploy) -> SigningResult:
        run = self._runner.run(script, ["--sign"], self._env_for(deploy))
        if not run.success:
            raise SigningError(f"{script} exited with {run.exit_code}: {run.stderr.strip()}")
        if run.structured_output is None:
            raise SigningError(f"{script} did not print a JSON signing result")
        try:
            result = SigningResult.model_validate(run.structured_output)
        except ValidationError as exc:
            raise SigningError(f"{script} printed an invalid signing result: {exc}") from exc
        return result.model_copy(update={"raw_output": run.structured_output})

    def cancel(self, deploy: Deploy) -> str | None:
        segment = deploy.current_segment
        if segment is None:
            return None
        script = Path(deploy.upgrade_path) / segment.filename
        run = self._runner.run(script, ["--cancel"], self._env_for(deploy))
        if not run.success:
            raise SigningError(f"Cancelling via {script} failed: {run.stderr.strip()}")
        output = run.structured_output or {}
        cancellation = output.get("cancellationTransactionHash")
        logger.info("Submitted cancellation for %s: %s", deploy.name, cancellation)
        return cancellation
