"""Safe transaction-service ``MultisigService`` over ``httpx``."""

from __future__ import annotations

import logging

import httpx

from deployforge.models.runs import MultisigTransactionStatus

logger = logging.getLogger(__name__)


class MultisigServiceError(RuntimeError):
    pass


class SafeTransactionService:
    """Reads proposal status from a Safe transaction service.

    Parameters
    ----------
    base_url:
        Service root, e.g. ``https://safe-transaction-mainnet.safe.global``.
    queue_url:
        Optional template for the signer-facing queue page; ``{safe}`` is
        replaced with the multisig address.
    transport:
        Optional ``httpx`` transport, used by tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        queue_url: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.queue_url = queue_url
        self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def get_transaction(self, proposal_hash: str) -> MultisigTransactionStatus:
        try:
            response = self._http.get(f"/api/v1/multisig-transactions/{proposal_hash}/")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MultisigServiceError(f"Could not fetch proposal {proposal_hash}: {exc}") from exc

        body = response.json()
        safe = body.get("safe", "")
        return MultisigTransactionStatus(
            proposal_hash=proposal_hash,
            confirmations=len(body.get("confirmations") or []),
            confirmations_required=body.get("confirmationsRequired") or 1,
            is_executed=bool(body.get("isExecuted")),
            is_successful=body.get("isSuccessful"),
            transaction_hash=body.get("transactionHash"),
            execution_date=body.get("executionDate"),
            share_url=self.queue_url.format(safe=safe) if self.queue_url else None,
        )
