"""JSON-RPC ``ChainClient`` over ``httpx``."""

from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from deployforge.models.runs import TransactionReceipt

logger = logging.getLogger(__name__)


class ChainRPCError(RuntimeError):
    """The RPC endpoint returned an error or was unreachable."""


class JsonRpcChainClient:
    """Receipt lookups via ``eth_getTransactionReceipt``.

    Parameters
    ----------
    rpc_url:
        HTTP JSON-RPC endpoint.
    transport:
        Optional ``httpx`` transport, used by tests.
    """

    DEFAULT_TIMEOUT = 15.0

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._ids = itertools.count(1)
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._http.post(self.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChainRPCError(f"{method} failed: {exc}") from exc
        body = response.json()
        if body.get("error"):
            raise ChainRPCError(f"{method} failed: {body['error']}")
        return body.get("result")

    def get_transaction_receipt(self, transaction_hash: str) -> TransactionReceipt | None:
        result = self._call("eth_getTransactionReceipt", [transaction_hash])
        if result is None:
            return None
        block = result.get("blockNumber")
        return TransactionReceipt(
            transaction_hash=result.get("transactionHash", transaction_hash),
            status="success" if int(result.get("status", "0x0"), 16) == 1 else "reverted",
            block_number=int(block, 16) if block else None,
        )
