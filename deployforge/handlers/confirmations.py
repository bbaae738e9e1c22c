"""Bounded receipt polling shared by the confirmation phases."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from deployforge.collaborators.options import StrategyOptions
from deployforge.core.errors import HaltDeployError, PauseDeployError
from deployforge.models.deploy import Deploy
from deployforge.models.runs import TransactionReceipt

logger = logging.getLogger(__name__)


def wait_for_receipts(
    record: Deploy, hashes: Sequence[str], options: StrategyOptions
) -> list[TransactionReceipt]:
    """Poll until every transaction has a receipt.

    Makes at most ``options.confirm_max_attempts`` passes with
    ``options.confirm_delay_seconds`` between them. Running out of
    attempts pauses the deploy; the next invocation polls again from
    scratch. Receipts are returned in the order of ``hashes`` and may
    include reverted ones; judging them is the caller's job.
    """
    chain = options.chain_client()
    if chain is None:
        raise HaltDeployError(record, "This phase needs a chain client; pass --rpc-url.")

    pending = list(dict.fromkeys(hashes))
    receipts: dict[str, TransactionReceipt] = {}
    attempts = max(options.confirm_max_attempts, 1)

    for attempt in range(1, attempts + 1):
        for transaction_hash in list(pending):
            receipt = chain.get_transaction_receipt(transaction_hash)
            if receipt is not None:
                receipts[transaction_hash] = receipt
                pending.remove(transaction_hash)
        if not pending:
            return [receipts[h] for h in hashes]
        logger.info(
            "%d transaction(s) not mined yet (attempt %d/%d)", len(pending), attempt, attempts
        )
        if attempt < attempts:
            options.sleep(options.confirm_delay_seconds)

    raise PauseDeployError(
        record,
        f"Still waiting for {len(pending)} transaction(s) to be mined: {', '.join(pending)}.",
    )
