"""Advisory deploy lock, one per environment.

The lock is a JSON document, not a true mutex: two operators reading an
unheld lock at the same instant may both try to take it, and the store's
optimistic commit lets only one of them land. Abandoned locks expire
after a short TTL and may then be taken over, with a loud warning.

``decide_acquire`` is pure and returns a tagged ``LockDecision``; the
``acquire_lock``/``release_lock`` helpers apply that decision to the lock
document inside a caller-owned transaction. They never commit, and they
never print; rendering the decision is the caller's job.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict

from deployforge.core.document_store import Document, Transaction
from deployforge.core.paths import canonical_paths
from deployforge.models.deploy import Deploy, DeployLock

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_MS = 5 * 60 * 1000


class LockDecisionKind(str, Enum):
    EMPTY = "empty"
    OWN = "own"
    STALE_TAKEOVER = "stale_takeover"
    FOREIGN = "foreign"


class LockDecision(BaseModel):
    """Outcome of evaluating a lock acquisition request."""

    model_config = ConfigDict(frozen=True)

    kind: LockDecisionKind
    previous_holder: str | None = None
    previous_description: str | None = None
    previous_until_ms: int | None = None

    @property
    def acquired(self) -> bool:
        return self.kind != LockDecisionKind.FOREIGN


def now_ms() -> int:
    return int(time.time() * 1000)


def lock_description(deploy: Deploy) -> str:
    return f"Deploy {deploy.name} - {deploy.segment_id}/{deploy.phase_name}"


def decide_acquire(lock: DeployLock, holder: str, current_ms: int) -> LockDecision:
    """Classify an acquisition request without side effects.

    The checks run in order: unheld, expired, held by ``holder``, held by
    someone else. An expired lock is reclaimable even by its own holder.
    """
    previous = {
        "previous_holder": lock.holder,
        "previous_description": lock.description,
        "previous_until_ms": lock.until_timestamp_ms,
    }
    if not lock.holder:
        return LockDecision(kind=LockDecisionKind.EMPTY, **previous)
    if lock.until_timestamp_ms is not None and lock.until_timestamp_ms < current_ms:
        return LockDecision(kind=LockDecisionKind.STALE_TAKEOVER, **previous)
    if lock.holder == holder:
        return LockDecision(kind=LockDecisionKind.OWN, **previous)
    return LockDecision(kind=LockDecisionKind.FOREIGN, **previous)


def load_lock(txn: Transaction, env: str) -> Document[DeployLock]:
    return txn.get_document(canonical_paths.deploy_lock(env), DeployLock, optional=True)


def acquire_lock(
    txn: Transaction,
    deploy: Deploy,
    holder: str,
    *,
    current_ms: int | None = None,
    ttl_ms: int = DEFAULT_LOCK_TTL_MS,
) -> LockDecision:
    """Take (or refresh) the environment lock for ``deploy``.

    Re-acquiring a lock you already hold refreshes its expiry, so a long
    deploy that keeps stepping never silently loses its lock. A foreign
    holder leaves the document untouched and yields ``acquired=False``.
    """
    current_ms = now_ms() if current_ms is None else current_ms
    document = load_lock(txn, deploy.env)
    decision = decide_acquire(document.data, holder, current_ms)

    if decision.kind == LockDecisionKind.FOREIGN:
        logger.info(
            "Lock for %s held by %s until %s", deploy.env, decision.previous_holder,
            decision.previous_until_ms,
        )
        return decision

    if decision.kind == LockDecisionKind.STALE_TAKEOVER:
        logger.warning(
            "Taking over stale lock for %s from %s (%s), expired at %s",
            deploy.env,
            decision.previous_holder,
            decision.previous_description,
            decision.previous_until_ms,
        )

    document.data = DeployLock(
        holder=holder,
        description=lock_description(deploy),
        until_timestamp_ms=current_ms + ttl_ms,
    )
    document.save()
    return decision


def release_lock(txn: Transaction, deploy: Deploy, holder: str) -> bool:
    """Clear the lock if ``holder`` owns it. Returns whether it was released."""
    document = load_lock(txn, deploy.env)
    lock = document.data
    if lock.holder != holder:
        logger.warning(
            "Refusing to release lock for %s: held by %s, not %s",
            deploy.env, lock.holder, holder,
        )
        return False

    document.data = DeployLock()
    document.save()
    return True
