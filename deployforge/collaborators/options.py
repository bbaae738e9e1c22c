"""Per-invocation options and session cache handed to every phase handler."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from deployforge.collaborators.protocols import (
    ChainClient,
    MultisigService,
    ScriptRunner,
    SigningStrategy,
)
from deployforge.models.deploy import SegmentType


class SessionCache:
    """Memo of values derived or prompted for during one CLI invocation.

    Clients built per RPC or multisig-service URL are kept here instead of
    in module globals, so every step of a run reuses one connection pool.
    It is discarded along with the ``StrategyOptions`` that owns it.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        if key not in self._values:
            self._values[key] = factory()
        return self._values[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def clear(self) -> None:
        self._values.clear()


class StrategyOptions:
    """Everything a phase handler may consult besides the deploy and transaction.

    Parameters
    ----------
    script_runner:
        Runs script segments and pre-signing tests.
    signers:
        Signing strategy per segment kind (``eoa``, ``multisig``).
    chain, multisig_service:
        Ready-made clients. When unset, ``chain_client()`` and
        ``multisig_client()`` build one per URL through the factories and
        keep it in ``cache`` for the rest of the invocation.
    chain_factory, multisig_factory:
        Build a client from ``rpc_url`` / ``safe_url``.
    non_interactive:
        Never prompt; missing inputs halt the deploy instead.
    signing_mode:
        Pre-selected strategy id, if the operator chose one up front.
    rpc_url, fork:
        Externally supplied chain defaults, also exported to scripts as
        ``DF_RPC_URL`` and ``DF_FORK``.
    safe_url:
        Multisig transaction service endpoint.
    arguments:
        Values for script segment arguments, keyed by argument name.
    run_tests:
        Run a segment's tests before requesting signatures.
    confirm_max_attempts, confirm_delay_seconds:
        Bounds for confirmation polling.
    """

    def __init__(
        self,
        *,
        script_runner: ScriptRunner | None = None,
        signers: dict[SegmentType, SigningStrategy] | None = None,
        chain: ChainClient | None = None,
        multisig_service: MultisigService | None = None,
        chain_factory: Callable[[str], ChainClient] | None = None,
        multisig_factory: Callable[[str], MultisigService] | None = None,
        non_interactive: bool = False,
        signing_mode: str | None = None,
        rpc_url: str | None = None,
        fork: bool = False,
        safe_url: str | None = None,
        arguments: dict[str, str] | None = None,
        run_tests: bool = True,
        confirm_max_attempts: int = 5,
        confirm_delay_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        cache: SessionCache | None = None,
    ) -> None:
        self.script_runner = script_runner
        self.signers = dict(signers or {})
        self.chain = chain
        self.multisig_service = multisig_service
        self.chain_factory = chain_factory
        self.multisig_factory = multisig_factory
        self.non_interactive = non_interactive
        self.signing_mode = signing_mode
        self.rpc_url = rpc_url
        self.fork = fork
        self.safe_url = safe_url
        self.arguments = dict(arguments or {})
        self.run_tests = run_tests
        self.confirm_max_attempts = confirm_max_attempts
        self.confirm_delay_seconds = confirm_delay_seconds
        self.sleep = sleep
        self.cache = cache if cache is not None else SessionCache()

    def signer_for(self, segment_type: SegmentType) -> SigningStrategy | None:
        signer = self.signers.get(segment_type)
        if signer is not None and self.signing_mode and signer.id != self.signing_mode:
            return None
        return signer

    def chain_client(self) -> ChainClient | None:
        if self.chain is not None:
            return self.chain
        if not self.rpc_url or self.chain_factory is None:
            return None
        url, factory = self.rpc_url, self.chain_factory
        return self.cache.get_or_set(f"chain:{url}", lambda: factory(url))

    def multisig_client(self) -> MultisigService | None:
        if self.multisig_service is not None:
            return self.multisig_service
        if not self.safe_url or self.multisig_factory is None:
            return None
        url, factory = self.safe_url, self.multisig_factory
        return self.cache.get_or_set(f"multisig:{url}", lambda: factory(url))

    def default_env(self) -> dict[str, str]:
        """Chain defaults for script and signing subprocesses."""
        env = {}
        if self.rpc_url:
            env["DF_RPC_URL"] = self.rpc_url
        if self.fork:
            env["DF_FORK"] = "1"
        return env
