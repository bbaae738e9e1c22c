"""External collaborators: protocols plus the default implementations."""

from deployforge.collaborators.chain import JsonRpcChainClient
from deployforge.collaborators.options import SessionCache, StrategyOptions
from deployforge.collaborators.protocols import (
    ChainClient,
    MultisigService,
    ScriptRunner,
    SigningStrategy,
)
from deployforge.collaborators.safe import SafeTransactionService
from deployforge.collaborators.script_runner import SubprocessScriptRunner
from deployforge.collaborators.signing import ScriptSigningStrategy

__all__ = [
    "ChainClient",
    "MultisigService",
    "ScriptRunner",
    "SigningStrategy",
    "SessionCache",
    "StrategyOptions",
    "SubprocessScriptRunner",
    "ScriptSigningStrategy",
    "JsonRpcChainClient",
    "SafeTransactionService",
]
