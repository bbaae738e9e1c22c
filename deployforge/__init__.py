"""Deployforge: resumable, multi-signer contract deploys.

A deploy walks an upgrade's segments (EOA transactions, multisig
proposals, plain scripts) through a phase state machine, committing
every step to a git-backed metadata store:
  - Atomic optimistic-concurrency transactions over JSON documents
  - Local directory, local git and GitHub-hosted store backends
  - Per-environment deploy lock with stale takeover
  - Semver upgrade catalog with path resolution
  - Halt/pause semantics with an exact resume command
"""

__version__ = "0.1.0"
__description__ = "Resumable, lock-guarded deploy orchestration over a git-committed metadata store"

from deployforge.core.orchestrator import Orchestrator
from deployforge.monitor.renderer import DeployRenderer
from deployforge.cli.app import app as cli

__all__ = ["Orchestrator", "DeployRenderer", "cli", "__version__"]
