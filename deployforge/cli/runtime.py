"""Wiring shared by the CLI commands: store, collaborators, error reporting.

Every command builds its ``Orchestrator`` through ``build_orchestrator``
from the module-level ``config``; tests patch that object to point the
CLI at a temporary store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from importlib.metadata import entry_points

import typer
from rich.console import Console

from deployforge.collaborators import (
    JsonRpcChainClient,
    SafeTransactionService,
    ScriptSigningStrategy,
    StrategyOptions,
    SubprocessScriptRunner,
)
from deployforge.collaborators.protocols import ScriptRunner, SigningStrategy
from deployforge.config import DeployforgeConfig, config
from deployforge.core.document_store import ConcurrencyConflictError, DocumentStoreError, MetadataStore
from deployforge.core.errors import (
    DeployAlreadyFinalizedError,
    DeployError,
    DeployInProgressError,
    DeployNotCancellableError,
    EnvironmentExistsError,
    HaltDeployError,
    InvalidParametersError,
    InvalidUpgradeError,
    LockHeldError,
    NoActiveDeployError,
    PauseDeployError,
    UnknownEnvironmentError,
    UnknownUpgradeError,
)
from deployforge.core.git_store import GitMetadataStore, LocalGitClient
from deployforge.core.github_client import GitHubClient
from deployforge.core.local_store import LocalMetadataStore
from deployforge.core.orchestrator import Orchestrator
from deployforge.core.upgrade_paths import AmbiguousUpgradePathError, NoUpgradePathError
from deployforge.models.deploy import SegmentType
from deployforge.monitor.renderer import DeployRenderer

logger = logging.getLogger(__name__)

console = Console()

EXIT_HALT = 1
EXIT_PAUSE = 2
EXIT_CONFLICT = 3
EXIT_LOCKED = 4

SIGNER_ENTRY_POINT_GROUP = "deployforge.signing_strategies"

_USER_ERRORS = (
    DeployInProgressError,
    NoActiveDeployError,
    DeployNotCancellableError,
    DeployAlreadyFinalizedError,
    UnknownEnvironmentError,
    EnvironmentExistsError,
    UnknownUpgradeError,
    InvalidUpgradeError,
    InvalidParametersError,
    NoUpgradePathError,
    AmbiguousUpgradePathError,
    ValueError,
)


def build_store(settings: DeployforgeConfig = config) -> MetadataStore:
    if settings.metadata_backend == "github":
        client = GitHubClient(
            settings.github_owner,
            settings.github_repo,
            settings.github_branch,
            token=settings.github_token,
            api_url=settings.github_api_url,
        )
        return GitMetadataStore(client)
    if settings.metadata_backend == "git":
        return GitMetadataStore(LocalGitClient(settings.metadata_path, settings.git_ref))
    settings.metadata_path.mkdir(parents=True, exist_ok=True)
    return LocalMetadataStore(settings.metadata_path)


def load_signers(
    runner: ScriptRunner, env: dict[str, str] | None = None
) -> dict[SegmentType, SigningStrategy]:
    """Script-backed signers, overridden by any installed signing plugins.

    A plugin registers a factory under the ``deployforge.signing_strategies``
    entry point group, named after the segment type it signs for. The
    factory receives the script runner and returns a ``SigningStrategy``.
    ``env`` is exported to the built-in signing scripts.
    """
    signers: dict[SegmentType, SigningStrategy] = {
        SegmentType.EOA: ScriptSigningStrategy(runner, mode="eoa", env=env),
        SegmentType.MULTISIG: ScriptSigningStrategy(runner, mode="multisig", env=env),
    }
    for entry_point in entry_points(group=SIGNER_ENTRY_POINT_GROUP):
        try:
            segment_type = SegmentType(entry_point.name)
        except ValueError:
            logger.warning("Ignoring signing plugin %s: unknown segment type", entry_point.name)
            continue
        signers[segment_type] = entry_point.load()(runner)
        logger.info("Loaded signing plugin %s for %s", entry_point.value, segment_type.value)
    return signers


def build_options(
    settings: DeployforgeConfig = config,
    *,
    rpc_url: str | None = None,
    safe_url: str | None = None,
    fork: bool = False,
    non_interactive: bool = False,
    signing_strategy: str | None = None,
    arguments: dict[str, str] | None = None,
    run_tests: bool = True,
) -> StrategyOptions:
    """Collaborators for one invocation; HTTP clients are built lazily, once per URL."""
    runner = SubprocessScriptRunner(timeout_seconds=settings.script_timeout_seconds)
    queue_url = settings.safe_queue_url or None
    options = StrategyOptions(
        script_runner=runner,
        chain_factory=JsonRpcChainClient,
        multisig_factory=lambda url: SafeTransactionService(url, queue_url=queue_url),
        non_interactive=non_interactive,
        signing_mode=signing_strategy,
        rpc_url=rpc_url or settings.rpc_url or None,
        fork=fork,
        safe_url=safe_url or settings.safe_service_url or None,
        arguments=arguments,
        run_tests=run_tests,
        confirm_max_attempts=settings.confirm_max_attempts,
        confirm_delay_seconds=settings.confirm_delay_seconds,
    )
    options.signers = load_signers(runner, options.default_env())
    return options


def build_orchestrator(
    options: StrategyOptions | None = None, settings: DeployforgeConfig = config
) -> Orchestrator:
    return Orchestrator(
        build_store(settings),
        options,
        holder=settings.holder,
        migration_directory=settings.migration_directory,
        lock_ttl_ms=settings.lock_ttl_seconds * 1000,
    )


def parse_arguments(pairs: list[str], param_hint: str = "--arg") -> dict[str, str]:
    """Turn repeated ``NAME=VALUE`` options into a mapping."""
    parsed = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected NAME=VALUE, got {pair!r}", param_hint=param_hint)
        parsed[name] = value
    return parsed


@contextmanager
def reporting(renderer: DeployRenderer | None = None) -> Iterator[DeployRenderer]:
    """Map domain errors to a Rich panel and the matching exit code."""
    renderer = renderer or DeployRenderer(console)
    try:
        yield renderer
    except PauseDeployError as exc:
        renderer.print_failure("Paused", str(exc), style="yellow")
        raise typer.Exit(EXIT_PAUSE) from exc
    except DeployError as exc:
        title = "Halted" if isinstance(exc, HaltDeployError) else type(exc).__name__
        renderer.print_failure(title, str(exc))
        raise typer.Exit(EXIT_HALT) from exc
    except ConcurrencyConflictError as exc:
        renderer.print_failure("Conflict", str(exc), style="yellow")
        raise typer.Exit(EXIT_CONFLICT) from exc
    except LockHeldError as exc:
        renderer.print_failure("Locked", str(exc), style="yellow")
        raise typer.Exit(EXIT_LOCKED) from exc
    except (DocumentStoreError, *_USER_ERRORS) as exc:
        renderer.print_failure("Error", str(exc))
        raise typer.Exit(EXIT_HALT) from exc
