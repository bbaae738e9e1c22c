"""Deploy orchestrator, the central coordinator for deployforge.

The Orchestrator wires together the metadata store, the deploy lock, the
phase state machine, the upgrade catalog and the phase handlers into a
single re-entrant driver.

Every step runs in its own transaction against fresh state, so a deploy
interrupted at any point (halt, pause, crash, conflict) resumes from
what was last committed.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import jsonschema
from pydantic import BaseModel, ConfigDict, ValidationError

from deployforge.collaborators.options import StrategyOptions
from deployforge.core.deploy_lock import (
    DEFAULT_LOCK_TTL_MS,
    acquire_lock,
    now_ms,
    release_lock,
)
from deployforge.core.document_store import Document, DocumentStoreError, MetadataStore, Transaction
from deployforge.core.environment import injectable_environment
from deployforge.core.errors import (
    DeployInProgressError,
    DeployNotCancellableError,
    EnvironmentExistsError,
    InvalidParametersError,
    InvalidUpgradeError,
    LockHeldError,
    NoActiveDeployError,
    UnknownEnvironmentError,
    UnknownPhaseError,
    UnknownUpgradeError,
)
from deployforge.core.paths import canonical_paths
from deployforge.core.phase_machine import is_terminal_phase, phase_segment_type
from deployforge.core.upgrade_paths import (
    find_upgrade_paths,
    select_upgrade_path,
    version_satisfies,
)
from deployforge.handlers import get_handler
from deployforge.handlers.system import set_in_progress_deploy
from deployforge.models.deploy import Deploy, DeployManifest, DeployPhase, Segment, SegmentType
from deployforge.models.environment import EnvironmentManifest
from deployforge.models.upgrade import Upgrade

logger = logging.getLogger(__name__)

ENVIRONMENT_NAME = re.compile(r"^[a-zA-Z0-9-]+$")

_CANCELLABLE_MULTISIG_PHASES = frozenset(
    {
        DeployPhase.MULTISIG_START,
        DeployPhase.MULTISIG_WAIT_SIGNERS,
        DeployPhase.MULTISIG_EXECUTE,
    }
)


def git_head(directory: Path) -> str:
    """Return the commit checked out in the repository containing ``directory``."""
    try:
        completed = subprocess.run(
            ["git", "-C", str(directory), "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise InvalidUpgradeError(f"Could not determine the git commit of {directory}: {exc}") from exc
    return completed.stdout.strip()


def schema_problems(schema: dict[str, Any], instance: Any) -> list[str]:
    """Validation messages for ``instance`` against ``schema``; empty when it conforms."""
    validator_class = jsonschema.validators.validator_for(schema)
    try:
        validator_class.check_schema(schema)
    except jsonschema.SchemaError as exc:
        return [f"invalid schema: {exc.message}"]
    errors = sorted(validator_class(schema).iter_errors(instance), key=lambda error: error.json_path)
    return [f"{error.json_path}: {error.message}" for error in errors]


def is_cancellable(record: Deploy) -> bool:
    """Whether ``cancel`` may be attempted from the deploy's current phase.

    Multisig segments stop being cancellable once the proposal has been
    executed. Failed deploys are handed to the system handler, which
    reports them as already finalized.
    """
    try:
        phase = DeployPhase(record.phase)
    except ValueError:
        return False
    if phase == DeployPhase.COMPLETE:
        return False
    if phase in (DeployPhase.NONE, DeployPhase.CANCELLED, DeployPhase.FAILED):
        return True

    segment = record.current_segment
    if segment is None:
        return False
    if segment.type == SegmentType.MULTISIG:
        return phase in _CANCELLABLE_MULTISIG_PHASES
    return segment.type in (SegmentType.EOA, SegmentType.SCRIPT)


class StepOutcome(BaseModel):
    """Result of one phase step."""

    model_config = ConfigDict(frozen=True)

    deploy: Deploy
    from_phase: str
    from_segment: int
    finished: bool

    @property
    def to_phase(self) -> str:
        return self.deploy.phase_name


class Orchestrator:
    """Drives deploys for every environment in one metadata store.

    Parameters
    ----------
    store:
        Metadata store to read and commit through.
    options:
        Collaborators and per-invocation options handed to the handlers.
    holder:
        Identity recorded in the deploy lock.
    migration_directory:
        Local directory holding one subdirectory of scripts per upgrade.
    lock_ttl_ms:
        How long a lock stays valid without being refreshed.
    clock:
        Current time in epoch milliseconds, for lock expiry.
    now:
        Current local time, for deploy names and start times.
    commit_of:
        Resolves the source commit of an upgrade directory.
    """

    def __init__(
        self,
        store: MetadataStore,
        options: StrategyOptions | None = None,
        *,
        holder: str,
        migration_directory: Path = Path("upgrades"),
        lock_ttl_ms: int = DEFAULT_LOCK_TTL_MS,
        clock: Callable[[], int] = now_ms,
        now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
        commit_of: Callable[[Path], str] = git_head,
    ) -> None:
        self.store = store
        self.options = options or StrategyOptions()
        self.holder = holder
        self.migration_directory = Path(migration_directory)
        self.lock_ttl_ms = lock_ttl_ms
        self._clock = clock
        self._now = now
        self._commit_of = commit_of

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _environment(txn: Transaction, env: str) -> EnvironmentManifest:
        manifest: EnvironmentManifest = txn.get_document(
            canonical_paths.environment_manifest(env), EnvironmentManifest, optional=True
        ).data
        if not manifest.id:
            raise UnknownEnvironmentError(env)
        return manifest

    @staticmethod
    def _active(txn: Transaction, env: str) -> Document[Deploy] | None:
        pointer: DeployManifest = txn.get_document(
            canonical_paths.deploys_manifest(env), DeployManifest, optional=True
        ).data
        if not pointer.in_progress_deploy:
            return None
        return txn.get_document(
            canonical_paths.deploy_status(env, pointer.in_progress_deploy), Deploy
        )

    def _require_active(self, txn: Transaction, env: str) -> Document[Deploy]:
        document = self._active(txn, env)
        if document is None:
            raise NoActiveDeployError(env)
        return document

    def _take_lock(self, txn: Transaction, record: Deploy) -> None:
        decision = acquire_lock(
            txn, record, self.holder, current_ms=self._clock(), ttl_ms=self.lock_ttl_ms
        )
        if not decision.acquired:
            raise LockHeldError(
                record.env, decision.previous_holder, decision.previous_description
            )

    # ------------------------------------------------------------------
    # Deploy lifecycle
    # ------------------------------------------------------------------

    def start_deploy(
        self,
        env: str,
        upgrade_name: str | None = None,
        *,
        target_version: str | None = None,
    ) -> Deploy | None:
        """Create a deploy of ``upgrade_name`` (or the first hop towards
        ``target_version``) and point the environment at it.

        Returns ``None`` when the environment is already at ``target_version``.
        """
        txn = self.store.begin()
        manifest = self._environment(txn, env)
        active = self._active(txn, env)
        if active is not None:
            raise DeployInProgressError(env, active.data.name)

        if upgrade_name is None:
            if target_version is None:
                raise ValueError("Pass an upgrade name or a target version")
            route = self._resolve(txn, manifest.deployed_version, target_version)
            if not route:
                logger.info("%s is already at %s", env, target_version)
                return None
            upgrade_name = route[0]
            if len(route) > 1:
                logger.info(
                    "Starting %s; %s will still be needed to reach %s",
                    upgrade_name, ", ".join(route[1:]), target_version,
                )

        upgrade_doc = txn.get_document(
            canonical_paths.upgrade_manifest(upgrade_name), Upgrade, optional=True
        )
        if not upgrade_doc.exists:
            raise UnknownUpgradeError(upgrade_name)
        upgrade: Upgrade = upgrade_doc.data
        if not version_satisfies(manifest.deployed_version, upgrade.from_):
            raise InvalidUpgradeError(
                f"Upgrade {upgrade.name} requires {upgrade.from_}, "
                f"but {env} is at {manifest.deployed_version}"
            )

        started = self._now()
        name = f"{started:%Y-%m-%d-%H-%M}-{upgrade.name}"
        deploy = Deploy(
            name=name,
            env=env,
            upgrade=upgrade.name,
            chain_id=manifest.chain_id,
            upgrade_path=str(self.migration_directory / upgrade.name),
            segments=[
                Segment(id=index, type=phase.type, filename=phase.filename, arguments=phase.arguments)
                for index, phase in enumerate(upgrade.phases)
            ],
            start_time=started.isoformat(),
            start_timestamp=started.timestamp(),
        )

        document = txn.get_document(canonical_paths.deploy_status(env, name), Deploy, optional=True)
        if document.exists:
            raise DeployInProgressError(env, name)
        document.data = deploy
        document.save()
        set_in_progress_deploy(txn, env, name)
        txn.commit(f"[deploy {name}] created")
        logger.info("Created deploy %s (%d segment(s))", name, len(deploy.segments))
        return deploy

    def step(self, env: str) -> StepOutcome:
        """Run exactly one phase step of the environment's active deploy."""
        txn = self.store.begin()
        document = self._require_active(txn, env)
        record = document.data
        self._take_lock(txn, record)

        from_phase, from_segment = record.phase_name, record.segment_id
        finishing = is_terminal_phase(record.phase)
        try:
            segment_type = phase_segment_type(record.phase)
        except ValueError:
            raise UnknownPhaseError(record, f"Deploy is in unknown phase: {record.phase!r}") from None

        get_handler(segment_type).run_step(document, txn, self.options)
        return StepOutcome(
            deploy=record.model_copy(deep=True),
            from_phase=from_phase,
            from_segment=from_segment,
            finished=finishing,
        )

    def run(self, env: str) -> Deploy:
        """Step the active deploy until it finishes, halts or pauses.

        Halts and pauses propagate after the lock has been released.
        """
        txn = self.store.begin()
        record = self._require_active(txn, env).data
        self._take_lock(txn, record)
        txn.commit(f"[deploy {record.name}] lock acquired by {self.holder}")

        try:
            while True:
                outcome = self.step(env)
                record = outcome.deploy
                if outcome.finished:
                    return record
        finally:
            self._release(record)

    def _release(self, record: Deploy) -> None:
        txn = self.store.begin()
        try:
            if release_lock(txn, record, self.holder):
                txn.commit(f"[deploy {record.name}] lock released")
        except DocumentStoreError as exc:
            logger.error(
                "Could not release the lock for %s (it expires on its own): %s", record.env, exc
            )

    def cancel(self, env: str) -> Deploy:
        """Cancel the active deploy, undoing outstanding external work first."""
        txn = self.store.begin()
        document = self._require_active(txn, env)
        record = document.data
        self._take_lock(txn, record)

        if not is_cancellable(record):
            raise DeployNotCancellableError(
                record, f"Deploy {record.name} cannot be cancelled from phase {record.phase_name!r}."
            )

        if record.phase != DeployPhase.CANCELLED:
            get_handler(phase_segment_type(record.phase)).cancel(document, txn, self.options)
            record.phase = DeployPhase.CANCELLED
            record.mark_ended()

        set_in_progress_deploy(txn, env, None)
        release_lock(txn, record, self.holder)
        document.save()
        txn.commit(f"Cancelled deploy {record.name}")
        logger.info("Cancelled %s", record.name)
        return record

    def status(self, env: str) -> Deploy | None:
        txn = self.store.begin()
        self._environment(txn, env)
        document = self._active(txn, env)
        return document.data if document is not None else None

    # ------------------------------------------------------------------
    # Upgrade catalog
    # ------------------------------------------------------------------

    def register_upgrade(self, upgrade_dir: Path) -> Upgrade:
        """Validate ``upgrade_dir/upgrade.json`` and publish it to the catalog.

        Re-registering an existing upgrade overwrites it.
        """
        upgrade_dir = Path(upgrade_dir)
        manifest_path = upgrade_dir / "upgrade.json"
        if not manifest_path.is_file():
            raise InvalidUpgradeError(f"Missing upgrade.json manifest in {upgrade_dir}")
        try:
            upgrade = Upgrade.model_validate(json.loads(manifest_path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise InvalidUpgradeError(f"Error in {manifest_path}: {exc}") from exc

        if upgrade.name != upgrade_dir.name:
            raise InvalidUpgradeError(
                f"upgrade.json names {upgrade.name!r} but lives in {upgrade_dir.name!r}"
            )
        if not upgrade.phases:
            raise InvalidUpgradeError(f"Upgrade {upgrade.name} declares no phases")
        for phase in upgrade.phases:
            if phase.type == SegmentType.SYSTEM:
                raise InvalidUpgradeError(f"Phase {phase.filename} cannot have type 'system'")
            if not (upgrade_dir / phase.filename).is_file():
                raise InvalidUpgradeError(f"Phase script {phase.filename} not found in {upgrade_dir}")

        upgrade = upgrade.model_copy(update={"commit": self._commit_of(upgrade_dir)})

        txn = self.store.begin()
        document = txn.get_document(
            canonical_paths.upgrade_manifest(upgrade.name), Upgrade, optional=True
        )
        updating = document.exists
        if updating:
            logger.warning("Upgrade %s already exists and will be overwritten", upgrade.name)
        document.data = upgrade
        document.save()
        txn.commit(f"{'Updated' if updating else 'Registered'} upgrade {upgrade.name}")
        return upgrade

    @staticmethod
    def _catalog(txn: Transaction) -> list[Upgrade]:
        upgrades = []
        for entry in txn.get_directory_listing(canonical_paths.all_upgrades()):
            if entry.type != "dir":
                continue
            document = txn.get_document(
                canonical_paths.upgrade_manifest(entry.name), Upgrade, optional=True
            )
            if document.exists:
                upgrades.append(document.data)
        return upgrades

    def list_upgrades(self) -> list[Upgrade]:
        return self._catalog(self.store.begin())

    def _resolve(self, txn: Transaction, from_version: str, to_version: str) -> list[str]:
        paths = find_upgrade_paths(from_version, to_version, self._catalog(txn))
        return select_upgrade_path(paths, from_version, to_version)

    def resolve_upgrade_path(self, from_version: str, to_version: str) -> list[str]:
        """Names of the upgrades to apply, in order, to go from one version to another."""
        return self._resolve(self.store.begin(), from_version, to_version)

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------

    def create_environment(self, env: str, chain_id: int) -> EnvironmentManifest:
        if not ENVIRONMENT_NAME.match(env):
            raise ValueError(f"Invalid environment name {env!r}; use letters, digits and '-'")
        txn = self.store.begin()
        document = txn.get_document(
            canonical_paths.environment_manifest(env), EnvironmentManifest, optional=True
        )
        if document.exists and document.data.id:
            raise EnvironmentExistsError(env)

        manifest = EnvironmentManifest(id=env, chain_id=chain_id)
        document.data = manifest
        document.save()

        deploys = txn.get_document(canonical_paths.deploys_manifest(env), DeployManifest, optional=True)
        deploys.data = DeployManifest()
        deploys.save()
        for path in (
            canonical_paths.deploy_parameters(env),
            canonical_paths.deploy_parameters_schema(env),
        ):
            extra = txn.get_document(path, optional=True)
            extra.data = {}
            extra.save()

        txn.commit(f"Created environment: {env}")
        return manifest

    def list_environments(self) -> list[EnvironmentManifest]:
        txn = self.store.begin()
        manifests = []
        for entry in txn.get_directory_listing(canonical_paths.all_environments()):
            if entry.type != "dir":
                continue
            manifest: EnvironmentManifest = txn.get_document(
                canonical_paths.environment_manifest(entry.name), EnvironmentManifest, optional=True
            ).data
            if manifest.id:
                manifests.append(manifest)
        return manifests

    def show_environment(self, env: str) -> EnvironmentManifest:
        return self._environment(self.store.begin(), env)

    def parameters(self, env: str) -> dict[str, Any]:
        txn = self.store.begin()
        self._environment(txn, env)
        return dict(txn.get_document(canonical_paths.deploy_parameters(env), optional=True).data or {})

    def set_parameters(
        self, env: str, values: dict[str, Any], *, replace: bool = False
    ) -> dict[str, Any]:
        """Merge ``values`` into the environment's parameters (or replace them).

        The result is validated against ``parameters.schema.json``; an empty
        schema skips validation with a warning. Returns the saved parameters.
        """
        txn = self.store.begin()
        self._environment(txn, env)
        document = txn.get_document(canonical_paths.deploy_parameters(env), optional=True)
        updated = dict(values) if replace else {**(document.data or {}), **values}

        schema = txn.get_document(canonical_paths.deploy_parameters_schema(env), optional=True).data
        if schema:
            problems = schema_problems(schema, updated)
            if problems:
                raise InvalidParametersError(env, problems)
        else:
            logger.warning(
                "No parameter schema is set for %s; changes cannot be checked against it", env
            )

        document.data = updated
        document.save()
        if txn.has_changes():
            txn.commit(f"Updated parameters for environment: {env}")
        else:
            logger.info("Parameters for %s are unchanged", env)
        return updated

    def set_parameter_schema(self, env: str, schema: dict[str, Any]) -> None:
        """Replace the JSON Schema that environment parameters must satisfy.

        The current parameters must already conform to the new schema.
        """
        txn = self.store.begin()
        self._environment(txn, env)
        current = txn.get_document(canonical_paths.deploy_parameters(env), optional=True).data or {}
        problems = schema_problems(schema, current) if schema else []
        if problems:
            raise InvalidParametersError(env, problems)

        document = txn.get_document(canonical_paths.deploy_parameters_schema(env), optional=True)
        document.data = schema
        document.save()
        txn.commit(f"Updated parameter schema for environment: {env}")

    def environment_variables(self, env: str) -> dict[str, str]:
        """``DF_*`` variables for ``env``, including the active deploy's pending changes."""
        txn = self.store.begin()
        active = self._active(txn, env)
        return injectable_environment(txn, env, active.data if active is not None else None)
