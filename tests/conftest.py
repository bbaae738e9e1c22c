"""Shared test fixtures for Deployforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from deployforge.collaborators.options import StrategyOptions
from deployforge.core.document_store import DirectoryEntry, Document, Transaction, VersionToken
from deployforge.core.git_store import GitMetadataStore
from deployforge.core.paths import canonical_paths
from deployforge.models.deploy import (
    Deploy,
    DeployManifest,
    DeployPhase,
    Segment,
    SegmentType,
)
from deployforge.models.environment import EnvironmentManifest
from deployforge.models.runs import (
    MultisigTransactionStatus,
    ScriptRun,
    SigningResult,
    TransactionReceipt,
)
from deployforge.models.upgrade import Upgrade, UpgradePhase

ENV = "testnet"
UPGRADE = "v2"

# ---------------------------------------------------------------------------
# In-memory git host
# ---------------------------------------------------------------------------


class FakeGitHost:
    """``GitHostClient`` keeping every commit as a flat ``{path: content}`` tree."""

    def __init__(self) -> None:
        self.trees: dict[str, dict[str, str]] = {}
        self.messages: dict[str, str] = {}
        self.head = ""
        self.history: list[str] = []
        self._counter = 0

    def get_ref(self) -> VersionToken:
        return VersionToken(value=self.head)

    def _tree(self, token: VersionToken) -> dict[str, str]:
        return self.trees.get(token.value, {})

    def read_file(self, token: VersionToken, path: str) -> str | None:
        return self._tree(token).get(path)

    def list_dir(self, token: VersionToken, path: str) -> list[DirectoryEntry]:
        prefix = path.rstrip("/") + "/"
        entries: dict[str, str] = {}
        for candidate in self._tree(token):
            if candidate.startswith(prefix):
                head, sep, _ = candidate[len(prefix):].partition("/")
                entries[head] = "dir" if sep else "file"
        return [DirectoryEntry(name=name, type=kind) for name, kind in entries.items()]

    def create_commit(
        self, base: VersionToken, files: dict[str, str], message: str
    ) -> VersionToken:
        self._counter += 1
        sha = f"{self._counter:040x}"
        self.trees[sha] = {**self._tree(base), **files}
        self.messages[sha] = message
        return VersionToken(value=sha)

    def update_ref(self, new: VersionToken, expected: VersionToken) -> bool:
        if self.head != expected.value:
            return False
        self.head = new.value
        self.history.append(new.value)
        return True

    # Test helpers

    @property
    def commit_messages(self) -> list[str]:
        return [self.messages[sha] for sha in self.history]

    def files(self) -> dict[str, str]:
        return dict(self._tree(self.get_ref()))

    def push_external(self, files: dict[str, str], message: str = "external change") -> None:
        """Simulate another writer moving the branch."""
        new = self.create_commit(self.get_ref(), files, message)
        self.update_ref(new, self.get_ref())


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeScriptRunner:
    def __init__(self) -> None:
        self.results: dict[str, ScriptRun] = {}
        self.test_results: dict[str, ScriptRun] = {}
        self.calls: list[tuple[str, list[str], dict[str, str]]] = []
        self.test_calls: list[str] = []

    def run(self, script: Path, args: list[str], env: dict[str, str]) -> ScriptRun:
        self.calls.append((Path(script).name, list(args), dict(env)))
        return self.results.get(Path(script).name, ScriptRun(success=True, stdout="ok"))

    def test(self, script: Path, env: dict[str, str]) -> ScriptRun:
        self.test_calls.append(Path(script).name)
        return self.test_results.get(Path(script).name, ScriptRun(success=True))


class FakeSigner:
    def __init__(self, strategy_id: str = "fake", result: SigningResult | None = None) -> None:
        self.id = strategy_id
        self.result = result or SigningResult(signer="0xsigner", transactions=["0xtx1"])
        self.error: Exception | None = None
        self.requests: list[str] = []
        self.cancellations: list[str] = []
        self.cancel_hash: str | None = "0xcancel"

    def request_new(self, script: Path, deploy: Deploy) -> SigningResult:
        self.requests.append(Path(script).name)
        if self.error is not None:
            raise self.error
        return self.result

    def cancel(self, deploy: Deploy) -> str | None:
        self.cancellations.append(deploy.name)
        return self.cancel_hash


class FakeChain:
    """Receipts by hash; hashes absent from ``receipts`` are never mined."""

    def __init__(self) -> None:
        self.receipts: dict[str, TransactionReceipt] = {}
        self.polls: list[str] = []

    def mine(self, transaction_hash: str, status: str = "success") -> None:
        self.receipts[transaction_hash] = TransactionReceipt(
            transaction_hash=transaction_hash, status=status, block_number=1
        )

    def get_transaction_receipt(self, transaction_hash: str) -> TransactionReceipt | None:
        self.polls.append(transaction_hash)
        return self.receipts.get(transaction_hash)


class FakeMultisigService:
    def __init__(self) -> None:
        self.status = MultisigTransactionStatus(proposal_hash="0xproposal")
        self.queries: list[str] = []

    def get_transaction(self, proposal_hash: str) -> MultisigTransactionStatus:
        self.queries.append(proposal_hash)
        return self.status.model_copy(update={"proposal_hash": proposal_hash})


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def git_host() -> FakeGitHost:
    return FakeGitHost()


@pytest.fixture
def store(git_host: FakeGitHost) -> GitMetadataStore:
    return GitMetadataStore(git_host)


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    """Migration directory with the scripts of the ``v2`` upgrade on disk."""
    upgrade_dir = tmp_path / "upgrades" / UPGRADE
    upgrade_dir.mkdir(parents=True)
    for name in ("1-deploy.eoa.sh", "2-configure.sh", "3-transfer.multisig.sh"):
        (upgrade_dir / name).write_text("#!/bin/sh\n", encoding="utf-8")
    return upgrade_dir


@pytest.fixture
def v2_upgrade() -> Upgrade:
    return Upgrade(
        name=UPGRADE,
        from_="^1.0.0",
        to="2.0.0",
        commit="abc123",
        phases=[
            UpgradePhase(type=SegmentType.EOA, filename="1-deploy.eoa.sh"),
            UpgradePhase(type=SegmentType.SCRIPT, filename="2-configure.sh"),
        ],
    )


@pytest.fixture
def seeded_store(store: GitMetadataStore, v2_upgrade: Upgrade) -> GitMetadataStore:
    """Store with the ``testnet`` environment at 1.0.0 and the ``v2`` upgrade registered."""
    txn = store.begin()
    for path, value in (
        (
            canonical_paths.environment_manifest(ENV),
            EnvironmentManifest(id=ENV, chain_id=11155111, deployed_version="1.0.0"),
        ),
        (canonical_paths.deploys_manifest(ENV), DeployManifest()),
        (canonical_paths.deploy_parameters(ENV), {"owner": "0xowner"}),
        (canonical_paths.upgrade_manifest(UPGRADE), v2_upgrade),
    ):
        document = txn.get_document(path, optional=True)
        document.data = value
        document.save()
    txn.commit("seed")
    return store


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def runner() -> FakeScriptRunner:
    return FakeScriptRunner()


@pytest.fixture
def eoa_signer() -> FakeSigner:
    return FakeSigner("fake.eoa")


@pytest.fixture
def multisig_signer() -> FakeSigner:
    return FakeSigner(
        "fake.multisig",
        SigningResult(signer="0xsigner", proposal_hash="0xproposal", multisig="0xsafe"),
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def multisig_service() -> FakeMultisigService:
    return FakeMultisigService()


@pytest.fixture
def make_options(
    runner: FakeScriptRunner,
    eoa_signer: FakeSigner,
    multisig_signer: FakeSigner,
    chain: FakeChain,
    multisig_service: FakeMultisigService,
) -> Callable[..., StrategyOptions]:
    """Factory fixture: StrategyOptions wired to the fakes, with a no-op sleep."""

    def _factory(**overrides: Any) -> StrategyOptions:
        defaults: dict[str, Any] = {
            "script_runner": runner,
            "signers": {SegmentType.EOA: eoa_signer, SegmentType.MULTISIG: multisig_signer},
            "chain": chain,
            "multisig_service": multisig_service,
            "non_interactive": True,
            "confirm_max_attempts": 3,
            "confirm_delay_seconds": 0.0,
            "sleep": lambda _seconds: None,
        }
        defaults.update(overrides)
        return StrategyOptions(**defaults)

    return _factory


@pytest.fixture
def make_deploy(
    seeded_store: GitMetadataStore, scripts_dir: Path
) -> Callable[..., Deploy]:
    """Factory fixture: commit a deploy in ``phase``/``segment_id`` and point the env at it."""

    def _factory(
        phase: DeployPhase = DeployPhase.NONE,
        segment_id: int = -1,
        segments: list[Segment] | None = None,
        **overrides: Any,
    ) -> Deploy:
        defaults: dict[str, Any] = {
            "name": "2026-01-01-00-00-v2",
            "env": ENV,
            "upgrade": UPGRADE,
            "chain_id": 11155111,
            "upgrade_path": str(scripts_dir),
            "phase": phase,
            "segment_id": segment_id,
            "segments": segments
            if segments is not None
            else [
                Segment(id=0, type=SegmentType.EOA, filename="1-deploy.eoa.sh"),
                Segment(id=1, type=SegmentType.SCRIPT, filename="2-configure.sh"),
            ],
            "start_time": "2026-01-01T00:00:00+00:00",
        }
        defaults.update(overrides)
        deploy = Deploy(**defaults)

        txn = seeded_store.begin()
        document = txn.get_document(
            canonical_paths.deploy_status(ENV, deploy.name), Deploy, optional=True
        )
        document.data = deploy
        document.save()
        pointer = txn.get_document(canonical_paths.deploys_manifest(ENV), DeployManifest)
        pointer.data.in_progress_deploy = deploy.name
        pointer.save()
        txn.commit(f"seed deploy {deploy.name}")
        return deploy

    return _factory


@pytest.fixture
def open_deploy(seeded_store: GitMetadataStore) -> Callable[[Deploy], tuple[Transaction, Document[Deploy]]]:
    """Open a fresh transaction and load ``deploy`` from it."""

    def _open(deploy: Deploy) -> tuple[Transaction, Document[Deploy]]:
        txn = seeded_store.begin()
        return txn, txn.get_document(canonical_paths.deploy_status(deploy.env, deploy.name), Deploy)

    return _open


@pytest.fixture
def read_committed(seeded_store: GitMetadataStore) -> Callable[..., Any]:
    """Read a document as currently committed."""

    def _read(path: str, model: type | None = None) -> Any:
        return seeded_store.begin().get_document(path, model, optional=True).data

    return _read
