"""Git-backed metadata store with compare-and-swap commits.

A transaction pins the branch head it started from. Commit builds one
tree containing every dirty document on top of that head, creates a
single commit whose parent is the head, and then moves the branch with a
compare-and-swap. If another writer moved the branch first, the commit
object is simply left unreferenced and ``ConcurrencyConflictError`` is
raised.

Two host clients are provided: ``LocalGitClient`` drives ``git`` plumbing
in a local repository, and ``deployforge.core.github_client.GitHubClient``
drives the GitHub git-data REST API.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from deployforge.core.document_store import (
    ConcurrencyConflictError,
    DirectoryEntry,
    DocumentStoreError,
    MetadataStore,
    Transaction,
    VersionToken,
)

logger = logging.getLogger(__name__)

# Token used for a branch that has no commits yet.
EMPTY_TOKEN = VersionToken(value="")

_ZERO_OID = "0" * 40


class GitHostError(DocumentStoreError):
    """The git host rejected or failed a request."""


@runtime_checkable
class GitHostClient(Protocol):
    """Primitives a git host must offer for ``GitTransaction``.

    All reads are pinned to a commit; only ``update_ref`` makes a new
    commit visible.
    """

    def get_ref(self) -> VersionToken:
        """Current head of the tracked branch, ``EMPTY_TOKEN`` if unborn."""
        ...

    def read_file(self, token: VersionToken, path: str) -> str | None: ...

    def list_dir(self, token: VersionToken, path: str) -> list[DirectoryEntry]: ...

    def create_commit(
        self, base: VersionToken, files: dict[str, str], message: str
    ) -> VersionToken:
        """Create an unreferenced commit of ``files`` on top of ``base``."""
        ...

    def update_ref(self, new: VersionToken, expected: VersionToken) -> bool:
        """Move the branch to ``new`` only if it still points at ``expected``."""
        ...


class GitMetadataStore(MetadataStore):
    def __init__(self, client: GitHostClient) -> None:
        self.client = client

    def begin(self) -> GitTransaction:
        return GitTransaction(self.client, self.client.get_ref())


class GitTransaction(Transaction):
    """Transaction that commits all changes as one git commit."""

    def __init__(self, client: GitHostClient, base: VersionToken) -> None:
        super().__init__(base)
        self._client = client

    def _read(self, path: str) -> str | None:
        if self.base_token == EMPTY_TOKEN:
            return None
        return self._client.read_file(self.base_token, path)

    def _list(self, path: str) -> list[DirectoryEntry]:
        if self.base_token == EMPTY_TOKEN:
            return []
        return self._client.list_dir(self.base_token, path)

    def _write(self, changes: dict[str, str], message: str) -> VersionToken:
        base = self.base_token
        current = self._client.get_ref()
        if current != base:
            raise ConcurrencyConflictError(base, current)

        new = self._client.create_commit(base, changes, message)
        if not self._client.update_ref(new, expected=base):
            raise ConcurrencyConflictError(base, self._client.get_ref())
        return new


# ---------------------------------------------------------------------------
# Local git plumbing client
# ---------------------------------------------------------------------------


class LocalGitClient:
    """``GitHostClient`` over a local repository using git plumbing commands.

    Commits are written straight to ``ref`` without touching any working
    tree, so the repository is best used as a dedicated metadata repo.

    Parameters
    ----------
    repo_path:
        Path to the repository (bare or not).
    ref:
        Fully qualified branch ref to track.
    author:
        Optional ``(name, email)`` used for commits instead of git config.
    """

    def __init__(
        self,
        repo_path: Path,
        ref: str = "refs/heads/main",
        *,
        author: tuple[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path)
        self.ref = ref
        self._author = author

    def _git(
        self,
        *args: str,
        input_text: str | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        full_env = dict(os.environ)
        if self._author is not None:
            name, email = self._author
            full_env.update(
                GIT_AUTHOR_NAME=name,
                GIT_AUTHOR_EMAIL=email,
                GIT_COMMITTER_NAME=name,
                GIT_COMMITTER_EMAIL=email,
            )
        if env:
            full_env.update(env)
        result = subprocess.run(
            ["git", "-C", str(self.repo_path), *args],
            input=input_text,
            capture_output=True,
            text=True,
            env=full_env,
        )
        if check and result.returncode != 0:
            raise GitHostError(
                f"git {' '.join(args)} failed ({result.returncode}): {result.stderr.strip()}"
            )
        return result

    def get_ref(self) -> VersionToken:
        result = self._git("rev-parse", "--verify", "--quiet", f"{self.ref}^{{commit}}", check=False)
        if result.returncode != 0:
            return EMPTY_TOKEN
        return VersionToken(value=result.stdout.strip())

    def read_file(self, token: VersionToken, path: str) -> str | None:
        result = self._git("cat-file", "blob", f"{token}:{path}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def list_dir(self, token: VersionToken, path: str) -> list[DirectoryEntry]:
        result = self._git("ls-tree", str(token), f"{path.rstrip('/')}/", check=False)
        if result.returncode != 0:
            return []
        entries = []
        for line in result.stdout.splitlines():
            meta, _, name = line.partition("\t")
            kind = meta.split()[1]
            entries.append(
                DirectoryEntry(name=name.rsplit("/", 1)[-1], type="dir" if kind == "tree" else "file")
            )
        return entries

    def create_commit(
        self, base: VersionToken, files: dict[str, str], message: str
    ) -> VersionToken:
        with tempfile.TemporaryDirectory() as scratch:
            index_env = {"GIT_INDEX_FILE": str(Path(scratch) / "index")}
            if base == EMPTY_TOKEN:
                self._git("read-tree", "--empty", env=index_env)
            else:
                self._git("read-tree", str(base), env=index_env)
            for path, content in sorted(files.items()):
                blob = self._git("hash-object", "-w", "--stdin", input_text=content).stdout.strip()
                self._git("update-index", "--add", "--cacheinfo", f"100644,{blob},{path}", env=index_env)
            tree = self._git("write-tree", env=index_env).stdout.strip()

        parents = [] if base == EMPTY_TOKEN else ["-p", str(base)]
        commit = self._git("commit-tree", tree, *parents, "-m", message).stdout.strip()
        return VersionToken(value=commit)

    def update_ref(self, new: VersionToken, expected: VersionToken) -> bool:
        old = expected.value or _ZERO_OID
        result = self._git("update-ref", self.ref, new.value, old, check=False)
        if result.returncode != 0:
            logger.warning("Ref %s moved; refusing to update: %s", self.ref, result.stderr.strip())
            return False
        return True
