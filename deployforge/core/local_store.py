"""Local-filesystem metadata store.

Documents live as plain JSON files under a root directory. A counter file
(``.deployforge-version``) is the version token: every commit takes an
exclusive ``fcntl`` lock on the root, checks the counter against the
transaction's base, writes each file atomically, and bumps the counter.

Individual files are replaced one at a time, so a failure midway (the
counter bump included) is compensated by restoring the files already
written before ``TransactionCommitError`` is raised.
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from deployforge.core.document_store import (
    ConcurrencyConflictError,
    DirectoryEntry,
    MetadataStore,
    Transaction,
    TransactionCommitError,
    VersionToken,
)

logger = logging.getLogger(__name__)

_VERSION_FILE = ".deployforge-version"
_LOCK_FILE = ".deployforge.lock"


@contextmanager
def _locked_root(root: Path) -> Iterator[None]:
    """Hold an exclusive lock on the store root for the duration of the context."""
    root.mkdir(parents=True, exist_ok=True)
    with (root / _LOCK_FILE).open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write via a temp file in the same directory, then ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class LocalMetadataStore(MetadataStore):
    """Metadata store rooted at a local directory.

    Parameters
    ----------
    root:
        Directory holding the documents. Created on first use.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def current_token(self) -> VersionToken:
        version_path = self.root / _VERSION_FILE
        if not version_path.exists():
            return VersionToken(value="0")
        return VersionToken(value=version_path.read_text(encoding="utf-8").strip() or "0")

    def begin(self) -> LocalTransaction:
        return LocalTransaction(self, self.current_token())


class LocalTransaction(Transaction):
    """Transaction over a ``LocalMetadataStore``."""

    def __init__(self, store: LocalMetadataStore, base: VersionToken) -> None:
        super().__init__(base)
        self._store = store

    def _resolve(self, path: str) -> Path:
        return self._store.root / path

    def _read(self, path: str) -> str | None:
        target = self._resolve(path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def _list(self, path: str) -> list[DirectoryEntry]:
        target = self._resolve(path)
        if not target.is_dir():
            return []
        return [
            DirectoryEntry(name=child.name, type="dir" if child.is_dir() else "file")
            for child in target.iterdir()
            if not child.name.startswith(".")
        ]

    def _write_file(self, path: str, content: str) -> None:
        _atomic_write_text(self._resolve(path), content)

    def _restore(self, previous: dict[str, str | None]) -> None:
        for path, content in previous.items():
            target = self._resolve(path)
            try:
                if content is None:
                    target.unlink(missing_ok=True)
                else:
                    _atomic_write_text(target, content)
            except OSError:
                logger.exception("Failed to restore %s after aborted commit", target)

    def _write_version(self, token: VersionToken) -> None:
        _atomic_write_text(self._store.root / _VERSION_FILE, token.value + "\n")

    def _write(self, changes: dict[str, str], message: str) -> VersionToken:
        with _locked_root(self._store.root):
            current = self._store.current_token()
            if current != self.base_token:
                raise ConcurrencyConflictError(self.base_token, current)

            token = VersionToken(value=str(int(current.value) + 1))
            previous: dict[str, str | None] = {}
            target = _VERSION_FILE
            try:
                for path, content in sorted(changes.items()):
                    target = path
                    previous[path] = self._read(path)
                    self._write_file(path, content)
                target = _VERSION_FILE
                self._write_version(token)
            except OSError as exc:
                self._restore(previous)
                raise TransactionCommitError(
                    f"Failed writing {target}; rolled back {len(previous)} file(s): {exc}",
                    paths=list(previous),
                ) from exc
        logger.debug("Local commit %s -> %s: %s", current, token, message)
        return token
