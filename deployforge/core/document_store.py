"""Transactional document store with optimistic concurrency.

A ``MetadataStore`` hands out ``Transaction`` objects. A transaction
fetches JSON documents by path, lets callers mutate and ``save()`` them,
then ``commit()`` writes every dirty document as one all-or-nothing
change guarded by the version token captured when the transaction began.

Document state
--------------
remote
    Content as last read from (or committed to) the backing store.
    ``None`` when the path does not exist there.
saved
    Content snapshotted by the last ``save()`` call.
data
    The working value callers mutate (a model instance or plain JSON).

``dirty`` is ``saved != remote``; ``up_to_date`` is its negation. After a
successful commit the two converge.
"""

from __future__ import annotations

import abc
import json
import logging
import posixpath
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from deployforge.models.deploy import DocumentModel

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocumentStoreError(RuntimeError):
    """Base class for metadata store failures."""


class ConcurrencyConflictError(DocumentStoreError):
    """The store moved past this transaction's base version.

    The caller must discard the transaction and redo the whole step
    against fresh state. Retrying the same commit would overwrite the
    other writer's change.
    """

    def __init__(self, expected: VersionToken, actual: VersionToken | None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Metadata store moved from {expected} to {actual} since this "
            "transaction began. Re-run to retry against fresh state."
        )


class DocumentParseError(DocumentStoreError):
    """A document's content is not valid JSON or does not match its model."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Could not parse {path}: {reason}")


class DocumentNotFoundError(DocumentStoreError):
    """A required document does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"No document at {path}")


class TransactionCommitError(DocumentStoreError):
    """Writing a transaction failed and was rolled back."""

    def __init__(self, message: str, paths: list[str] | None = None) -> None:
        self.paths = paths or []
        super().__init__(message)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


class VersionToken(BaseModel):
    """Opaque identifier of one state of the backing store (commit sha, counter)."""

    model_config = ConfigDict(frozen=True)

    value: str

    def __str__(self) -> str:
        return self.value


class DirectoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: Literal["file", "dir"]


class CommitResult(BaseModel):
    """Outcome of ``Transaction.commit``. ``paths`` is empty for a no-op."""

    model_config = ConfigDict(frozen=True)

    token: VersionToken
    paths: list[str] = []
    message: str = ""

    @property
    def changed(self) -> bool:
        return bool(self.paths)


def normalize_path(path: str) -> str:
    """Canonicalize a store path to a relative POSIX path.

    Raises ``ValueError`` for paths that escape the store root.
    """
    cleaned = posixpath.normpath(path.replace("\\", "/").lstrip("/"))
    if cleaned in ("", ".") or cleaned == ".." or cleaned.startswith("../"):
        raise ValueError(f"Invalid metadata path: {path!r}")
    return cleaned


def serialize_content(value: Any) -> str:
    """Render a working value as the text committed to the store."""
    if isinstance(value, DocumentModel):
        value = value.to_document()
    elif isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(value, indent=2) + "\n"


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


class Document(Generic[T]):
    """One dirty-tracked JSON document owned by a single transaction.

    Parameters
    ----------
    path:
        Store-relative path of the document.
    remote:
        Raw content currently in the backing store, ``None`` if absent.
    data:
        The decoded working value.
    """

    def __init__(self, path: str, remote: str | None, data: T) -> None:
        self.path = path
        self._remote = remote
        self._saved = remote
        self.data: T = data

    @property
    def remote(self) -> str | None:
        return self._remote

    @property
    def exists(self) -> bool:
        """Whether the document is present in the backing store."""
        return self._remote is not None

    @property
    def pending_content(self) -> str | None:
        """The content ``commit`` would write for this document."""
        return self._saved

    @property
    def dirty(self) -> bool:
        return self._saved != self._remote

    @property
    def up_to_date(self) -> bool:
        return self._saved == self._remote

    def save(self) -> None:
        """Snapshot the working value as the content to commit."""
        self._saved = serialize_content(self.data)

    def mark_committed(self) -> None:
        self._remote = self._saved

    def __repr__(self) -> str:
        return f"Document(path={self.path!r}, dirty={self.dirty})"


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


class Transaction(abc.ABC):
    """Batch of document reads and writes committed atomically.

    Subclasses supply the storage primitives; this class owns the document
    cache, parsing, and dirty tracking.
    """

    def __init__(self, base: VersionToken) -> None:
        self._base = base
        self._documents: dict[str, Document[Any]] = {}

    @property
    def base_token(self) -> VersionToken:
        """Version the transaction reads from and commits against."""
        return self._base

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _read(self, path: str) -> str | None:
        """Return raw content at ``path`` as of the base version, or ``None``."""
        ...

    @abc.abstractmethod
    def _list(self, path: str) -> list[DirectoryEntry]:
        """List a directory as of the base version (empty if missing)."""
        ...

    @abc.abstractmethod
    def _write(self, changes: dict[str, str], message: str) -> VersionToken:
        """Atomically write ``changes`` on top of the base version.

        Must raise ``ConcurrencyConflictError`` if the store moved, and
        must leave the store untouched on any failure.
        """
        ...

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_document(
        self,
        path: str,
        model: type[BaseModel] | None = None,
        *,
        optional: bool = False,
    ) -> Document[Any]:
        """Fetch a document, returning the cached instance on repeat calls.

        Parameters
        ----------
        path:
            Store-relative path.
        model:
            Pydantic model to validate the content into. Without one the
            working value is the decoded JSON.
        optional:
            Treat a missing document as empty (``model()``, ``{}``, or
            ``None`` for models without defaults) instead of raising
            ``DocumentNotFoundError``.
        """
        key = normalize_path(path)
        cached = self._documents.get(key)
        if cached is not None:
            return cached

        raw = self._read(key)
        if raw is None:
            if not optional:
                raise DocumentNotFoundError(key)
            data: Any = self._default(model)
        else:
            data = self._decode(key, raw, model)

        document: Document[Any] = Document(key, raw, data)
        self._documents[key] = document
        return document

    def get_directory_listing(self, path: str) -> list[DirectoryEntry]:
        return sorted(self._list(normalize_path(path)), key=lambda e: e.name)

    @staticmethod
    def _default(model: type[BaseModel] | None) -> Any:
        """Working value for an absent optional document.

        Models with required fields have no meaningful default, so the
        value is ``None`` and callers check ``Document.exists``.
        """
        if model is None:
            return {}
        try:
            return model()
        except ValidationError:
            return None

    @staticmethod
    def _decode(path: str, raw: str, model: type[BaseModel] | None) -> Any:
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DocumentParseError(path, str(exc)) from exc
        if model is None:
            return decoded
        try:
            return model.model_validate(decoded)
        except ValidationError as exc:
            raise DocumentParseError(path, str(exc)) from exc

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def dirty_documents(self) -> list[Document[Any]]:
        return [doc for doc in self._documents.values() if doc.dirty]

    def has_changes(self) -> bool:
        return any(doc.dirty for doc in self._documents.values())

    def commit(self, message: str) -> CommitResult:
        """Write every dirty document as a single change.

        Returns a no-op result when nothing is dirty. On failure the
        documents keep their remote values and stay dirty.
        """
        dirty = self.dirty_documents()
        if not dirty:
            logger.debug("Nothing to commit for %r", message)
            return CommitResult(token=self._base, paths=[], message=message)

        changes = {doc.path: doc.pending_content or "" for doc in dirty}
        token = self._write(changes, message)

        for doc in dirty:
            doc.mark_committed()
        logger.info("Committed %d document(s) at %s: %s", len(dirty), token, message)
        self._base = token
        return CommitResult(token=token, paths=sorted(changes), message=message)


class MetadataStore(abc.ABC):
    """Factory for transactions over one backing store."""

    @abc.abstractmethod
    def begin(self) -> Transaction:
        """Open a transaction pinned to the store's current version."""
        ...
