"""Deploy record models: phases, segments, and per-segment evidence.

Every persisted record serializes with camelCase keys (``segmentId``,
``chainId``) so the JSON documents in the metadata store keep a stable
layout regardless of the Python attribute names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for every model stored as a JSON document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready dict written to the metadata store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DeployPhase(str, Enum):
    """Every phase a deploy can be in.

    ``NONE`` (the empty string) is the initial phase. ``COMPLETE``,
    ``CANCELLED`` and ``FAILED`` are terminal. The remaining phases belong
    to exactly one segment kind.
    """

    NONE = ""
    EOA_START = "eoa_start"
    EOA_WAIT_CONFIRM = "eoa_wait_confirm"
    MULTISIG_START = "multisig_start"
    MULTISIG_WAIT_SIGNERS = "multisig_wait_signers"
    MULTISIG_EXECUTE = "multisig_execute"
    MULTISIG_WAIT_CONFIRM = "multisig_wait_confirm"
    SCRIPT_RUN = "script_run"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SegmentType(str, Enum):
    """Signing/execution modality of a segment."""

    EOA = "eoa"
    MULTISIG = "multisig"
    SCRIPT = "script"
    SYSTEM = "system"


class ScriptArgument(DocumentModel):
    """An extra value a script segment needs before it can run."""

    name: str
    prompt: str = ""
    type: Literal["str", "url", "number", "address"] = "str"
    pass_by: Literal["env", "arg"] = "arg"
    input_type: Literal["text", "password"] | None = None


class Segment(DocumentModel):
    """One unit of a deploy, instantiated from an upgrade phase."""

    id: int
    type: SegmentType
    filename: str
    arguments: list[ScriptArgument] | None = None


# ---------------------------------------------------------------------------
# Per-segment execution evidence (tagged union on ``type``)
# ---------------------------------------------------------------------------


class EOAMetadata(DocumentModel):
    type: Literal["eoa"] = "eoa"
    signer: str
    transactions: list[str] = []
    deployments: list[dict[str, Any]] = []
    confirmed: bool = False


class MultisigMetadata(DocumentModel):
    type: Literal["multisig"] = "multisig"
    signer: str
    signer_type: str = ""
    multisig: str = ""
    gnosis_transaction_hash: str | None = None
    confirmed: bool = False
    cancellation_transaction_hash: str | None = None
    immediate_execution_hash: str | None = None


SegmentMetadata = Annotated[
    Union[EOAMetadata, MultisigMetadata], Field(discriminator="type")
]


class Deploy(DocumentModel):
    """One ordered execution of an upgrade's segments against an environment.

    ``segment_id`` is ``-1`` until the first segment is selected.
    ``metadata`` is index-aligned with ``segments``; entries are ``None``
    for segments that have not produced evidence yet.
    """

    name: str
    env: str
    upgrade: str
    chain_id: int = 0
    upgrade_path: str = ""
    phase: DeployPhase = DeployPhase.NONE
    segment_id: int = -1
    segments: list[Segment] = []
    metadata: list[SegmentMetadata | None] = []
    start_time: str = ""
    start_timestamp: float = 0.0
    end_time: str | None = None
    end_timestamp: float | None = None

    @property
    def phase_name(self) -> str:
        if isinstance(self.phase, DeployPhase):
            return self.phase.value
        return str(self.phase)

    @property
    def current_segment(self) -> Segment | None:
        """The active segment, or ``None`` outside the segment range."""
        if 0 <= self.segment_id < len(self.segments):
            return self.segments[self.segment_id]
        return None

    @property
    def current_metadata(self) -> EOAMetadata | MultisigMetadata | None:
        if 0 <= self.segment_id < len(self.metadata):
            return self.metadata[self.segment_id]
        return None

    def set_current_metadata(self, value: EOAMetadata | MultisigMetadata) -> None:
        """Store evidence for the active segment, padding the list as needed."""
        if self.segment_id < 0:
            raise IndexError("No active segment to attach metadata to")
        while len(self.metadata) <= self.segment_id:
            self.metadata.append(None)
        self.metadata[self.segment_id] = value

    def mark_ended(self, now: datetime | None = None) -> None:
        moment = now or datetime.now(timezone.utc)
        self.end_time = moment.isoformat()
        self.end_timestamp = moment.timestamp()


class DeployManifest(DocumentModel):
    """Per-environment pointer to the deploy currently in progress."""

    in_progress_deploy: str | None = None


class DeployLock(DocumentModel):
    """Advisory lock guarding one environment. No ``holder`` means unlocked."""

    holder: str | None = None
    until_timestamp_ms: int | None = None
    description: str | None = None
