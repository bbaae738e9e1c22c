"""Upgrade catalog entry model."""

from __future__ import annotations

from pydantic import ConfigDict, Field

from deployforge.models.deploy import DocumentModel, ScriptArgument, SegmentType


class UpgradePhase(DocumentModel):
    """Template for one segment of the deploys created from an upgrade."""

    type: SegmentType
    filename: str
    arguments: list[ScriptArgument] | None = None


class Upgrade(DocumentModel):
    """A registered version transition.

    ``from_`` is a semver range (``"^1.0.0"``, ``">=1.3.0"``) and ``to``
    is the exact version an environment is at once the upgrade is applied.
    Re-registering an upgrade with the same name overwrites it.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    from_: str = Field(alias="from")
    to: str
    phases: list[UpgradePhase] = []
    commit: str = ""
