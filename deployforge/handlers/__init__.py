"""Phase handler registry.

Maps each segment kind to the singleton handler that drives its phases.
"""

from __future__ import annotations

from deployforge.handlers.base import PhaseHandler
from deployforge.handlers.eoa import EOAHandler
from deployforge.handlers.multisig import MultisigHandler
from deployforge.handlers.script import ScriptHandler
from deployforge.handlers.system import SystemHandler
from deployforge.models.deploy import SegmentType

HANDLER_REGISTRY: dict[SegmentType, PhaseHandler] = {
    SegmentType.EOA: EOAHandler(),
    SegmentType.MULTISIG: MultisigHandler(),
    SegmentType.SCRIPT: ScriptHandler(),
    SegmentType.SYSTEM: SystemHandler(),
}


def get_handler(segment_type: SegmentType | str) -> PhaseHandler:
    """Return the handler for ``segment_type``.

    Raises ``KeyError`` for an unrecognised kind.
    """
    try:
        return HANDLER_REGISTRY[SegmentType(segment_type)]
    except (KeyError, ValueError):
        raise KeyError(f"No handler for segment type {segment_type!r}") from None


__all__ = [
    "HANDLER_REGISTRY",
    "EOAHandler",
    "MultisigHandler",
    "PhaseHandler",
    "ScriptHandler",
    "SystemHandler",
    "get_handler",
]
