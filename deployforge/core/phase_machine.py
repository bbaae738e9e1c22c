"""Deploy phase state machine.

Enforces:
- Segment phases follow the PHASE_TRANSITIONS table
- Finishing a segment's last phase moves to the next segment's entry phase
- Running out of segments completes the deploy
- Terminal phases never move

The primitives mutate the ``Deploy`` in place and return a
``PhaseTransition`` record. They do not persist anything: the caller saves
the deploy document and commits it together with the step's evidence.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from deployforge.core.errors import UnknownPhaseError
from deployforge.models.deploy import Deploy, DeployPhase, SegmentType

logger = logging.getLogger(__name__)


TERMINAL_PHASES: frozenset[DeployPhase] = frozenset(
    {DeployPhase.COMPLETE, DeployPhase.CANCELLED, DeployPhase.FAILED}
)

# Phases handled by the system handler rather than a segment handler.
GLOBAL_PHASES: frozenset[DeployPhase] = TERMINAL_PHASES | {DeployPhase.NONE}

ENTRY_PHASES: dict[SegmentType, DeployPhase] = {
    SegmentType.EOA: DeployPhase.EOA_START,
    SegmentType.MULTISIG: DeployPhase.MULTISIG_START,
    SegmentType.SCRIPT: DeployPhase.SCRIPT_RUN,
}

PHASE_SEGMENT_TYPES: dict[DeployPhase, SegmentType] = {
    DeployPhase.EOA_START: SegmentType.EOA,
    DeployPhase.EOA_WAIT_CONFIRM: SegmentType.EOA,
    DeployPhase.MULTISIG_START: SegmentType.MULTISIG,
    DeployPhase.MULTISIG_WAIT_SIGNERS: SegmentType.MULTISIG,
    DeployPhase.MULTISIG_EXECUTE: SegmentType.MULTISIG,
    DeployPhase.MULTISIG_WAIT_CONFIRM: SegmentType.MULTISIG,
    DeployPhase.SCRIPT_RUN: SegmentType.SCRIPT,
}


class PhaseTransition(BaseModel):
    """Records a single phase change for logging and display."""

    model_config = ConfigDict(frozen=True)

    from_phase: str
    to_phase: str
    from_segment: int
    to_segment: int

    @property
    def changed(self) -> bool:
        return (self.from_phase, self.from_segment) != (self.to_phase, self.to_segment)

    def __str__(self) -> str:
        return (
            f"[{self.from_segment}] {self.from_phase or '<start>'} -> "
            f"[{self.to_segment}] {self.to_phase or '<start>'}"
        )


def _coerce(phase: DeployPhase | str) -> DeployPhase | None:
    try:
        return DeployPhase(phase)
    except ValueError:
        return None


def is_terminal_phase(phase: DeployPhase | str) -> bool:
    return _coerce(phase) in TERMINAL_PHASES


def entry_phase(segment_type: SegmentType | str) -> DeployPhase:
    """First phase of a segment kind. ``system`` has none."""
    try:
        return ENTRY_PHASES[SegmentType(segment_type)]
    except KeyError:
        raise ValueError(f"Segment type {segment_type!r} has no entry phase") from None


def phase_segment_type(phase: DeployPhase | str) -> SegmentType:
    """Segment kind that owns ``phase``. Global phases belong to ``system``."""
    known = _coerce(phase)
    if known in GLOBAL_PHASES:
        return SegmentType.SYSTEM
    if known not in PHASE_SEGMENT_TYPES:
        raise ValueError(f"Unknown phase: {phase!r}")
    return PHASE_SEGMENT_TYPES[known]


def _snapshot(deploy: Deploy) -> tuple[str, int]:
    return deploy.phase_name, deploy.segment_id


def _record(deploy: Deploy, before: tuple[str, int]) -> PhaseTransition:
    transition = PhaseTransition(
        from_phase=before[0],
        to_phase=deploy.phase_name,
        from_segment=before[1],
        to_segment=deploy.segment_id,
    )
    if transition.changed:
        logger.info("Deploy %s: %s", deploy.name, transition)
    return transition


# ------------------------------------------------------------------
# Transition primitives
# ------------------------------------------------------------------


def _move_to_next_segment(deploy: Deploy) -> None:
    next_id = deploy.segment_id + 1
    if next_id >= len(deploy.segments):
        deploy.phase = DeployPhase.COMPLETE
        deploy.mark_ended()
        return

    segment = deploy.segments[next_id]
    if segment.type == SegmentType.SYSTEM:
        raise UnknownPhaseError(
            deploy, f"Segment {next_id} has type 'system', which cannot be scheduled explicitly."
        )
    deploy.segment_id = next_id
    deploy.phase = entry_phase(segment.type)


def advance_segment(deploy: Deploy) -> PhaseTransition:
    """Move to the next segment's entry phase, or complete the deploy.

    ``segment_id`` is left unchanged when there is no next segment.
    """
    before = _snapshot(deploy)
    _move_to_next_segment(deploy)
    return _record(deploy, before)


def _restart(deploy: Deploy) -> None:
    deploy.segment_id = -1
    _move_to_next_segment(deploy)


def _set(phase: DeployPhase) -> Callable[[Deploy], None]:
    def _apply(deploy: Deploy) -> None:
        deploy.phase = phase

    return _apply


def _noop(deploy: Deploy) -> None:
    return None


# Keyed by current phase. Terminal phases are no-ops.
PHASE_TRANSITIONS: dict[DeployPhase, Callable[[Deploy], None]] = {
    DeployPhase.NONE: _restart,
    DeployPhase.EOA_START: _set(DeployPhase.EOA_WAIT_CONFIRM),
    DeployPhase.EOA_WAIT_CONFIRM: _move_to_next_segment,
    DeployPhase.MULTISIG_START: _set(DeployPhase.MULTISIG_WAIT_SIGNERS),
    DeployPhase.MULTISIG_WAIT_SIGNERS: _set(DeployPhase.MULTISIG_EXECUTE),
    DeployPhase.MULTISIG_EXECUTE: _set(DeployPhase.MULTISIG_WAIT_CONFIRM),
    DeployPhase.MULTISIG_WAIT_CONFIRM: _move_to_next_segment,
    DeployPhase.SCRIPT_RUN: _move_to_next_segment,
    DeployPhase.COMPLETE: _noop,
    DeployPhase.CANCELLED: _noop,
    DeployPhase.FAILED: _noop,
}


def advance(deploy: Deploy) -> PhaseTransition:
    """Apply the transition for the deploy's current phase.

    Raises ``UnknownPhaseError`` for a phase missing from the table.
    """
    try:
        step = PHASE_TRANSITIONS[DeployPhase(deploy.phase)]
    except (KeyError, ValueError):
        raise UnknownPhaseError(deploy, f"Deploy is in unknown phase: {deploy.phase!r}") from None
    before = _snapshot(deploy)
    step(deploy)
    return _record(deploy, before)
