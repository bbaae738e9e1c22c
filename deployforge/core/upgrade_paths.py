"""Upgrade path resolution over the registered upgrade catalog.

Each upgrade is an edge from "any version satisfying ``from``" to the
exact version ``to``. ``find_upgrade_paths`` enumerates every route from
a starting version to a target without applying any upgrade twice;
``select_upgrade_path`` turns those routes into one decision.

Range matching follows npm semantics (``^``, ``~``, ``>=`` and friends)
with pre-release versions included, so an environment sitting on
``1.7.0-rc.0`` still matches ``>=1.3.0``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from nodesemver import satisfies

from deployforge.models.upgrade import Upgrade

logger = logging.getLogger(__name__)


class NoUpgradePathError(LookupError):
    """No sequence of upgrades connects the two versions."""

    def __init__(self, from_version: str, to_version: str) -> None:
        self.from_version = from_version
        self.to_version = to_version
        super().__init__(f"No upgrade path from {from_version} to {to_version}")


class AmbiguousUpgradePathError(LookupError):
    """More than one shortest upgrade path exists."""

    def __init__(self, candidates: list[list[str]]) -> None:
        self.candidates = candidates
        listing = "; ".join(" -> ".join(path) for path in candidates)
        super().__init__(
            f"{len(candidates)} equally short upgrade paths found ({listing}). "
            "Pick one explicitly with --upgrade."
        )


def version_satisfies(version: str, range_: str) -> bool:
    """npm-style range check that also admits pre-release versions."""
    try:
        return bool(satisfies(version, range_, loose=False, include_prerelease=True))
    except ValueError:
        logger.warning("Ignoring unparseable version/range: %r / %r", version, range_)
        return False


def find_upgrade_paths(
    from_version: str,
    to_version: str,
    catalog: Iterable[Upgrade],
) -> list[list[str]]:
    """Return every non-repeating upgrade sequence from ``from_version`` to ``to_version``.

    Parameters
    ----------
    from_version:
        Version the environment is currently at.
    to_version:
        Exact version to reach.
    catalog:
        Registered upgrades.

    Returns
    -------
    list[list[str]]
        Upgrade names per path, in no particular order. ``[[]]`` when the
        environment is already at the target, ``[]`` when unreachable.
    """
    upgrades = list(catalog)
    if from_version == to_version:
        return [[]]

    # Work stack of (version reached, upgrade names applied).
    stack: list[tuple[str, list[str]]] = [
        (upgrade.to, [upgrade.name])
        for upgrade in upgrades
        if version_satisfies(from_version, upgrade.from_)
    ]
    paths: list[list[str]] = []

    while stack:
        version, route = stack.pop()
        if version == to_version:
            paths.append(route)
            continue
        for upgrade in upgrades:
            if upgrade.name in route:
                continue
            if version_satisfies(version, upgrade.from_):
                stack.append((upgrade.to, [*route, upgrade.name]))

    logger.debug("Resolved %d path(s) from %s to %s", len(paths), from_version, to_version)
    return paths


def select_upgrade_path(
    paths: list[list[str]],
    from_version: str = "?",
    to_version: str = "?",
) -> list[str]:
    """Choose the single shortest path, refusing to guess between ties."""
    if not paths:
        raise NoUpgradePathError(from_version, to_version)
    shortest = min(len(path) for path in paths)
    candidates = sorted(path for path in paths if len(path) == shortest)
    if len(candidates) > 1:
        raise AmbiguousUpgradePathError(candidates)
    return candidates[0]
