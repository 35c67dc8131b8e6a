"""Immutable snapshot of scan targets."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from src.errors import ConfigInvalid
from src.models.model_target import Target

logger = logging.getLogger(__name__)


class TargetNotFound(KeyError):
    """Raised by ``TargetRegistry.get`` for an unknown target id."""


class TargetRegistry:
    """Ordered, read-only collection of targets.

    A registry is never modified after construction. Reloading
    configuration builds a new registry and the scheduler swaps the
    reference in one assignment, so readers see either the old or the new
    snapshot, never a mix.
    """

    def __init__(self, targets: Iterable[Target] = ()):
        """Initialize TargetRegistry.

        Args:
            targets: Targets in configuration order

        Raises:
            ConfigInvalid: If two targets share an id
        """
        ordered: dict[str, Target] = {}
        for target in targets:
            if target.id in ordered:
                raise ConfigInvalid(f"duplicate target id: {target.id}")
            ordered[target.id] = target
        self._targets = ordered

    def list(self) -> list[Target]:
        """Return all targets in configuration order."""
        return list(self._targets.values())

    def get(self, target_id: str) -> Target:
        """Look up a target by id.

        Raises:
            TargetNotFound: If no target has this id
        """
        try:
            return self._targets[target_id]
        except KeyError:
            raise TargetNotFound(target_id) from None

    def ids(self) -> list[str]:
        return list(self._targets)

    def with_extra(self, targets: Iterable[Target]) -> TargetRegistry:
        """Return a new registry with ``targets`` appended.

        Targets whose id already exists are skipped; existing entries win.
        """
        merged = self.list()
        seen = set(self._targets)
        for target in targets:
            if target.id in seen:
                logger.debug(f"Skipping target {target.id} (already registered)")
                continue
            seen.add(target.id)
            merged.append(target)
        return TargetRegistry(merged)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._targets

    def __iter__(self) -> Iterator[Target]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._targets)
