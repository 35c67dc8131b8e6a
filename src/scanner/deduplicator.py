"""Tracks which findings have already been notified, per target."""

import logging
import threading
from collections.abc import Iterable

from src.models.model_scanner import Finding, ScanResult, finding_sort_key
from src.storage.seen_findings import SeenFindingsStore

logger = logging.getLogger(__name__)


class FindingDeduplicator:
    """Computes the new findings of a scan relative to what was already notified.

    State is partitioned by target id. The lock only guards lookup and
    creation of partitions; reading and updating a partition is left to the
    owning target's cycle, which the scheduler never runs twice at once.

    ``delta`` never mutates state. Findings become "seen" only through
    ``commit``, which the scheduler calls after a notification attempt.
    """

    def __init__(self, store: SeenFindingsStore | None = None):
        """Initialize FindingDeduplicator.

        Args:
            store: Optional persistent store. Without one, state lives in
                memory and starts empty on every process start.
        """
        self.store = store
        self._partitions: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def _partition(self, target_id: str) -> set[str]:
        with self._lock:
            partition = self._partitions.get(target_id)
            if partition is None:
                partition = self.store.load(target_id) if self.store else set()
                self._partitions[target_id] = partition
                if partition:
                    logger.debug(f"Loaded {len(partition)} seen findings for {target_id}")
            return partition

    def delta(self, target_id: str, result: ScanResult) -> list[Finding]:
        """Return findings of ``result`` not yet committed for ``target_id``.

        Ordered by severity (CRITICAL first), then identifier.

        Args:
            target_id: Target the scan belongs to
            result: Fresh scan result

        Returns:
            Newly seen findings, possibly empty
        """
        if result.target_id != target_id:
            raise ValueError(f"scan result for {result.target_id} passed as {target_id}")

        seen = self._partition(target_id)
        new: list[Finding] = []
        new_keys: set[str] = set()
        for finding in result.findings:
            key = finding.identity_key()
            if key in seen or key in new_keys:
                continue
            new_keys.add(key)
            new.append(finding)

        new.sort(key=finding_sort_key)
        logger.debug(
            f"{target_id}: {len(new)} new of {len(result.findings)} findings "
            f"({len(seen)} previously notified)"
        )
        return new

    def commit(self, target_id: str, findings: Iterable[Finding]) -> int:
        """Record findings as notified for ``target_id``.

        Committing the same findings again is a no-op.

        Returns:
            Number of findings that were not already recorded
        """
        seen = self._partition(target_id)
        keys = {finding.identity_key() for finding in findings}
        added = keys - seen
        if not added:
            return 0

        seen.update(added)
        if self.store:
            self.store.save(target_id, seen)
        logger.debug(f"{target_id}: committed {len(added)} findings ({len(seen)} total)")
        return len(added)

    def seen_count(self, target_id: str) -> int:
        return len(self._partition(target_id))

    def reset(self, target_id: str | None = None) -> None:
        """Forget committed findings for one target, or for all targets."""
        with self._lock:
            if target_id is None:
                self._partitions.clear()
            else:
                self._partitions.pop(target_id, None)
        if self.store:
            if target_id is None:
                self.store.clear()
            else:
                self.store.delete(target_id)
        logger.info(f"Reset dedup state for {target_id or 'all targets'}")
