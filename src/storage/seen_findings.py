"""Persistence for the set of already-notified findings per target."""

import logging

from src.consts import SEEN_FINDINGS_CATEGORY
from src.storage.cache.base import Cache

logger = logging.getLogger(__name__)


class SeenFindingsStore:
    """Stores, per target id, the identity keys of findings already notified."""

    def __init__(self, cache: Cache, category: str = SEEN_FINDINGS_CATEGORY):
        """Initialize SeenFindingsStore.

        Args:
            cache: Cache instance for storage
            category: Cache category holding the partitions
        """
        self.cache = cache
        self.category = category

    def load(self, target_id: str) -> set[str]:
        """Load the stored identity keys for a target (empty if none)."""
        value = self.cache.get(target_id, self.category)
        if value is None:
            return set()
        if not isinstance(value, list):
            logger.warning(f"Ignoring malformed dedup state for {target_id}")
            return set()
        return {str(key) for key in value}

    def save(self, target_id: str, keys: set[str]) -> None:
        """Replace the stored identity keys for a target."""
        self.cache.put(target_id, sorted(keys), self.category)
        logger.debug(f"Persisted {len(keys)} seen findings for {target_id}")

    def delete(self, target_id: str) -> None:
        self.cache.delete(target_id, self.category)

    def clear(self) -> None:
        self.cache.clear(self.category)

    def target_ids(self) -> list[str]:
        """Return the ids of every target with persisted state."""
        return self.cache.list_keys(self.category)
