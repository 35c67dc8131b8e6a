"""Storage backends for dedup state.

This module provides:
- Cache: Abstract base class for key/value state
- FileCache: File-based implementation with atomic writes
- SeenFindingsStore: Per-target sets of already-notified findings
"""

from src.storage.cache.base import Cache
from src.storage.cache.file_caching import FileCache
from src.storage.seen_findings import SeenFindingsStore

__all__ = [
    "Cache",
    "FileCache",
    "SeenFindingsStore",
]
