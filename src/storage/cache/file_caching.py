"""File-based cache implementation.

Stores cached data as JSON files organized by category directories.
Writes go through a temporary file and an atomic rename, so a crash
mid-write leaves the previous value in place.
"""

import hashlib
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.consts import DEFAULT_DATA_DIR
from src.storage.cache.base import Cache

logger = logging.getLogger(__name__)


class FileCache(Cache):
    """File-based cache implementation.

    Each cached entry includes metadata (cached_at, original_key).

    Directory structure:
        {cache_dir}/
        ├── {category}/
        │   ├── {hash}.json
        │   └── {hash}.json
        └── {category}/
            └── {hash}.json
    """

    def __init__(self, cache_dir: Path | str | None = None):
        """Initialize FileCache.

        Args:
            cache_dir: Directory for cache files. Defaults to {DEFAULT_DATA_DIR}/state.
        """
        if cache_dir is None:
            cache_dir = DEFAULT_DATA_DIR / "state"
        self.cache_dir = Path(cache_dir)

    def _hash_key(self, key: str) -> str:
        """Generate a safe filename from a key using SHA-256 hash."""
        return hashlib.sha256(key.encode()).hexdigest()[:16]

    def _category_dir(self, category: str) -> Path:
        return self.cache_dir / category

    def _cache_path(self, key: str, category: str) -> Path:
        return self._category_dir(category) / f"{self._hash_key(key)}.json"

    def _read_entry(self, path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read cache entry {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed cache entry {path}")
            return None
        return data

    def get(self, key: str, category: str = "default") -> Any | None:
        entry = self._read_entry(self._cache_path(key, category))
        if entry is None:
            return None
        return entry.get("value")

    def put(self, key: str, value: Any, category: str = "default") -> None:
        """Store a value in the cache.

        Args:
            key: Unique identifier for the cached value.
            value: Value to cache (must be JSON-serializable).
            category: Category/namespace for organizing cached data.
        """
        category_dir = self._category_dir(category)
        category_dir.mkdir(parents=True, exist_ok=True)

        entry = {
            "cached_at": datetime.now(UTC).isoformat(),
            "original_key": key,
            "value": value,
        }

        path = self._cache_path(key, category)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(entry, indent=2, default=str), encoding="utf-8")
        os.replace(tmp_path, path)
        logger.debug(f"Cached key={key} in category={category}")

    def delete(self, key: str, category: str = "default") -> bool:
        path = self._cache_path(key, category)
        if path.exists():
            path.unlink()
            logger.debug(f"Deleted cache key={key} from category={category}")
            return True
        return False

    def clear(self, category: str | None = None) -> int:
        count = 0
        if category is not None:
            category_dirs = [self._category_dir(category)]
        elif self.cache_dir.exists():
            category_dirs = [d for d in self.cache_dir.iterdir() if d.is_dir()]
        else:
            category_dirs = []

        for category_dir in category_dirs:
            if not category_dir.exists():
                continue
            for path in category_dir.glob("*.json"):
                path.unlink()
                count += 1

        logger.info(f"Cleared {count} entries from {category or 'all categories'}")
        return count

    def list_keys(self, category: str = "default") -> list[str]:
        """List all original keys in a category.

        Args:
            category: Category to list keys from.

        Returns:
            List of original keys (not hashed).
        """
        keys = []
        category_dir = self._category_dir(category)
        if not category_dir.exists():
            return keys

        for path in sorted(category_dir.glob("*.json")):
            entry = self._read_entry(path)
            if entry is not None:
                keys.append(entry.get("original_key", path.stem))

        return keys
