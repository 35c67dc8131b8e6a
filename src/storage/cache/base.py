"""Abstract base class for key/value state backends.

Values are grouped by category and must be JSON-serializable.
"""

from abc import ABC, abstractmethod
from typing import Any


class Cache(ABC):
    """Abstract base class for cache implementations.

    Provides a consistent interface for storing data with category-based
    organization.
    """

    @abstractmethod
    def get(self, key: str, category: str = "default") -> Any | None:
        """Get a value from the cache.

        Args:
            key: Unique identifier for the cached value.
            category: Category/namespace for organizing cached data.

        Returns:
            Cached value if found, None otherwise.
        """
        ...

    @abstractmethod
    def put(self, key: str, value: Any, category: str = "default") -> None:
        """Store a value in the cache, replacing any previous value.

        Args:
            key: Unique identifier for the cached value.
            value: Value to cache.
            category: Category/namespace for organizing cached data.
        """
        ...

    @abstractmethod
    def delete(self, key: str, category: str = "default") -> bool:
        """Delete a value from the cache.

        Returns:
            True if value was deleted, False if not found.
        """
        ...

    @abstractmethod
    def clear(self, category: str | None = None) -> int:
        """Clear cached values.

        Args:
            category: If provided, only clear values in this category.
                     If None, clear all cached values.

        Returns:
            Number of entries cleared.
        """
        ...

    @abstractmethod
    def list_keys(self, category: str = "default") -> list[str]:
        """List the original keys stored in a category."""
        ...
