"""Tests for file-based cache implementation."""

import json
import tempfile
from pathlib import Path

import pytest

from src.storage.cache.file_caching import FileCache


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def file_cache(temp_dir: Path) -> FileCache:
    """Create a FileCache with temporary directory."""
    return FileCache(cache_dir=temp_dir)


class TestFileCache:
    """Tests for FileCache class."""

    def test_put_and_get(self, file_cache: FileCache) -> None:
        """Test basic put and get operations."""
        file_cache.put("key1", "value1", "test")
        result = file_cache.get("key1", "test")
        assert result == "value1"

    def test_get_nonexistent(self, file_cache: FileCache) -> None:
        """Test getting nonexistent key."""
        result = file_cache.get("nonexistent", "test")
        assert result is None

    def test_put_complex_value(self, file_cache: FileCache) -> None:
        """Test putting complex JSON-serializable values."""
        value = {
            "string": "test",
            "number": 42,
            "list": [1, 2, 3],
            "nested": {"key": "value"},
        }
        file_cache.put("complex", value, "test")
        assert file_cache.get("complex", "test") == value

    def test_put_overwrites(self, file_cache: FileCache) -> None:
        file_cache.put("key", ["a"], "test")
        file_cache.put("key", ["a", "b"], "test")
        assert file_cache.get("key", "test") == ["a", "b"]

    def test_put_leaves_no_temp_files(self, file_cache: FileCache, temp_dir: Path) -> None:
        """Test that the atomic write cleans up after itself."""
        file_cache.put("key", "value", "test")
        assert list((temp_dir / "test").glob("*.tmp")) == []
        assert len(list((temp_dir / "test").glob("*.json"))) == 1

    def test_categories_are_separate(self, file_cache: FileCache) -> None:
        """Test that the same key in different categories stores different values."""
        file_cache.put("key", "one", "cat1")
        file_cache.put("key", "two", "cat2")
        assert file_cache.get("key", "cat1") == "one"
        assert file_cache.get("key", "cat2") == "two"

    def test_keys_with_unsafe_characters(self, file_cache: FileCache) -> None:
        """Test keys such as image references with slashes and colons."""
        key = "registry.example.com:5000/team/web-app:latest"
        file_cache.put(key, [1], "test")
        assert file_cache.get(key, "test") == [1]

    def test_corrupt_entry_reads_as_missing(self, file_cache: FileCache) -> None:
        file_cache.put("key", "value", "test")
        file_cache._cache_path("key", "test").write_text("{not json", encoding="utf-8")
        assert file_cache.get("key", "test") is None

    def test_entry_metadata(self, file_cache: FileCache) -> None:
        file_cache.put("key", "value", "test")
        entry = json.loads(file_cache._cache_path("key", "test").read_text(encoding="utf-8"))
        assert entry["original_key"] == "key"
        assert "cached_at" in entry

    def test_delete(self, file_cache: FileCache) -> None:
        """Test deleting cache entries."""
        file_cache.put("key", "value", "test")
        assert file_cache.get("key", "test") == "value"

        assert file_cache.delete("key", "test") is True
        assert file_cache.get("key", "test") is None
        assert file_cache.delete("key", "test") is False

    def test_clear_category(self, file_cache: FileCache) -> None:
        """Test clearing a specific category."""
        file_cache.put("key1", "value1", "cat1")
        file_cache.put("key2", "value2", "cat1")
        file_cache.put("key3", "value3", "cat2")

        assert file_cache.clear("cat1") == 2
        assert file_cache.get("key1", "cat1") is None
        assert file_cache.get("key3", "cat2") == "value3"

    def test_clear_all(self, file_cache: FileCache) -> None:
        """Test clearing all categories."""
        file_cache.put("key1", "value1", "cat1")
        file_cache.put("key2", "value2", "cat2")

        assert file_cache.clear() == 2
        assert file_cache.get("key1", "cat1") is None
        assert file_cache.get("key2", "cat2") is None

    def test_clear_missing_directory(self, temp_dir: Path) -> None:
        assert FileCache(cache_dir=temp_dir / "missing").clear() == 0

    def test_list_keys(self, file_cache: FileCache) -> None:
        """Test listing original keys in a category."""
        file_cache.put("web-app", [], "seen_findings")
        file_cache.put("api", [], "seen_findings")

        assert sorted(file_cache.list_keys("seen_findings")) == ["api", "web-app"]
        assert file_cache.list_keys("empty") == []
