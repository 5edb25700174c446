"""
A caller-owned, file-based JSON cache with a time-to-live for release listings.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


class ReleaseCache:
    """
    Keeps release API responses on disk so repeated checks within the TTL do
    not hit the release source again. A forced refresh invalidates the entry
    for the listing it re-fetches.
    """

    MAX_ENTRY_KB = 2048

    def __init__(self, config_dir_path: Path, ttl_seconds: float = 600):
        """
        Args:
            config_dir_path: The directory under which ``cache/`` is created.
            ttl_seconds: The maximum age of an entry before it expires.
        """
        self.cache_dir = config_dir_path / "cache"
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl_seconds = ttl_seconds
        self.hits = 0
        self.misses = 0

    def _entry_path(self, url: str) -> Path:
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()  # noqa: S324
        return self.cache_dir / f"{digest}.json"

    def get(self, url: str) -> Any | None:
        """Returns the cached listing for ``url``, or None when absent or stale."""
        entry = self._read(self._entry_path(url))
        if entry is None or entry.get("url") != url:
            self.misses += 1
            return None
        age = time.time() - float(entry.get("fetched_at") or 0)
        if age > self.ttl_seconds:
            log.debug(f"Release cache entry expired ({age:.0f}s old): {url}")
            self.invalidate(url)
            self.misses += 1
            return None
        self.hits += 1
        return entry.get("value")

    def set(self, url: str, value: Any) -> bool:
        entry = {"url": url, "fetched_at": time.time(), "value": value}
        try:
            serialized = json.dumps(entry, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            log.warning(f"Release listing for '{url}' is not cacheable: {e}")
            return False
        size_kb = len(serialized.encode("utf-8")) / 1024
        if size_kb > self.MAX_ENTRY_KB:
            log.debug(f"Release listing for '{url}' is too large to cache ({size_kb:.1f} KB)")
            return False
        try:
            self._entry_path(url).write_text(serialized, encoding="utf-8")
            return True
        except OSError as e:
            log.warning(f"Release cache write failed for '{url}': {e}")
            return False

    @staticmethod
    def _read(path: Path) -> dict | None:
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.debug(f"Unreadable release cache entry '{path.name}': {e}")
            return None
        return data if isinstance(data, dict) else None

    def invalidate(self, url: str) -> bool:
        try:
            self._entry_path(url).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            log.warning(f"Failed to invalidate release cache entry '{url}': {e}")
            return False

    def entry_count(self) -> int:
        return sum(1 for _ in self.cache_dir.glob("*.json"))

    def clear(self) -> bool:
        """Removes all cached listings."""
        log.info("Clearing all release cache entries...")
        try:
            for entry in self.cache_dir.glob("*.json"):
                entry.unlink()
            return True
        except OSError as e:
            log.error(f"Failed to clear release cache: {e}")
            return False
