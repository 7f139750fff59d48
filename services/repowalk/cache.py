"""
Disk-backed response cache.

One file per URL under the cache directory:
  - file name: SHA1 of the URL (keeps names bounded and filesystem safe)
  - content: raw response body
  - mtime: time the body was fetched (no separate metadata file)

An entry is fresh while now - mtime < ttl.
"""

from __future__ import annotations

import hashlib
import os
import threading
import time
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from loguru import logger


def cache_key(url: str) -> str:
    """Stable file name for a URL."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


class ResponseCache:
    """
    TTL cache of response bodies keyed by URL.

    Lookups and stores for the same URL can be serialized with lock(url) so
    concurrent fetchers do not race to populate one entry.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        ttl: int = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            cache_dir: Directory holding one file per cached URL.
            ttl: Default time-to-live in seconds.
            enabled: When False every lookup misses and nothing is stored.
            clock: Time source, injectable for tests.
        """
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self.enabled = enabled
        self._clock = clock

        # Locks live only while some fetch of their URL holds them.
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

        if enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Response cache at {self.cache_dir} (ttl={ttl}s)")

    def path_for(self, url: str) -> Path:
        return self.cache_dir / cache_key(url)

    @staticmethod
    def _is_entry(path: Path) -> bool:
        """Cached bodies only; half-written temp files are not entries."""
        return path.is_file() and path.suffix != ".tmp"

    @contextmanager
    def lock(self, url: str) -> Iterator[None]:
        """Serialize the check-then-fetch-then-store sequence for one URL."""
        key = cache_key(url)
        with self._locks_guard:
            url_lock = self._locks.get(key)
            if url_lock is None:
                url_lock = threading.Lock()
                self._locks[key] = url_lock
        with url_lock:
            yield

    def get(self, url: str, ttl: Optional[int] = None) -> Optional[bytes]:
        """Return the cached body if present and fresh, otherwise None."""
        if not self.enabled:
            return None

        ttl = self.ttl if ttl is None else ttl
        path = self.path_for(url)
        try:
            fetched_at = path.stat().st_mtime
        except FileNotFoundError:
            return None

        age = self._clock() - fetched_at
        if age >= ttl:
            logger.debug(f"Cache stale ({age:.0f}s >= {ttl}s): {url}")
            return None

        try:
            body = path.read_bytes()
        except FileNotFoundError:
            return None

        logger.debug(f"Cache hit ({age:.0f}s old): {url}")
        return body

    def put(self, url: str, body: bytes) -> None:
        """Store a body, stamping it with the current time."""
        if not self.enabled:
            return

        path = self.path_for(url)
        tmp_path = path.with_name(f"{path.name}.{threading.get_ident()}.tmp")
        try:
            tmp_path.write_bytes(body)
            now = self._clock()
            os.utime(tmp_path, (now, now))
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def invalidate(self, url: str) -> bool:
        """Drop the entry for one URL. Returns True if something was removed."""
        try:
            self.path_for(url).unlink()
            logger.debug(f"Cache invalidated: {url}")
            return True
        except FileNotFoundError:
            return False

    def clear(self) -> int:
        """Remove every cached entry; returns how many were removed."""
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for entry in self.cache_dir.iterdir():
            if self._is_entry(entry):
                entry.unlink()
                removed += 1
        logger.info(f"Cleared {removed} cached responses from {self.cache_dir}")
        return removed

    def stats(self) -> dict[str, Any]:
        """Entry count and total size of the cache directory."""
        entries = 0
        size = 0
        if self.cache_dir.exists():
            for entry in self.cache_dir.iterdir():
                if self._is_entry(entry):
                    entries += 1
                    size += entry.stat().st_size
        return {
            "enabled": self.enabled,
            "path": str(self.cache_dir),
            "ttl": self.ttl,
            "entries": entries,
            "size_bytes": size,
        }
