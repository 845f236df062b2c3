"""Disk-backed result cache: one JSON file per key, stamped with capture time.

The cache is advisory. Nothing here raises: a missing, unreadable or foreign
file is a miss, and a failed write is a no-op.
"""

import json
import os
import tempfile
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from cellar import log

FILE_PREFIX = "cache-"
FILE_SUFFIX = ".json"


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    # Marked by expire(); timestamp still holds the capture time
    expired: bool = False

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.timestamp

    def is_fresh(self, max_age: float, now: float | None = None) -> bool:
        return not self.expired and self.age(now) < max_age

    def to_dict(self) -> dict:
        return {"data": self.data, "timestamp": self.timestamp, "expired": self.expired}

    @classmethod
    def from_dict(cls, raw: dict) -> "CacheEntry":
        timestamp = raw["timestamp"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise TypeError(f"timestamp must be a number, got {type(timestamp).__name__}")
        return cls(data=raw["data"], timestamp=float(timestamp), expired=raw.get("expired") is True)


def _is_empty(value) -> bool:
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


class Cache:
    """Cache files under a single application-owned directory."""

    def __init__(self, directory: str):
        self.directory = directory

    def path(self, key: str) -> str:
        # Percent-encoding is reversible, so distinct keys never share a file.
        safe = quote(key, safe="")
        return os.path.join(self.directory, f"{FILE_PREFIX}{safe}{FILE_SUFFIX}")

    def exists(self, key: str) -> bool:
        return os.path.exists(self.path(key))

    def load(self, key: str, decode: Callable[[Any], Any] | None = None) -> CacheEntry | None:
        """Read the entry for *key*, or None if absent or unparsable.

        *decode* converts the stored JSON payload into a domain value; if it
        raises, the entry is treated as absent.
        """
        path = self.path(key)
        try:
            with open(path, encoding="utf-8") as f:
                entry = CacheEntry.from_dict(json.load(f))
            if decode is not None:
                entry.data = decode(entry.data)
        except FileNotFoundError:
            return None
        except Exception as e:
            log.debug(f"ignoring cache file {path}: {e}")
            return None
        return entry

    def save(
        self,
        key: str,
        value,
        encode: Callable[[Any], Any] | None = None,
        now: float | None = None,
    ) -> bool:
        """Stamp *value* with the current time and atomically replace the file.

        Returns True if the entry was written.
        """
        try:
            data = encode(value) if encode is not None else value
        except Exception as e:
            log.debug(f"cannot encode cache value for {key!r}: {e}")
            return False
        return self._write(key, CacheEntry(data=data, timestamp=time.time() if now is None else now))

    def _write(self, key: str, entry: CacheEntry) -> bool:
        path = self.path(key)
        tmp_path = None
        try:
            payload = json.dumps(entry.to_dict(), indent=2, sort_keys=True)
            os.makedirs(self.directory, exist_ok=True)
            # Temp file in the same directory so the rename stays atomic
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{FILE_PREFIX}")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path is not None:
                with suppress(OSError):
                    os.unlink(tmp_path)
            log.debug(f"cache write for {key!r} failed: {e}")
            return False
        return True

    def expire(self, key: str) -> bool:
        """Mark the entry stale without discarding it. Returns False if there was none."""
        entry = self.load(key)
        if entry is None:
            return False
        entry.expired = True
        return self._write(key, entry)

    def delete(self, key: str) -> None:
        try:
            os.remove(self.path(key))
        except OSError:
            pass

    def clear(self) -> int:
        """Remove every cache file in the directory. Returns the count removed."""
        try:
            names = os.listdir(self.directory)
        except OSError:
            return 0
        removed = 0
        for name in names:
            if name.startswith(FILE_PREFIX) and name.endswith(FILE_SUFFIX):
                try:
                    os.remove(os.path.join(self.directory, name))
                    removed += 1
                except OSError:
                    pass
        return removed

    def restore_if_needed(
        self,
        current,
        key: str,
        max_age: float,
        force_refresh: bool = False,
        decode: Callable[[Any], Any] | None = None,
    ):
        """Decide what to show now and whether to fetch.

        Returns ``(value, needs_fetch)``. With no cache entry, *current* is
        returned and a fetch is needed. Otherwise an empty *current* is
        replaced by the cached value, and a fetch is needed when forced or
        when the entry is stale.
        """
        entry = self.load(key, decode=decode)
        if entry is None:
            return current, True
        value = entry.data if _is_empty(current) else current
        return value, force_refresh or not entry.is_fresh(max_age)
