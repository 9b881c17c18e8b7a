"""
Cache backends for geocoding results.

Both backends share one API: values are JSON-serializable and addressed by
(namespace, key). Keys are used verbatim; no case folding or trimming.

- `MemoryCache`: a lock-guarded dict owned by one manager. No TTL, no eviction;
  it grows until `clear()` is called.
- `FileCache`: JSON files on disk (hashed file names, TTL enforced on read,
  atomic writes). Useful when several CLI runs should share results.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any


class MemoryCache:
    """In-process cache, safe to share between threads."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> Any | None:
        with self._lock:
            return self._data.get((namespace, key))

    def set(self, namespace: str, key: str, value: Any) -> None:
        with self._lock:
            self._data[(namespace, key)] = value

    def clear(self, namespace: str) -> int:
        with self._lock:
            keys = [k for k in self._data if k[0] == namespace]
            for k in keys:
                del self._data[k]
            return len(keys)

    def size(self, namespace: str) -> int:
        with self._lock:
            return sum(1 for k in self._data if k[0] == namespace)


@dataclass(frozen=True)
class CacheEntry:
    """Serialized cache envelope stored on disk."""

    created_at_unix: int
    ttl_seconds: int
    value: Any

    def is_expired(self, now_unix: int) -> bool:
        return now_unix - self.created_at_unix > self.ttl_seconds


def _read_entry(path: Path) -> CacheEntry | None:
    """Parse one cache file; None when missing or malformed."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return CacheEntry(
            created_at_unix=int(raw["created_at_unix"]),
            ttl_seconds=int(raw["ttl_seconds"]),
            value=raw["value"],
        )
    except (OSError, ValueError, KeyError, TypeError):
        return None


class FileCache:
    """A filesystem-backed cache keyed by (namespace, key)."""

    def __init__(self, base_dir: Path, default_ttl_seconds: int = 86400):
        self._base_dir = Path(base_dir)
        self._default_ttl_seconds = default_ttl_seconds

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _key_path(self, namespace: str, key: str) -> Path:
        """Return the file path for a cache entry (hash-based)."""
        digest = sha256(f"{namespace}:{key}".encode("utf-8")).hexdigest()
        return self._base_dir / namespace / f"{digest}.json"

    def get(self, namespace: str, key: str) -> Any | None:
        """Read a cached value if present and not expired; otherwise return None.

        Expired files are deleted on the way out.
        """
        path = self._key_path(namespace, key)
        if not path.exists():
            return None

        entry = _read_entry(path)
        if entry is None:
            return None
        if entry.is_expired(int(time.time())):
            path.unlink(missing_ok=True)
            return None
        return entry.value

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Write a JSON-serializable value via a temp file + atomic replace."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl_seconds
        path = self._key_path(namespace, key)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "created_at_unix": int(time.time()),
            "ttl_seconds": int(ttl),
            "value": value,
        }
        tmp = path.with_suffix(f".{threading.get_ident()}.tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def clear(self, namespace: str) -> int:
        removed = 0
        for path in (self._base_dir / namespace).glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def size(self, namespace: str) -> int:
        """Count live entries; expired or unreadable files are not counted."""
        ns_dir = self._base_dir / namespace
        if not ns_dir.is_dir():
            return 0
        now = int(time.time())
        count = 0
        for path in ns_dir.glob("*.json"):
            entry = _read_entry(path)
            if entry is not None and not entry.is_expired(now):
                count += 1
        return count
