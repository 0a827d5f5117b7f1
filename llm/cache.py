"""
Response cache for AI generations.

Deduplicates identical requests within a TTL window. A miss is never an
error, only a signal to call a provider.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from monitoring.metrics import record_cache_lookup

logger = logging.getLogger(__name__)

# Options that change what a provider would generate
SAMPLING_KEYS = ("temperature", "max_tokens", "top_p", "system", "schema")


def normalize_prompt(prompt: str) -> str:
    """Collapse whitespace so cosmetic differences share a fingerprint."""
    return " ".join(prompt.split())


def fingerprint(prompt: str, model: Optional[str], options: Optional[Dict[str, Any]] = None) -> str:
    """
    Deterministic hash identifying an AI request.

    Args:
        prompt: Prompt text
        model: Model identifier (None when the orchestrator picks)
        options: Sampling options; keys outside SAMPLING_KEYS are ignored

    Returns:
        Hex SHA-256 digest
    """
    options = options or {}
    sampling = {k: options[k] for k in SAMPLING_KEYS if options.get(k) is not None}
    key_data = {
        "prompt": normalize_prompt(prompt),
        "model": model or "auto",
        "options": sampling,
    }
    raw = json.dumps(key_data, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """An immutable cached response."""
    fingerprint: str
    response: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResponseCache:
    """
    In-process TTL cache keyed by request fingerprint.

    Writes are insert-or-ignore: a live entry is never replaced, so concurrent
    workers racing on the same fingerprint keep the first response.
    """

    def __init__(
        self,
        default_ttl: float = 3600.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, fp: str) -> Optional[CacheEntry]:
        """Return the live entry for a fingerprint, or None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(fp)
            if entry is not None and entry.is_expired(now):
                del self._entries[fp]
                entry = None
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        record_cache_lookup(entry is not None)
        return entry

    def put(self, fp: str, response: Any, ttl: Optional[float] = None) -> bool:
        """
        Store a response unless a live entry already exists.

        Returns:
            True if a new entry was written
        """
        now = self._clock()
        entry = CacheEntry(
            fingerprint=fp,
            response=response,
            created_at=now,
            ttl=self.default_ttl if ttl is None else ttl,
        )
        with self._lock:
            existing = self._entries.get(fp)
            if existing is not None and not existing.is_expired(now):
                return False
            if existing is None and len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries.pop(fp, None)
            self._entries[fp] = entry
        return True

    def invalidate_all(self) -> int:
        """Drop every entry. Returns the number removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Response cache cleared ({count} entries)")
        return count

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [fp for fp, e in self._entries.items() if e.is_expired(now)]
            for fp in expired:
                del self._entries[fp]
        if expired:
            logger.debug(f"Response cache sweep removed {len(expired)} entries")
        return len(expired)

    def _evict(self, now: float):
        # Caller holds the lock
        for fp in [fp for fp, e in self._entries.items() if e.is_expired(now)]:
            del self._entries[fp]
        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 4) if total else 0.0,
            }

    def __len__(self) -> int:
        return len(self._entries)
