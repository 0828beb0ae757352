"""
Thread-safe in-memory cache for AI responses.

Stores chat and planning answers keyed by a fingerprint of the normalized
request so that repeated questions skip the LLM round trip. Entries expire
after a TTL chosen by operation type, and the store is capped by entry
count: when a new key would overflow it, the oldest inserted entry goes.
"""
import os
import json
import time
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

CACHE_TYPES = ("chat", "diagnosis", "planning")

# Rough per-entry bookkeeping overhead added to the serialized payload size
_ENTRY_OVERHEAD_BYTES = 1024


class CacheConfig(BaseModel):
    max_size: int = Field(500, ge=0)
    default_ttl: float = Field(3600, ge=0)      # 1 hour
    chat_ttl: float = Field(1800, ge=0)         # 30 mins, conversational answers go stale fast
    diagnosis_ttl: float = Field(86400, ge=0)   # 24 hours
    planning_ttl: float = Field(43200, ge=0)    # 12 hours
    enabled: bool = True


class CacheStats(BaseModel):
    """Snapshot of the cache. Every figure, size included, counts live (unexpired) entries only."""

    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float
    entries_by_type: Dict[str, int]
    average_age: float
    memory_estimate: int


def get_cache_config() -> CacheConfig:
    """Read cache settings from the environment, falling back to defaults."""
    return CacheConfig(
        max_size=int(os.getenv("AI_CACHE_MAX_SIZE", "500")),
        default_ttl=float(os.getenv("AI_CACHE_TTL_SECONDS", "3600")),
        chat_ttl=float(os.getenv("AI_CACHE_CHAT_TTL_SECONDS", "1800")),
        diagnosis_ttl=float(os.getenv("AI_CACHE_DIAGNOSIS_TTL_SECONDS", "86400")),
        planning_ttl=float(os.getenv("AI_CACHE_PLANNING_TTL_SECONDS", "43200")),
        enabled=os.getenv("AI_CACHE_ENABLED", "true").lower() != "false",
    )


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float
    operation_type: str
    hit_count: int = 0
    last_accessed_at: float = 0.0


class AIResponseCache:
    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.time):
        self._config = config if config is not None else get_cache_config()
        self._clock = clock
        # insertion order doubles as eviction order
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def _ttl_for(self, operation_type: str) -> float:
        ttls = {
            "chat": self._config.chat_ttl,
            "diagnosis": self._config.diagnosis_ttl,
            "planning": self._config.planning_ttl,
        }
        return ttls.get(operation_type, self._config.default_ttl)

    def get(self, key: str) -> Optional[Any]:
        if not self._config.enabled:
            return None
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= now:
                del self._store[key]
                self._misses += 1
                return None
            entry.hit_count += 1
            entry.last_accessed_at = now
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, operation_type: str):
        if not self._config.enabled or self._config.max_size <= 0:
            return
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + self._ttl_for(operation_type),
            operation_type=operation_type,
            last_accessed_at=now,
        )
        with self._lock:
            if key in self._store:
                # overwrite counts as a fresh insertion
                del self._store[key]
            elif len(self._store) >= self._config.max_size:
                self._store.popitem(last=False)
            self._store[key] = entry

    def has(self, key: str) -> bool:
        """Presence check that honours expiry without touching hit/miss counters."""
        if not self._config.enabled:
            return False
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.expires_at <= self._clock():
                del self._store[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            removed = len(self._store)
            self._store.clear()
            self._hits = 0
            self._misses = 0
        return removed

    def cleanup(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if e.expires_at <= now]
            for k in expired:
                del self._store[k]
        if expired:
            print(f"[AICache] Cleaned up {len(expired)} expired entries")
        return len(expired)

    def get_stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            entries_by_type = {t: 0 for t in CACHE_TYPES}
            total_age = 0.0
            memory = 0
            live = 0
            for entry in self._store.values():
                if entry.expires_at <= now:
                    continue
                live += 1
                entries_by_type[entry.operation_type] = entries_by_type.get(entry.operation_type, 0) + 1
                total_age += now - entry.created_at
                memory += _ENTRY_OVERHEAD_BYTES + _payload_size(entry.value)
            size = live
            hits, misses = self._hits, self._misses

        total_lookups = hits + misses
        return CacheStats(
            size=size,
            max_size=self._config.max_size,
            hits=hits,
            misses=misses,
            hit_rate=(hits / total_lookups) * 100 if total_lookups else 0.0,
            entries_by_type=entries_by_type,
            average_age=total_age / live if live else 0.0,
            memory_estimate=memory,
        )

    def get_config(self) -> CacheConfig:
        return self._config.model_copy()

    def update_config(self, **changes):
        """Replace selected settings. Shrinking max_size evicts the oldest entries right away."""
        config = CacheConfig.model_validate({**self._config.model_dump(), **changes})
        with self._lock:
            self._config = config
            while len(self._store) > config.max_size:
                self._store.popitem(last=False)


def _payload_size(value: Any) -> int:
    try:
        return len(json.dumps(value))
    except (TypeError, ValueError):
        return len(str(value))
