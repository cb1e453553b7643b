"""Plan/result cache used to short-circuit repeated queries.

The session loop only depends on the ``PlanCache`` protocol; a cache miss
or a cache error degrades silently to the full loop.  ``InMemoryPlanCache``
is a bounded, exact-match implementation keyed by the SHA-256 of the
normalized query text.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheLookup:
    """Answer to ``PlanCache.lookup``."""

    found: bool
    cached_plan: Mapping[str, Any] | None = None
    candidates: tuple[Any, ...] = ()
    match_kind: str = "none"
    entry_id: str | None = None


@dataclass(frozen=True)
class CacheEntry:
    id: str
    query: str
    intent_state: Mapping[str, Any]
    plan: Mapping[str, Any]
    candidates: tuple[Any, ...]
    elapsed_ms: float
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)


@runtime_checkable
class PlanCache(Protocol):
    """Memo of prior sessions' plans."""

    def lookup(self, query: str) -> CacheLookup: ...

    def store(
        self,
        query: str,
        intent_state: Mapping[str, Any],
        plan: Mapping[str, Any],
        candidates: Sequence[Any],
        elapsed_ms: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> str: ...


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def query_key(query: str) -> str:
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


class InMemoryPlanCache:
    """Bounded exact-match ``PlanCache``.

    Parameters
    ----------
    max_entries:
        Oldest entries are evicted once this many are stored.
    """

    def __init__(self, max_entries: int = 256) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stores = 0

    def lookup(self, query: str) -> CacheLookup:
        key = query_key(query)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return CacheLookup(found=False)
            self._entries.move_to_end(key)
            self._hits += 1
        logger.debug("Plan cache hit for %r (entry %s)", query, entry.id)
        return CacheLookup(
            found=True,
            cached_plan=entry.plan,
            candidates=entry.candidates,
            match_kind="exact",
            entry_id=entry.id,
        )

    def store(
        self,
        query: str,
        intent_state: Mapping[str, Any],
        plan: Mapping[str, Any],
        candidates: Sequence[Any],
        elapsed_ms: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        entry = CacheEntry(
            id=f"plan_{uuid.uuid4().hex[:10]}",
            query=normalize_query(query),
            intent_state=dict(intent_state),
            plan=dict(plan),
            candidates=tuple(candidates),
            elapsed_ms=elapsed_ms,
            metadata=dict(metadata or {}),
        )
        key = query_key(query)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
            self._stores += 1
        return entry.id

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "stores": self._stores,
                "hit_rate": self._hits / total if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
