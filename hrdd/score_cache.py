"""
hrdd.score_cache — Thread-safe, bounded cache of per-country score tables.

Recomputing every country's weighted score on each weight change is
cheap but repeated many times by interactive clients that toggle between
a handful of weightings. This cache keeps the most recent score tables.

Design contract:
    - Keyed by (catalogue fingerprint, canonical weight vector). A
      reloaded catalogue with different content never hits stale entries.
    - Bounded by MAX_CACHED_SCORE_TABLES with LRU eviction.
    - Thread-safe via threading.Lock. Computation runs outside the lock.
    - Values are returned as fresh dict copies; callers may mutate them.
    - A miss always recomputes. Correctness never depends on the cache.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from collections.abc import Sequence
from typing import Any

from hrdd.catalogue import Catalogue
from hrdd.hashing import weights_key
from hrdd.risk_engine import RiskEngine

logger = logging.getLogger("hrdd.cache")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MAX_CACHED_SCORE_TABLES: int = int(os.getenv("MAX_CACHED_SCORE_TABLES", "16"))
"""Maximum number of (catalogue, weights) score tables held in memory.
Controlled by MAX_CACHED_SCORE_TABLES env var. Default: 16."""


CacheKey = tuple[str, tuple[str, ...]]


class ScoreCache:
    """Bounded LRU cache of {iso_code: score} tables.

    Usage::

        cache = ScoreCache(engine=RiskEngine())
        scores = cache.get_scores(catalogue, weights=[20, 20, 5, 10, 10])
    """

    def __init__(self, engine: RiskEngine, max_entries: int | None = None) -> None:
        self._engine = engine
        self._max: int = max_entries if max_entries is not None else MAX_CACHED_SCORE_TABLES
        if self._max < 1:
            raise ValueError(f"max_entries must be >= 1, got {self._max!r}")
        self._lock: threading.Lock = threading.Lock()
        self._tables: OrderedDict[CacheKey, dict[str, float]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get_scores(
        self,
        catalogue: Catalogue,
        weights: Sequence[float] | None = None,
    ) -> dict[str, float]:
        """Score table for the catalogue under the given weights.

        Thread-safety:
            Lock is held only during dict operations. Two threads may both
            compute the same table on a concurrent miss; both results are
            identical, so the last writer wins harmlessly.
        """
        effective = self._engine.default_weights if weights is None else tuple(weights)
        key: CacheKey = (catalogue.fingerprint, weights_key(effective))

        with self._lock:
            table = self._tables.get(key)
            if table is not None:
                self._tables.move_to_end(key)
                self._hits += 1
                return dict(table)
            self._misses += 1

        table = self._engine.score_catalogue(catalogue.countries, effective)

        with self._lock:
            while key not in self._tables and len(self._tables) >= self._max:
                evicted_key, _ = self._tables.popitem(last=False)
                logger.debug(
                    "Score cache eviction: catalogue=%s (max_entries=%d)",
                    evicted_key[0][:12], self._max,
                )
            self._tables[key] = table
            self._tables.move_to_end(key)

        return dict(table)

    def invalidate(self) -> int:
        """Drop every cached table. Returns how many were dropped."""
        with self._lock:
            count = len(self._tables)
            self._tables.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._tables)

    @property
    def stats(self) -> dict[str, Any]:
        """Cache statistics for diagnostics."""
        with self._lock:
            return {
                "max_entries": self._max,
                "entries": len(self._tables),
                "hits": self._hits,
                "misses": self._misses,
            }
