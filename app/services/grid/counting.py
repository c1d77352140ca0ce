from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Hashable

from app.schemas.grid import PageRequest

from .assembler import CompiledQuery, QueryAssembler
from .errors import StatsUnavailable
from .execution import Executor, StatsProvider
from .sources import GridSource

_LOG = logging.getLogger("app.grid.count")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CountMode(str, Enum):
    NONE = "none"
    EXACT = "exact"
    APPROXIMATE = "approximate"


class CountPhase(str, Enum):
    NOT_REQUESTED = "not_requested"
    APPROXIMATE_REQUESTED = "approximate_requested"
    APPROXIMATE_SUCCEEDED = "approximate_succeeded"
    APPROXIMATE_FAILED = "approximate_failed"
    EXACT_FALLBACK = "exact_fallback"
    EXACT_REQUESTED = "exact_requested"
    EXACT_COMPUTED = "exact_computed"


@dataclass(frozen=True)
class CountResult:
    value: int
    exact: bool
    computed_at: datetime


@dataclass
class _CacheEntry:
    result: CountResult
    expires_at: float


class CountCache:
    """TTL + LRU cache of count results with single-flight computation.

    Concurrent callers asking for the same key share one computation. The lock
    only guards the bookkeeping, so fresh hits and unrelated keys never wait
    on a running count.
    """

    def __init__(self, *, ttl_seconds: float, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[Hashable, _CacheEntry] = OrderedDict()
        self._inflight: dict[Hashable, Future] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> CountResult | None:
        with self._lock:
            return self._fresh_entry(key)

    def get_or_compute(self, key: Hashable, compute: Callable[[], CountResult]) -> CountResult:
        with self._lock:
            cached = self._fresh_entry(key)
            if cached is not None:
                _LOG.debug("count cache hit %s", key)
                return cached
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            _LOG.debug("count cache join in-flight %s", key)
            return future.result()

        _LOG.debug("count cache miss %s", key)
        try:
            result = compute()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            with self._lock:
                self._store(key, result)
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def invalidate(self, source_name: str | None = None) -> None:
        """Drop cached entries, all of them or only those of one source."""
        with self._lock:
            if source_name is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if isinstance(k, tuple) and k and k[0] == source_name]:
                del self._entries[key]

    def _fresh_entry(self, key: Hashable) -> CountResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.result

    def _store(self, key: Hashable, result: CountResult) -> None:
        self._entries[key] = _CacheEntry(result=result, expires_at=self._clock() + self.ttl_seconds)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


def count_fingerprint(mode: CountMode, query: CompiledQuery) -> str:
    payload = json.dumps(
        [
            mode.value,
            query.text,
            [[name, type(value).__name__, str(value)] for name, value in query.parameters],
        ],
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CountStrategy:
    """Computes the total row count for a grid request.

    An approximate count is only attempted when no filter is active, since a
    table-level estimate says nothing about a filtered subset. Any failure of
    the estimate falls back to an exact COUNT(*).
    """

    def __init__(
        self,
        executor: Executor,
        stats_provider: StatsProvider | None = None,
        cache: CountCache | None = None,
    ):
        self.executor = executor
        self.stats_provider = stats_provider
        self.cache = cache

    def count(self, assembler: QueryAssembler, request: PageRequest, mode: CountMode | str) -> CountResult | None:
        mode = CountMode(mode)
        source = assembler.source
        if mode is CountMode.NONE:
            self._phase(source, CountPhase.NOT_REQUESTED)
            return None
        query = assembler.compile_count(request)
        has_filters = bool(request.filters)
        if self.cache is None:
            return self._compute(source, query, mode, has_filters)
        key = (source.name, count_fingerprint(mode, query))
        return self.cache.get_or_compute(key, lambda: self._compute(source, query, mode, has_filters))

    def _compute(self, source: GridSource, query: CompiledQuery, mode: CountMode, has_filters: bool) -> CountResult:
        if mode is CountMode.APPROXIMATE:
            self._phase(source, CountPhase.APPROXIMATE_REQUESTED)
            estimate = self._estimate(source, has_filters)
            if estimate is not None:
                self._phase(source, CountPhase.APPROXIMATE_SUCCEEDED)
                return CountResult(value=estimate, exact=False, computed_at=_utc_now())
            self._phase(source, CountPhase.EXACT_FALLBACK)
        else:
            self._phase(source, CountPhase.EXACT_REQUESTED)
        value = self.executor.fetch_scalar(query)
        self._phase(source, CountPhase.EXACT_COMPUTED)
        return CountResult(value=int(value or 0), exact=True, computed_at=_utc_now())

    def _estimate(self, source: GridSource, has_filters: bool) -> int | None:
        if has_filters:
            self._phase(source, CountPhase.APPROXIMATE_FAILED, "filters are active")
            return None
        if self.stats_provider is None:
            self._phase(source, CountPhase.APPROXIMATE_FAILED, "no statistics provider")
            return None
        try:
            return max(0, int(self.stats_provider.estimate_rows(source)))
        except StatsUnavailable as exc:
            _LOG.warning("Approximate count unavailable for %s, using exact count: %s", source.name, exc.detail)
            self._phase(source, CountPhase.APPROXIMATE_FAILED, exc.detail)
            return None

    @staticmethod
    def _phase(source: GridSource, phase: CountPhase, reason: str = "") -> None:
        if reason:
            _LOG.debug("count %s -> %s (%s)", source.name, phase.value, reason)
        else:
            _LOG.debug("count %s -> %s", source.name, phase.value)
