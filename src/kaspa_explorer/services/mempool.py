"""
Mempool snapshotter.

Serves a bounded, deterministic window of mempool entries and never fails:
fresh fetch (with retries) -> recent cached snapshot -> size-only view from
getInfo -> empty view.

The window start is derived from a hash of the sorted entry ids. Identical
mempools always show the same window, while any change to the id set moves
it, so the display rotates instead of freezing on one prefix. The seed has
no memory of the previous snapshot, so the window may jump rather than
slide between refreshes.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Sequence

from kaspa_explorer.core.cache import SnapshotCache
from kaspa_explorer.core.models import MempoolEntry, MempoolSnapshot, SnapshotSource
from kaspa_explorer.core.resilience import AsyncRetryStrategy, FallbackChain, FallbackStep, run_shielded
from kaspa_explorer.exceptions import ExplorerError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.gateway import NodeConnection
from kaspa_explorer.services.records import as_int, parse_mempool_entry

logger = logging.getLogger(__name__)


def window_seed(sorted_ids: Sequence[str]) -> int:
    """First 8 bytes (big endian) of SHA-256 over the newline-joined ids."""
    digest = hashlib.sha256("\n".join(sorted_ids).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def window_start(sorted_ids: Sequence[str]) -> int:
    if not sorted_ids:
        return 0
    return window_seed(sorted_ids) % len(sorted_ids)


def _sort_key(entry: MempoolEntry) -> tuple[str, int, int, int]:
    return (entry.id, entry.input_count, entry.output_count, entry.total_output_value)


def build_snapshot(raw_entries: Sequence[dict[str, Any]], max_display: int, captured_at: float) -> MempoolSnapshot:
    """Normalize raw mempool entries and cut the wrap-around display window."""
    entries = sorted((parse_mempool_entry(raw) for raw in raw_entries), key=_sort_key)
    total = len(entries)
    start = window_start([entry.id for entry in entries])
    size = min(max(max_display, 0), total)
    window = tuple(entries[(start + offset) % total] for offset in range(size))
    return MempoolSnapshot(
        captured_at=captured_at,
        total_size=total,
        sampled_entries=window,
        source=SnapshotSource.FRESH,
        window_start=start,
    )


class MempoolSnapshotter:
    """Owns the mempool snapshot cache and the retry/fallback policy."""

    def __init__(
        self,
        connection: NodeConnection,
        max_display: int = 50,
        retry: AsyncRetryStrategy | None = None,
        staleness_seconds: float = 15.0,
        cache: SnapshotCache[MempoolSnapshot] | None = None,
        include_orphan_pool: bool = True,
        filter_transaction_pool: bool = False,
        clock: Callable[[], float] = time.time,
        metrics: ExplorerMetrics | None = None,
    ) -> None:
        self.connection = connection
        self.max_display = max_display
        self.retry = retry or AsyncRetryStrategy(max_attempts=3, base_delay=0.25)
        self.staleness_seconds = staleness_seconds
        self.cache = cache if cache is not None else SnapshotCache(clock=clock)
        self.include_orphan_pool = include_orphan_pool
        self.filter_transaction_pool = filter_transaction_pool
        self._clock = clock
        self.metrics = metrics

    @property
    def last_snapshot(self) -> MempoolSnapshot | None:
        return self.cache.get()

    async def get_mempool_view(self, max_display: int | None = None) -> MempoolSnapshot:
        """Return the best available mempool view. Never raises ExplorerError."""
        limit = self.max_display if max_display is None else max_display
        chain: FallbackChain[MempoolSnapshot] = FallbackChain(
            [
                FallbackStep(SnapshotSource.FRESH.value, lambda: self._fresh(limit)),
                FallbackStep(SnapshotSource.CACHED.value, lambda: self._cached(limit)),
                FallbackStep(SnapshotSource.SIZE_ONLY.value, self._size_only),
                FallbackStep(SnapshotSource.EMPTY.value, self._empty),
            ],
            component="mempool",
        )
        try:
            _, snapshot = await chain.run()
        except ExplorerError:
            snapshot = await self._empty()

        if self.metrics is not None:
            self.metrics.mempool_snapshots.labels(source=snapshot.source.value).inc()
        return snapshot

    async def _fresh(self, limit: int) -> MempoolSnapshot:
        client = self.connection.require()
        # Shielded so a snapshot finished after the caller disconnected is still cached
        return await run_shielded(self._fetch_and_store(client, limit), component="mempool")

    async def _fetch_and_store(self, client: Any, limit: int) -> MempoolSnapshot:
        raw_entries = await self.retry.execute(
            client.get_mempool_entries,
            self.include_orphan_pool,
            self.filter_transaction_pool,
        )
        snapshot = build_snapshot(raw_entries, limit, self._clock())
        self.cache.replace(snapshot)
        logger.info(
            "Mempool snapshot refreshed: %d entries, showing %d from index %d",
            snapshot.total_size,
            len(snapshot.sampled_entries),
            snapshot.window_start,
            extra={"event": "mempool.refreshed", "size": snapshot.total_size},
        )
        return snapshot

    async def _cached(self, limit: int) -> MempoolSnapshot | None:
        snapshot = self.cache.get_fresh(self.staleness_seconds)
        if snapshot is None:
            return None
        logger.warning(
            "Serving cached mempool snapshot aged %.1fs",
            snapshot.age(self._clock()),
            extra={"event": "mempool.cached_fallback"},
        )
        return replace(
            snapshot,
            source=SnapshotSource.CACHED,
            sampled_entries=snapshot.sampled_entries[: max(limit, 0)],
        )

    async def _size_only(self) -> MempoolSnapshot:
        client = self.connection.require()
        info = await client.get_info()
        size = as_int(info.get("mempoolSize"))
        logger.warning(
            "Serving size-only mempool view (%d entries)",
            size,
            extra={"event": "mempool.size_only_fallback", "size": size},
        )
        return MempoolSnapshot(captured_at=self._clock(), total_size=size, source=SnapshotSource.SIZE_ONLY)

    async def _empty(self) -> MempoolSnapshot:
        logger.error("Mempool unavailable, serving empty view", extra={"event": "mempool.empty_fallback"})
        return MempoolSnapshot(captured_at=self._clock(), total_size=0, source=SnapshotSource.EMPTY)
