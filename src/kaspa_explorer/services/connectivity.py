"""
Connectivity tracker - last known peer view.

The cache always holds the most recent view observed while the node was
reachable; while it is not, that view is served instead of an error.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from kaspa_explorer.core.cache import SnapshotCache
from kaspa_explorer.core.models import ConnectivitySnapshot, ConnectivityState, PeerEntry
from kaspa_explorer.exceptions import UpstreamError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.gateway import NodeConnection

logger = logging.getLogger(__name__)

SELF_PEER_ID = "local"


def _peer_entry(raw: dict[str, Any]) -> PeerEntry:
    ping_ms = raw.get("lastPingDuration")
    last_seen = f"{ping_ms}ms ping" if ping_ms is not None else "recent"
    return PeerEntry(
        id=f"peer-{raw.get('id') or raw.get('address', 'unknown')}",
        address=str(raw.get("address", "")),
        connected=True,
        last_seen_label=last_seen,
    )


class ConnectivityTracker:
    """State machine unknown -> connected <-> disconnected with a cached view."""

    def __init__(
        self,
        connection: NodeConnection,
        cache: SnapshotCache[ConnectivitySnapshot] | None = None,
        include_remote_peers: bool = True,
        clock: Callable[[], float] = time.time,
        metrics: ExplorerMetrics | None = None,
    ) -> None:
        self.connection = connection
        self.cache = cache if cache is not None else SnapshotCache(clock=clock)
        self.include_remote_peers = include_remote_peers
        self._clock = clock
        self.metrics = metrics
        self.state = ConnectivityState.UNKNOWN

    async def get_peer_view(self) -> ConnectivitySnapshot:
        """Return the current or last known peer view. Never raises."""
        client = self.connection.client
        if client is None or not self.connection.is_connected:
            return self._fallback("disconnected")

        try:
            await client.get_info()
        except UpstreamError as exc:
            logger.error(
                "Failed to get peer info: %s",
                exc,
                extra={"event": "connectivity.liveness_failed"},
            )
            return self._fallback("error")

        peers = [
            PeerEntry(
                id=SELF_PEER_ID,
                address=self.connection.server_url,
                connected=True,
                last_seen_label="now",
            )
        ]
        if self.include_remote_peers:
            peers.extend(await self._remote_peers(client))

        snapshot = ConnectivitySnapshot(
            peers=tuple(peers),
            state=ConnectivityState.CONNECTED,
            captured_at=self._clock(),
        )
        if self.state is not ConnectivityState.CONNECTED:
            logger.info(
                "kaspad reachable (%s -> connected)",
                self.state.value,
                extra={"event": "connectivity.state_changed", "state": "connected"},
            )
        self.state = ConnectivityState.CONNECTED
        self.cache.replace(snapshot)
        return snapshot

    async def _remote_peers(self, client: Any) -> list[PeerEntry]:
        try:
            raw_peers = await client.get_connected_peer_info()
        except UpstreamError as exc:
            logger.debug("Connected peer list unavailable: %s", exc)
            return []
        return [_peer_entry(raw) for raw in raw_peers if isinstance(raw, dict)]

    def _fallback(self, reason: str) -> ConnectivitySnapshot:
        if self.state is not ConnectivityState.DISCONNECTED:
            logger.warning(
                "kaspad unreachable (%s -> disconnected, %s)",
                self.state.value,
                reason,
                extra={"event": "connectivity.state_changed", "state": "disconnected", "reason": reason},
            )
        self.state = ConnectivityState.DISCONNECTED
        if self.metrics is not None:
            self.metrics.peer_view_fallbacks.labels(reason=reason).inc()

        cached = self.cache.get()
        if cached is not None and cached.peers:
            return cached
        return ConnectivitySnapshot(
            peers=(
                PeerEntry(
                    id="local-node",
                    address=self.connection.server_url,
                    connected=False,
                    last_seen_label=reason,
                ),
            ),
            state=ConnectivityState.DISCONNECTED,
            captured_at=self._clock(),
        )
