"""
Kaspa Explorer - Prometheus Metrics

Counters for node calls and for every degraded path the services absorb, so
fallbacks that never reach the caller as errors stay visible.
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest


class ExplorerMetrics:
    """
    Metrics collector owned by one explorer instance.

    Each instance uses its own registry so several apps (or tests) can live
    in the same process without duplicate registration errors.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        # ==================== NODE RPC ====================
        self.rpc_calls = Counter(
            "kaspa_explorer_rpc_calls_total",
            "Node RPC calls by method and outcome",
            ["method", "outcome"],
            registry=self.registry,
        )
        self.rpc_latency = Histogram(
            "kaspa_explorer_rpc_latency_seconds",
            "Node RPC call latency",
            ["method"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 20],
            registry=self.registry,
        )

        # ==================== TIP CHAIN ====================
        self.tip_walk_blocks = Histogram(
            "kaspa_explorer_tip_walk_blocks",
            "Blocks collected per tip-chain walk",
            buckets=[0, 1, 5, 10, 20, 50, 100],
            registry=self.registry,
        )

        # ==================== MEMPOOL ====================
        self.mempool_snapshots = Counter(
            "kaspa_explorer_mempool_snapshots_total",
            "Mempool views served by source (fresh, cached, size_only, empty)",
            ["source"],
            registry=self.registry,
        )

        # ==================== BALANCES ====================
        self.balance_discrepancies = Counter(
            "kaspa_explorer_balance_discrepancies_total",
            "Balance fetches where summed UTXOs differed from the indexed balance",
            registry=self.registry,
        )
        self.utxo_enumeration_failures = Counter(
            "kaspa_explorer_utxo_enumeration_failures_total",
            "UTXO enumerations that degraded to the indexed balance",
            ["reason"],
            registry=self.registry,
        )

        # ==================== CONNECTIVITY ====================
        self.peer_view_fallbacks = Counter(
            "kaspa_explorer_peer_view_fallbacks_total",
            "Peer views served from cache or synthesized while the node was unreachable",
            ["reason"],
            registry=self.registry,
        )

    def record_rpc(self, method: str, outcome: str, duration: float) -> None:
        """Record one node call."""
        self.rpc_calls.labels(method=method, outcome=outcome).inc()
        self.rpc_latency.labels(method=method).observe(duration)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
