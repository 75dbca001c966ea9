"""
Balance reconciler.

The node's indexed balance is the fast path; summing the address's UTXOs
is the authoritative value whenever it finishes inside its time budget. The
two can differ by a few blocks during reorgs, which is logged and counted
but never treated as an error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from kaspa_explorer.core.cache import KeyedCache
from kaspa_explorer.core.models import AddressBalanceRecord, UtxoView
from kaspa_explorer.core.resilience import run_shielded
from kaspa_explorer.exceptions import RpcTimeoutError, ServiceUnavailableError, UpstreamError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.address import parse_address
from kaspa_explorer.node.gateway import NodeConnection, NodeRpc
from kaspa_explorer.services.records import parse_utxo

logger = logging.getLogger(__name__)

SOMPI_PER_KAS = 100_000_000


class BalanceReconciler:
    """Fetches, cross-checks and caches per-address balances."""

    def __init__(
        self,
        connection: NodeConnection,
        utxo_timeout: float = 20.0,
        display_limit: int = 100,
        cache_ttl: float = 0.0,
        cache: KeyedCache[AddressBalanceRecord] | None = None,
        clock: Callable[[], float] = time.time,
        metrics: ExplorerMetrics | None = None,
    ) -> None:
        """
        Args:
            connection: Shared node connection
            utxo_timeout: Wall-clock budget for UTXO enumeration in seconds
            display_limit: Maximum UTXOs kept on a record for display
            cache_ttl: Seconds a cached record may be served without refetching;
                0 refetches on every request
            cache: Per-address record cache
            clock: Time source for record timestamps
            metrics: Optional metrics collector
        """
        self.connection = connection
        self.utxo_timeout = utxo_timeout
        self.display_limit = display_limit
        self.cache_ttl = cache_ttl
        self.cache = cache if cache is not None else KeyedCache(clock=clock)
        self._clock = clock
        self.metrics = metrics

    def cached_balance(self, address: str) -> AddressBalanceRecord | None:
        """Last record fetched for ``address``, regardless of age."""
        return self.cache.get(str(parse_address(address)))

    async def get_address_balance(self, address: str) -> AddressBalanceRecord:
        """
        Return the balance record for ``address``.

        Raises:
            InvalidAddressError: the address does not parse (no node call made)
            ServiceUnavailableError: no connection, node unreachable or not UTXO-indexed
            UpstreamError: the indexed-balance call failed
        """
        key = str(parse_address(address))

        if self.cache_ttl > 0:
            cached = self.cache.get(key, max_age=self.cache_ttl)
            if cached is not None:
                logger.debug(
                    "Serving cached balance for %s",
                    key,
                    extra={"event": "balance.cache_hit", "address": key},
                )
                return cached

        client = self.connection.require()
        # Shielded so a record completed after the caller went away is still cached
        return await run_shielded(self._refresh(client, key), component="balance")

    async def _refresh(self, client: NodeRpc, address: str) -> AddressBalanceRecord:
        await self._check_preconditions(client)
        indexed = await self._fetch_indexed_balance(client, address)
        computed, utxo_count, sample = await self._enumerate_utxos(client, address)

        record = AddressBalanceRecord(
            address=address,
            indexed_balance=indexed,
            fetched_at=self._clock(),
            computed_balance=computed,
            utxo_count_total=utxo_count,
            sample_utxos=sample,
        )

        if record.discrepancy:
            logger.warning(
                "Balance mismatch for %s: indexed %d, summed UTXOs %d (diff %d)",
                address,
                indexed,
                computed,
                record.discrepancy,
                extra={"event": "balance.discrepancy", "address": address, "discrepancy": record.discrepancy},
            )
            if self.metrics is not None:
                self.metrics.balance_discrepancies.inc()

        self.cache.replace(address, record)
        logger.info(
            "Balance for %s: %d KAS (%s UTXOs)",
            address,
            record.balance // SOMPI_PER_KAS,
            utxo_count if utxo_count is not None else "unknown",
            extra={"event": "balance.fetched", "address": address, "balance": record.balance},
        )
        return record

    async def _check_preconditions(self, client: NodeRpc) -> None:
        try:
            info = await client.get_info()
        except UpstreamError as exc:
            raise ServiceUnavailableError(f"kaspad is not reachable: {exc}") from exc
        if not info.get("isUtxoIndexed"):
            raise ServiceUnavailableError(
                "kaspad is not UTXO-indexed; balance queries need --utxoindex",
                details={"is_utxo_indexed": False},
            )

    async def _fetch_indexed_balance(self, client: NodeRpc, address: str) -> int:
        try:
            return await client.get_balance_by_address(address)
        except RpcTimeoutError as exc:
            raise ServiceUnavailableError(f"Indexed balance lookup timed out: {exc}") from exc
        except UpstreamError as exc:
            logger.error(
                "Indexed balance lookup failed for %s: %s",
                address,
                exc,
                extra={"event": "balance.indexed_failed", "address": address},
            )
            raise UpstreamError(
                f"Failed to get balance for {address}: {exc}",
                method="getBalanceByAddress",
            ) from exc

    async def _enumerate_utxos(
        self, client: NodeRpc, address: str
    ) -> tuple[int | None, int | None, tuple[UtxoView, ...]]:
        """Sum every UTXO within the time budget; (None, None, ()) when degraded."""
        try:
            records = await asyncio.wait_for(
                client.get_utxos_by_addresses([address], timeout=self.utxo_timeout),
                timeout=self.utxo_timeout,
            )
        except (asyncio.TimeoutError, RpcTimeoutError):
            self._degraded(address, "timeout")
            return None, None, ()
        except UpstreamError as exc:
            self._degraded(address, "rpc_error", exc)
            return None, None, ()

        total = 0
        sample: list[UtxoView] = []
        for record in records:
            utxo = parse_utxo(record)
            total += utxo.amount
            if len(sample) < self.display_limit:
                sample.append(utxo)
        return total, len(records), tuple(sample)

    def _degraded(self, address: str, reason: str, error: Exception | None = None) -> None:
        logger.warning(
            "UTXO enumeration for %s degraded to indexed balance (%s)%s",
            address,
            reason,
            f": {error}" if error else "",
            extra={"event": "balance.utxo_degraded", "address": address, "reason": reason},
        )
        if self.metrics is not None:
            self.metrics.utxo_enumeration_failures.labels(reason=reason).inc()
