"""
RPC gateway: the node contract the services depend on, plus the shared
connection handle.

The handle is reconnect-free unless a reconnect loop is started explicitly:
if the first connect fails the service keeps running and every node-backed
call reports ServiceUnavailableError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

from kaspa_explorer.core.models import NetworkInfo
from kaspa_explorer.exceptions import ServiceUnavailableError, UpstreamError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.rpc_client import KaspaRpcClient

logger = logging.getLogger(__name__)


class NodeRpc(Protocol):
    """Operations consumed from kaspad. Results use the node's field names."""

    async def get_info(self) -> dict[str, Any]: ...

    async def get_block_dag_info(self) -> dict[str, Any]: ...

    async def get_block(self, block_hash: str, include_transactions: bool = False) -> dict[str, Any]: ...

    async def get_mempool_entries(
        self, include_orphan_pool: bool, filter_transaction_pool: bool
    ) -> list[dict[str, Any]]: ...

    async def get_balance_by_address(self, address: str) -> int: ...

    async def get_utxos_by_addresses(
        self, addresses: list[str], timeout: float | None = None
    ) -> list[dict[str, Any]]: ...

    async def get_connected_peer_info(self) -> list[dict[str, Any]]: ...


ClientFactory = Callable[[], Any]


class NodeConnection:
    """
    Holder of the single logical kaspad connection.

    Services call ``require()`` right before talking to the node; the
    returned client is safe for concurrent use.
    """

    def __init__(
        self,
        server_url: str,
        network: str,
        timeout: float = 10.0,
        metrics: ExplorerMetrics | None = None,
        client: NodeRpc | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.server_url = server_url
        self.network = network
        self.timeout = timeout
        self.metrics = metrics
        self._client: NodeRpc | None = client
        self._client_factory = client_factory or (
            lambda: KaspaRpcClient(server_url, timeout=timeout, metrics=metrics)
        )
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task | None = None

    @property
    def client(self) -> NodeRpc | None:
        return self._client

    @property
    def is_connected(self) -> bool:
        if self._client is None:
            return False
        return bool(getattr(self._client, "is_open", True))

    @property
    def network_info(self) -> NetworkInfo:
        return NetworkInfo(server_url=self.server_url, network=self.network, is_connected=self.is_connected)

    def require(self) -> NodeRpc:
        """
        Return the active client.

        Raises:
            ServiceUnavailableError: when no usable connection exists
        """
        if not self.is_connected:
            raise ServiceUnavailableError(
                "No active connection to kaspad",
                details={"server_url": self.server_url},
            )
        return self._client  # type: ignore[return-value]

    async def connect(self) -> bool:
        """
        Connect to kaspad, logging instead of raising on failure.

        Returns:
            True if a verified connection is now active
        """
        async with self._connect_lock:
            if self.is_connected:
                return True
            logger.info(
                "Connecting to kaspad at %s",
                self.server_url,
                extra={"event": "node.connecting", "server_url": self.server_url},
            )
            try:
                client = self._client_factory()
                await client.connect()
            except (UpstreamError, ValueError) as exc:
                logger.error(
                    "Failed to connect to kaspad: %s",
                    exc,
                    extra={"event": "node.connect_failed", "server_url": self.server_url},
                )
                return False
            self._client = client
            return True

    async def close(self) -> None:
        await self.stop_reconnect_loop()
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            await client.close()

    def start_reconnect_loop(self, interval: float) -> None:
        """Re-establish a lost connection every ``interval`` seconds."""
        if interval <= 0 or self._reconnect_task is not None:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(interval))

    async def stop_reconnect_loop(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _reconnect_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self.is_connected:
                logger.warning(
                    "kaspad connection down, reconnecting",
                    extra={"event": "node.reconnecting", "server_url": self.server_url},
                )
                await self.connect()
