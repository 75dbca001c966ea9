"""
kaspad wRPC (JSON encoding) client.

A single websocket carries every request. Requests are tagged with an id and
a reader task resolves the matching future, so any number of tasks can share
one connection concurrently.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from typing import Any
from urllib.parse import urlparse

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from kaspa_explorer.exceptions import RpcTimeoutError, UpstreamError, UpstreamTransientError
from kaspa_explorer.metrics import ExplorerMetrics

logger = logging.getLogger(__name__)

MAX_MESSAGE_BYTES = 64 * 1024 * 1024


def normalize_rpc_url(url: str) -> str:
    """
    Turn ``host:port``, ``http(s)://`` or ``grpc://`` forms into a websocket URL.

    Raises:
        ValueError: when no host can be derived
    """
    url = url.strip()
    if "://" not in url:
        url = f"ws://{url}"
    scheme, rest = url.split("://", 1)
    scheme = {"http": "ws", "https": "wss", "grpc": "ws", "ws": "ws", "wss": "wss"}.get(scheme.lower())
    if scheme is None:
        raise ValueError(f"Unsupported RPC URL scheme in {url!r}")
    normalized = f"{scheme}://{rest}"
    parsed = urlparse(normalized)
    if not parsed.netloc:
        raise ValueError("kaspad URL must include a host, e.g. 127.0.0.1:18210")
    return normalized


class KaspaRpcClient:
    """
    Async kaspad client speaking wRPC JSON.

    Method results are the raw ``params`` dicts of the node responses, with
    the node's camelCase field names.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        metrics: ExplorerMetrics | None = None,
    ) -> None:
        self.url = normalize_rpc_url(url)
        self.timeout = timeout
        self.metrics = metrics
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    async def connect(self) -> dict[str, Any]:
        """Open the websocket and verify the node answers getInfo."""
        try:
            self._ws = await websockets.connect(
                self.url,
                open_timeout=self.timeout,
                ping_interval=20,
                ping_timeout=20,
                max_size=MAX_MESSAGE_BYTES,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise UpstreamTransientError(f"Cannot connect to kaspad at {self.url}: {exc}", method="connect") from exc

        self._reader = asyncio.create_task(self._read_loop())
        try:
            info = await self.get_info()
        except (UpstreamError, asyncio.CancelledError):
            await self.close()
            raise
        logger.info(
            "Connected to kaspad at %s (version %s)",
            self.url,
            info.get("serverVersion", "unknown"),
            extra={"event": "rpc.connected", "url": self.url},
        )
        return info

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._fail_pending(UpstreamTransientError("Connection closed by client"))
        self._ws = None
        self._reader = None

    async def _read_loop(self) -> None:
        try:
            async for message in self._ws:
                self._dispatch(message)
        except ConnectionClosed as exc:
            logger.warning(
                "kaspad connection closed: %s",
                exc,
                extra={"event": "rpc.connection_closed", "url": self.url},
            )
        finally:
            self._fail_pending(UpstreamTransientError("kaspad connection lost"))

    def _dispatch(self, message: str | bytes) -> None:
        try:
            payload = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Discarding malformed wRPC payload")
            return
        if not isinstance(payload, dict):
            return

        # Notifications carry no id and are not subscribed to
        request_id = payload.get("id")
        if not isinstance(request_id, int):
            return
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return

        error = payload.get("error")
        if error:
            message_text = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            future.set_exception(UpstreamError(f"kaspad error: {message_text}", details={"error": error}))
            return
        result = payload.get("params")
        future.set_result(result if isinstance(result, dict) else {})

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def call(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> dict[str, Any]:
        """
        Send one request and wait for its response.

        Raises:
            UpstreamTransientError: connection missing or lost mid-call
            RpcTimeoutError: no response within the deadline
            UpstreamError: the node returned an error
        """
        if not self.is_open:
            raise UpstreamTransientError("Not connected to kaspad", method=method)

        request_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        deadline = timeout if timeout is not None else self.timeout
        started = time.monotonic()
        outcome = "error"
        try:
            await self._ws.send(json.dumps({"id": request_id, "method": method, "params": params or {}}))
            result = await asyncio.wait_for(future, timeout=deadline)
            outcome = "ok"
            return result
        except asyncio.TimeoutError as exc:
            outcome = "timeout"
            raise RpcTimeoutError(f"{method} timed out after {deadline}s", method=method) from exc
        except ConnectionClosed as exc:
            raise UpstreamTransientError(f"kaspad connection lost during {method}", method=method) from exc
        except UpstreamError as exc:
            exc.method = exc.method or method
            raise
        finally:
            self._pending.pop(request_id, None)
            if self.metrics is not None:
                self.metrics.record_rpc(method, outcome, time.monotonic() - started)

    # ------------------------------------------------------------------ API
    async def ping(self) -> None:
        await self.call("ping")

    async def get_info(self) -> dict[str, Any]:
        return await self.call("getInfo")

    async def get_block_dag_info(self) -> dict[str, Any]:
        return await self.call("getBlockDagInfo")

    async def get_block(self, block_hash: str, include_transactions: bool = False) -> dict[str, Any]:
        response = await self.call("getBlock", {"hash": block_hash, "includeTransactions": include_transactions})
        block = response.get("block")
        if not isinstance(block, dict):
            raise UpstreamError(f"getBlock returned no block for {block_hash}", method="getBlock")
        return block

    async def get_mempool_entries(self, include_orphan_pool: bool, filter_transaction_pool: bool) -> list[dict[str, Any]]:
        response = await self.call(
            "getMempoolEntries",
            {"includeOrphanPool": include_orphan_pool, "filterTransactionPool": filter_transaction_pool},
        )
        return list(response.get("mempoolEntries") or [])

    async def get_balance_by_address(self, address: str) -> int:
        response = await self.call("getBalanceByAddress", {"address": address})
        return int(response.get("balance", 0))

    async def get_utxos_by_addresses(self, addresses: list[str], timeout: float | None = None) -> list[dict[str, Any]]:
        response = await self.call("getUtxosByAddresses", {"addresses": addresses}, timeout=timeout)
        return list(response.get("entries") or [])

    async def get_connected_peer_info(self) -> list[dict[str, Any]]:
        response = await self.call("getConnectedPeerInfo")
        return list(response.get("peerInfo") or [])
