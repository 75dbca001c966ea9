"""
Tests for the wRPC client: URL handling, request/response correlation and
error mapping. The websocket is replaced by an in-memory double.
"""

import asyncio
import json

import pytest

from kaspa_explorer.exceptions import RpcTimeoutError, UpstreamError, UpstreamTransientError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node import rpc_client
from kaspa_explorer.node.gateway import NodeConnection
from kaspa_explorer.node.rpc_client import KaspaRpcClient, normalize_rpc_url


class ScriptedSocket:
    """Answers each sent request through the client's dispatcher."""

    def __init__(self, client, responses):
        self.client = client
        self.responses = responses
        self.sent = []
        self.closed = False

    async def send(self, text):
        request = json.loads(text)
        self.sent.append(request)
        handler = self.responses.get(request["method"])
        if handler is None:
            return
        reply = handler(request)
        reply.setdefault("id", request["id"])
        asyncio.get_running_loop().call_soon(self.client._dispatch, json.dumps(reply))

    async def close(self):
        self.closed = True


async def open_client(responses, timeout=1.0, metrics=None):
    client = KaspaRpcClient("127.0.0.1:18210", timeout=timeout, metrics=metrics)
    client._ws = ScriptedSocket(client, responses)
    client._reader = asyncio.create_task(asyncio.sleep(3600))
    return client


class TestNormalizeRpcUrl:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("127.0.0.1:18210", "ws://127.0.0.1:18210"),
            ("  127.0.0.1:18210 ", "ws://127.0.0.1:18210"),
            ("http://node.local:17110", "ws://node.local:17110"),
            ("https://node.example.org", "wss://node.example.org"),
            ("grpc://10.0.0.1:16110", "ws://10.0.0.1:16110"),
            ("wss://node.example.org/rpc", "wss://node.example.org/rpc"),
        ],
    )
    def test_forms(self, raw, expected):
        assert normalize_rpc_url(raw) == expected

    def test_unknown_scheme(self):
        with pytest.raises(ValueError):
            normalize_rpc_url("ftp://node.local")

    def test_missing_host(self):
        with pytest.raises(ValueError):
            normalize_rpc_url("ws://")


class TestCall:
    @pytest.mark.asyncio
    async def test_call_when_not_open(self):
        client = KaspaRpcClient("127.0.0.1:18210")

        assert client.is_open is False
        with pytest.raises(UpstreamTransientError):
            await client.get_info()

    @pytest.mark.asyncio
    async def test_request_shape_and_result(self):
        client = await open_client({"getBlock": lambda req: {"params": {"block": {"header": {"hash": "ab"}}}}})

        block = await client.get_block("ab")

        assert block == {"header": {"hash": "ab"}}
        request = client._ws.sent[0]
        assert request["method"] == "getBlock"
        assert request["params"] == {"hash": "ab", "includeTransactions": False}
        assert isinstance(request["id"], int)
        await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_correlated_by_id(self):
        client = await open_client(
            {
                "getBalanceByAddress": lambda req: {"params": {"balance": len(req["params"]["address"])}},
            }
        )

        results = await asyncio.gather(
            client.get_balance_by_address("a"),
            client.get_balance_by_address("bbb"),
            client.get_balance_by_address("cc"),
        )

        assert results == [1, 3, 2]
        await client.close()

    @pytest.mark.asyncio
    async def test_node_error_becomes_upstream_error(self):
        client = await open_client({"getInfo": lambda req: {"error": {"message": "boom"}}})

        with pytest.raises(UpstreamError) as excinfo:
            await client.get_info()

        assert "boom" in str(excinfo.value)
        assert excinfo.value.method == "getInfo"
        assert not isinstance(excinfo.value, UpstreamTransientError)
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_reply_times_out(self):
        metrics = ExplorerMetrics()
        client = await open_client({}, timeout=0.05, metrics=metrics)

        with pytest.raises(RpcTimeoutError):
            await client.get_block_dag_info()

        assert client._pending == {}
        assert metrics.registry.get_sample_value(
            "kaspa_explorer_rpc_calls_total", {"method": "getBlockDagInfo", "outcome": "timeout"}
        ) == 1.0
        await client.close()

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self):
        client = await open_client({}, timeout=30)

        with pytest.raises(RpcTimeoutError):
            await client.get_utxos_by_addresses(["kaspa:x"], timeout=0.05)
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_block_is_upstream_error(self):
        client = await open_client({"getBlock": lambda req: {"params": {}}})

        with pytest.raises(UpstreamError):
            await client.get_block("ff")
        await client.close()

    @pytest.mark.asyncio
    async def test_list_results_are_unwrapped(self):
        client = await open_client(
            {
                "getMempoolEntries": lambda req: {"params": {"mempoolEntries": [{"fee": 1}]}},
                "getUtxosByAddresses": lambda req: {"params": {"entries": [{"outpoint": {}}]}},
                "getConnectedPeerInfo": lambda req: {"params": {}},
            }
        )

        assert await client.get_mempool_entries(True, False) == [{"fee": 1}]
        assert await client.get_utxos_by_addresses(["kaspa:x"]) == [{"outpoint": {}}]
        assert await client.get_connected_peer_info() == []
        assert client._ws.sent[0]["params"] == {"includeOrphanPool": True, "filterTransactionPool": False}
        await client.close()

    @pytest.mark.asyncio
    async def test_close_fails_pending_calls(self):
        client = await open_client({})

        pending = asyncio.ensure_future(client.get_info())
        await asyncio.sleep(0)
        await client.close()

        with pytest.raises(UpstreamTransientError):
            await pending
        assert client.is_open is False


class TestDispatch:
    def test_ignores_notifications_and_garbage(self):
        client = KaspaRpcClient("127.0.0.1:18210")

        client._dispatch("not json")
        client._dispatch(json.dumps([1, 2, 3]))
        client._dispatch(json.dumps({"method": "blockAddedNotification", "params": {}}))
        client._dispatch(json.dumps({"id": [1], "params": {}}))
        client._dispatch(json.dumps({"id": 99, "params": {}}))

        assert client._pending == {}


class SilentSocket:
    """Accepts requests but never answers; iteration ends when closed."""

    def __init__(self):
        self.closed = False
        self._closed_event = asyncio.Event()

    async def send(self, text):
        pass

    async def close(self):
        self.closed = True
        self._closed_event.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        await self._closed_event.wait()
        raise StopAsyncIteration


@pytest.fixture
def silent_socket(monkeypatch):
    socket = SilentSocket()

    async def fake_connect(url, **kwargs):
        return socket

    monkeypatch.setattr(rpc_client.websockets, "connect", fake_connect)
    return socket


class TestConnect:
    @pytest.mark.asyncio
    async def test_failed_verification_closes_socket(self, silent_socket):
        client = KaspaRpcClient("127.0.0.1:18210", timeout=0.05)

        with pytest.raises(RpcTimeoutError):
            await client.connect()

        assert silent_socket.closed is True
        assert client.is_open is False
        assert client._reader is None
        assert client._pending == {}

    @pytest.mark.asyncio
    async def test_node_connection_leaves_nothing_open(self, silent_socket):
        connection = NodeConnection("127.0.0.1:18210", "testnet-12", timeout=0.05)

        assert await connection.connect() is False
        assert silent_socket.closed is True
        assert connection.client is None

    @pytest.mark.asyncio
    async def test_unreachable_node_is_transient_error(self, monkeypatch):
        async def refuse(url, **kwargs):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(rpc_client.websockets, "connect", refuse)

        with pytest.raises(UpstreamTransientError):
            await KaspaRpcClient("127.0.0.1:18210").connect()
