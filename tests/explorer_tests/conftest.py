"""
Shared fixtures: a scripted in-memory kaspad and a fake clock.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from kaspa_explorer.exceptions import UpstreamError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.gateway import NodeConnection

NODE_URL = "127.0.0.1:18210"


def block_hash(n: int) -> str:
    """Deterministic non-zero 64 char hash."""
    return f"{n:064x}"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNode:
    """
    In-memory stand-in for KaspaRpcClient.

    Failures can be queued per method (consumed one per call) or made
    permanent; delays simulate slow calls.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.is_open = True
        self.info: dict[str, Any] = {
            "isUtxoIndexed": True,
            "mempoolSize": 0,
            "serverVersion": "0.15.0",
            "isSynced": True,
        }
        self.dag_info: dict[str, Any] = {"sink": block_hash(1), "blockCount": 0}
        self.blocks: dict[str, dict[str, Any]] = {}
        self.mempool: list[dict[str, Any]] = []
        self.balance = 0
        self.utxos: list[dict[str, Any]] = []
        self.peers: list[dict[str, Any]] = []
        self.queued_failures: dict[str, list[Exception]] = {}
        self.permanent_failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.last_utxo_request: list[str] | None = None

    # ------------------------------------------------------------ scripting
    def fail_next(self, method: str, *errors: Exception) -> None:
        self.queued_failures.setdefault(method, []).extend(errors)

    def fail_always(self, method: str, error: Exception | None = None) -> None:
        self.permanent_failures[method] = error or UpstreamError(f"{method} failed", method=method)

    def recover(self, method: str) -> None:
        self.permanent_failures.pop(method, None)
        self.queued_failures.pop(method, None)

    def add_block(
        self,
        hash_: str,
        parents: list[str] | None = None,
        selected_parent: str | None = None,
        transaction_ids: list[str] | None = None,
        transactions: list[dict[str, Any]] | None = None,
        difficulty: float | None = 2.5,
        bits: int = 453_326_258,
        daa_score: int = 0,
        timestamp: int = 0,
        verbose: bool = True,
    ) -> dict[str, Any]:
        block: dict[str, Any] = {
            "header": {
                "hash": hash_,
                "parentsByLevel": [list(parents or [])],
                "bits": bits,
                "daaScore": daa_score,
                "timestamp": timestamp,
            },
            "transactions": transactions or [],
        }
        if verbose:
            verbose_data: dict[str, Any] = {"hash": hash_}
            if selected_parent is not None:
                verbose_data["selectedParentHash"] = selected_parent
            if transaction_ids is not None:
                verbose_data["transactionIds"] = transaction_ids
            if difficulty is not None:
                verbose_data["difficulty"] = difficulty
            block["verboseData"] = verbose_data
        self.blocks[hash_] = block
        return block

    def build_linear_chain(self, length: int, block_count: int | None = None) -> list[str]:
        """Chain 1 <- 2 <- ... <- length with the last block as sink. Returns hashes newest first."""
        hashes = [block_hash(n) for n in range(1, length + 1)]
        for index, hash_ in enumerate(hashes):
            parent = [hashes[index - 1]] if index else []
            self.add_block(
                hash_,
                parents=parent,
                selected_parent=parent[0] if parent else "0" * 64,
                transaction_ids=[f"tx-{index}"],
                daa_score=1000 + index,
                timestamp=1_700_000_000_000 + index * 1000,
            )
        self.dag_info = {"sink": hashes[-1], "blockCount": block_count if block_count is not None else length}
        return list(reversed(hashes))

    def add_mempool_tx(self, tx_id: str, inputs: int = 1, values: tuple[int, ...] = (100,)) -> None:
        self.mempool.append(
            {
                "fee": 1000,
                "isOrphan": False,
                "transaction": {
                    "inputs": [{"previousOutpoint": {"index": i}} for i in range(inputs)],
                    "outputs": [{"value": value} for value in values],
                    "verboseData": {"transactionId": tx_id, "hash": f"hash-{tx_id}"},
                },
            }
        )

    def add_utxo(self, tx_id: str, index: int, amount: int) -> None:
        self.utxos.append(
            {
                "address": None,
                "outpoint": {"transactionId": tx_id, "index": index},
                "utxoEntry": {
                    "amount": amount,
                    "scriptPublicKey": {"version": 0, "script": f"20{tx_id}ac"},
                    "blockDaaScore": 10 + index,
                    "isCoinbase": False,
                },
            }
        )

    # ------------------------------------------------------------ RPC surface
    async def _enter(self, method: str) -> None:
        self.calls.append(method)
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        if method in self.permanent_failures:
            raise self.permanent_failures[method]
        queued = self.queued_failures.get(method)
        if queued:
            raise queued.pop(0)

    async def get_info(self) -> dict[str, Any]:
        await self._enter("getInfo")
        return dict(self.info)

    async def get_block_dag_info(self) -> dict[str, Any]:
        await self._enter("getBlockDagInfo")
        return dict(self.dag_info)

    async def get_block(self, block_hash: str, include_transactions: bool = False) -> dict[str, Any]:
        await self._enter("getBlock")
        if block_hash not in self.blocks:
            raise UpstreamError(f"block {block_hash} not found", method="getBlock")
        return self.blocks[block_hash]

    async def get_mempool_entries(self, include_orphan_pool: bool, filter_transaction_pool: bool) -> list[dict[str, Any]]:
        await self._enter("getMempoolEntries")
        return list(self.mempool)

    async def get_balance_by_address(self, address: str) -> int:
        await self._enter("getBalanceByAddress")
        return self.balance

    async def get_utxos_by_addresses(self, addresses: list[str], timeout: float | None = None) -> list[dict[str, Any]]:
        self.last_utxo_request = list(addresses)
        await self._enter("getUtxosByAddresses")
        return list(self.utxos)

    async def get_connected_peer_info(self) -> list[dict[str, Any]]:
        await self._enter("getConnectedPeerInfo")
        return list(self.peers)

    async def close(self) -> None:
        self.is_open = False


@pytest.fixture
def fake_node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def connection(fake_node: FakeNode) -> NodeConnection:
    return NodeConnection(NODE_URL, "testnet-12", client=fake_node)


@pytest.fixture
def disconnected() -> NodeConnection:
    return NodeConnection(NODE_URL, "testnet-12")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> ExplorerMetrics:
    return ExplorerMetrics()
