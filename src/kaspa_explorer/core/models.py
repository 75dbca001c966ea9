"""
View models handed from the services to the HTTP boundary.

All models are frozen and hold tuples, so a cached instance can be shared
between concurrent readers without copying.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

ZERO_HASH = "0" * 64


@dataclass(frozen=True)
class DagTip:
    """Sink hash and DAG-wide block count from one getBlockDagInfo call."""

    sink_hash: str
    block_count: int


@dataclass(frozen=True)
class BlockView:
    """One block on the selected-parent chain."""

    hash: str
    daa_score: int
    parent_hashes: tuple[str, ...]
    transaction_count: int
    timestamp: int
    difficulty: float
    # True when difficulty is the compact-bits field reinterpreted as a float
    difficulty_is_estimate: bool = False

    @property
    def parents_label(self) -> str:
        return ", ".join(self.parent_hashes) if self.parent_hashes else "None"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "level": self.daa_score,
            "parents": self.parents_label,
            "parent_hashes": list(self.parent_hashes),
            "tx_count": self.transaction_count,
            "timestamp": self.timestamp,
            "difficulty": self.difficulty,
            "difficulty_is_estimate": self.difficulty_is_estimate,
        }


@dataclass(frozen=True)
class MempoolEntry:
    id: str
    input_count: int
    output_count: int
    total_output_value: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "input_count": self.input_count,
            "output_count": self.output_count,
            "amount": self.total_output_value,
        }


class SnapshotSource(str, Enum):
    """Where a mempool view came from."""

    FRESH = "fresh"
    CACHED = "cached"
    SIZE_ONLY = "size_only"
    EMPTY = "empty"


@dataclass(frozen=True)
class MempoolSnapshot:
    captured_at: float
    total_size: int
    sampled_entries: tuple[MempoolEntry, ...] = ()
    source: SnapshotSource = SnapshotSource.FRESH
    window_start: int = 0

    def age(self, now: float) -> float:
        return max(0.0, now - self.captured_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.total_size,
            "transactions": [entry.to_dict() for entry in self.sampled_entries],
            "captured_at": self.captured_at,
            "source": self.source.value,
            "window_start": self.window_start,
        }


@dataclass(frozen=True)
class UtxoView:
    outpoint: str
    amount: int
    script_public_key: str
    block_daa_score: int = 0
    is_coinbase: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AddressBalanceRecord:
    """
    Balance of one address as of a single fetch.

    ``computed_balance`` (summed UTXOs) is authoritative when present;
    ``indexed_balance`` is kept for cross-validation.
    """

    address: str
    indexed_balance: int
    fetched_at: float
    computed_balance: int | None = None
    utxo_count_total: int | None = None
    sample_utxos: tuple[UtxoView, ...] = ()

    @property
    def balance(self) -> int:
        return self.computed_balance if self.computed_balance is not None else self.indexed_balance

    @property
    def discrepancy(self) -> int | None:
        """Computed minus indexed balance, None when no computed balance exists."""
        if self.computed_balance is None:
            return None
        return self.computed_balance - self.indexed_balance

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": self.balance,
            "indexed_balance": self.indexed_balance,
            "computed_balance": self.computed_balance,
            "utxo_count": self.utxo_count_total,
            "discrepancy": self.discrepancy,
            "fetched_at": self.fetched_at,
            "utxos": [utxo.to_dict() for utxo in self.sample_utxos],
        }


class ConnectivityState(str, Enum):
    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class PeerEntry:
    id: str
    address: str
    connected: bool
    last_seen_label: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "is_connected": self.connected,
            "last_seen": self.last_seen_label,
        }


@dataclass(frozen=True)
class ConnectivitySnapshot:
    peers: tuple[PeerEntry, ...] = ()
    state: ConnectivityState = ConnectivityState.UNKNOWN
    captured_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "captured_at": self.captured_at,
            "peers": [peer.to_dict() for peer in self.peers],
        }


@dataclass(frozen=True)
class NetworkInfo:
    server_url: str
    network: str
    is_connected: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BlocksPage:
    """Result of a tip-chain walk."""

    total_count: int
    blocks: tuple[BlockView, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_count": self.total_count,
            "blocks": [block.to_dict() for block in self.blocks],
        }
