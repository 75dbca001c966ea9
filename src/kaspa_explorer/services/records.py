"""
Conversion of raw kaspad records into view models.

kaspad may omit verbose data or transaction bodies depending on the request
flags, so every accessor tolerates missing fields.
"""

from __future__ import annotations

from typing import Any, Iterable

from kaspa_explorer.core.models import ZERO_HASH, BlockView, DagTip, MempoolEntry, UtxoView
from kaspa_explorer.exceptions import UpstreamError


def as_int(value: Any, default: int = 0) -> int:
    """u64 fields may arrive as JSON numbers or decimal strings."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def is_present_hash(value: Any) -> bool:
    return isinstance(value, str) and bool(value) and value != ZERO_HASH


def dedupe_hashes(hashes: Iterable[str]) -> tuple[str, ...]:
    """Drop repeated hashes, keeping first-seen order."""
    seen: set[str] = set()
    unique: list[str] = []
    for block_hash in hashes:
        if block_hash in seen:
            continue
        seen.add(block_hash)
        unique.append(block_hash)
    return tuple(unique)


def parse_dag_tip(dag_info: dict[str, Any]) -> DagTip:
    sink = dag_info.get("sink")
    if not is_present_hash(sink):
        raise UpstreamError("getBlockDagInfo returned no sink hash", method="getBlockDagInfo")
    return DagTip(sink_hash=sink, block_count=as_int(dag_info.get("blockCount")))


def level0_parents(header: dict[str, Any]) -> tuple[str, ...]:
    levels = header.get("parentsByLevel") or []
    if not levels:
        return ()
    return dedupe_hashes(h for h in (levels[0] or []) if isinstance(h, str))


def parse_block(block: dict[str, Any]) -> tuple[BlockView, str | None]:
    """
    Build the view of one block and pick the next hash of the walk.

    Returns:
        Tuple of (view, next hash or None when the block has no parents)
    """
    header = block.get("header") or {}
    verbose = block.get("verboseData") or {}
    parents = level0_parents(header)

    block_hash = header.get("hash") or verbose.get("hash") or ""

    transaction_ids = verbose.get("transactionIds")
    if transaction_ids is not None:
        transaction_count = len(transaction_ids)
    else:
        transaction_count = len(block.get("transactions") or [])

    difficulty = verbose.get("difficulty")
    if difficulty is not None:
        difficulty_value, estimated = float(difficulty), False
    else:
        # Compact bits reinterpreted as a float, not a real difficulty
        difficulty_value, estimated = float(as_int(header.get("bits"))), True

    view = BlockView(
        hash=block_hash,
        daa_score=as_int(header.get("daaScore")),
        parent_hashes=parents,
        transaction_count=transaction_count,
        timestamp=as_int(header.get("timestamp")),
        difficulty=difficulty_value,
        difficulty_is_estimate=estimated,
    )

    selected_parent = verbose.get("selectedParentHash")
    if is_present_hash(selected_parent):
        return view, selected_parent
    return view, parents[0] if parents else None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def mempool_entry_id(transaction: dict[str, Any]) -> str:
    verbose = _as_dict(transaction.get("verboseData"))
    transaction_id = verbose.get("transactionId")
    if is_present_hash(transaction_id):
        return transaction_id
    tx_hash = verbose.get("hash")
    return tx_hash if isinstance(tx_hash, str) else ""


def parse_mempool_entry(entry: Any) -> MempoolEntry:
    """Malformed parts count as empty rather than failing the whole snapshot."""
    transaction = _as_dict(_as_dict(entry).get("transaction"))
    outputs = _as_list(transaction.get("outputs"))
    return MempoolEntry(
        id=mempool_entry_id(transaction),
        input_count=len(_as_list(transaction.get("inputs"))),
        output_count=len(outputs),
        total_output_value=sum(as_int(_as_dict(output).get("value")) for output in outputs),
    )


def _script_hex(script: Any) -> str:
    if isinstance(script, dict):
        return str(script.get("script") or script.get("scriptPublicKey") or "")
    return str(script or "")


def parse_utxo(record: dict[str, Any]) -> UtxoView:
    outpoint = record.get("outpoint") or {}
    utxo_entry = record.get("utxoEntry") or {}
    return UtxoView(
        outpoint=f"{outpoint.get('transactionId', '')}:{as_int(outpoint.get('index'))}",
        amount=as_int(utxo_entry.get("amount")),
        script_public_key=_script_hex(utxo_entry.get("scriptPublicKey")),
        block_daa_score=as_int(utxo_entry.get("blockDaaScore")),
        is_coinbase=bool(utxo_entry.get("isCoinbase", False)),
    )
