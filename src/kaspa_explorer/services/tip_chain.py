"""
Tip-chain walker - latest blocks of a multi-parent DAG.

A DAG has no unique "next N blocks". Following selected-parent links back
from the sink gives the one linear view that is reproducible and tracks the
tip, so the batch block listing API (whose ordering is not stable between
calls) is never used here.
"""

from __future__ import annotations

import logging

from kaspa_explorer.core.models import BlocksPage, BlockView, DagTip
from kaspa_explorer.exceptions import UpstreamError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.gateway import NodeConnection, NodeRpc
from kaspa_explorer.services.records import parse_block, parse_dag_tip

logger = logging.getLogger(__name__)


class TipChainWalker:
    """Reconstructs the newest-first selected-parent chain from the sink."""

    def __init__(
        self,
        connection: NodeConnection,
        default_max_count: int = 20,
        metrics: ExplorerMetrics | None = None,
    ) -> None:
        self.connection = connection
        self.default_max_count = default_max_count
        self.metrics = metrics

    async def fetch_dag_tip(self, client: NodeRpc) -> DagTip:
        """Read the sink and DAG-wide block count. Never cached."""
        try:
            dag_info = await client.get_block_dag_info()
        except UpstreamError as exc:
            raise UpstreamError(f"Failed to read DAG info: {exc}", method="getBlockDagInfo") from exc
        return parse_dag_tip(dag_info)

    async def walk_recent_blocks(self, max_count: int | None = None) -> BlocksPage:
        """
        Walk back from the sink collecting at most ``max_count`` blocks.

        Raises:
            ServiceUnavailableError: no node connection
            UpstreamError: the DAG info call or any block fetch failed; the
                blocks collected so far are discarded
        """
        limit = self.default_max_count if max_count is None else max_count
        client = self.connection.require()
        tip = await self.fetch_dag_tip(client)

        blocks: list[BlockView] = []
        current_hash: str | None = tip.sink_hash
        while current_hash is not None and len(blocks) < limit:
            try:
                raw_block = await client.get_block(current_hash, False)
            except UpstreamError as exc:
                logger.error(
                    "Block fetch failed during tip walk at %s after %d blocks: %s",
                    current_hash,
                    len(blocks),
                    exc,
                    extra={"event": "tip_chain.block_fetch_failed", "block_hash": current_hash},
                )
                raise UpstreamError(
                    f"Failed to fetch block {current_hash}: {exc}",
                    method="getBlock",
                    details={"block_hash": current_hash, "collected": len(blocks)},
                ) from exc

            view, current_hash = parse_block(raw_block)
            blocks.append(view)

        if self.metrics is not None:
            self.metrics.tip_walk_blocks.observe(len(blocks))
        logger.info(
            "Returning %d blocks for display (total count: %d)",
            len(blocks),
            tip.block_count,
            extra={"event": "tip_chain.walked", "blocks": len(blocks), "total_count": tip.block_count},
        )
        return BlocksPage(total_count=tip.block_count, blocks=tuple(blocks))
