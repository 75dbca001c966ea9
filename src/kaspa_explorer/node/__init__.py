"""kaspad access: wRPC client, connection handle and address codec."""

from kaspa_explorer.node.address import KaspaAddress, encode_address, parse_address
from kaspa_explorer.node.gateway import NodeConnection, NodeRpc
from kaspa_explorer.node.rpc_client import KaspaRpcClient

__all__ = [
    "KaspaAddress",
    "KaspaRpcClient",
    "NodeConnection",
    "NodeRpc",
    "encode_address",
    "parse_address",
]
