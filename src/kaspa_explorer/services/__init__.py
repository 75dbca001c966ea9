"""Resilience services between the HTTP boundary and kaspad."""

from kaspa_explorer.services.balance import BalanceReconciler
from kaspa_explorer.services.connectivity import ConnectivityTracker
from kaspa_explorer.services.mempool import MempoolSnapshotter
from kaspa_explorer.services.tip_chain import TipChainWalker

__all__ = ["BalanceReconciler", "ConnectivityTracker", "MempoolSnapshotter", "TipChainWalker"]
