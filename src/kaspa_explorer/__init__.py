"""
Kaspa Explorer

Read-only aggregation and resilience layer between a dashboard and kaspad.
"""

__version__ = "0.3.0"
