"""Shared view models, caches and resilience helpers."""
