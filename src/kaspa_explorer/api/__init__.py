"""HTTP boundary."""

from kaspa_explorer.api.app import ExplorerServices, build_services, create_app

__all__ = ["ExplorerServices", "build_services", "create_app"]
