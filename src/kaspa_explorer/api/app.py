"""
Kaspa Explorer - FastAPI application

Thin HTTP boundary over the resilience services. Error kinds raised by the
services map to distinct status codes through a single exception handler.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from kaspa_explorer import __version__
from kaspa_explorer.api.security import ApiKeyGuard
from kaspa_explorer.config import ExplorerConfig
from kaspa_explorer.core.cache import KeyedCache
from kaspa_explorer.core.resilience import AsyncRetryStrategy
from kaspa_explorer.exceptions import ExplorerError, ServiceUnavailableError
from kaspa_explorer.metrics import ExplorerMetrics
from kaspa_explorer.node.gateway import NodeConnection
from kaspa_explorer.services import BalanceReconciler, ConnectivityTracker, MempoolSnapshotter, TipChainWalker

logger = logging.getLogger(__name__)


@dataclass
class ExplorerServices:
    """Everything a request handler needs, built once per app."""

    config: ExplorerConfig
    connection: NodeConnection
    metrics: ExplorerMetrics
    tip_chain: TipChainWalker
    mempool: MempoolSnapshotter
    balances: BalanceReconciler
    connectivity: ConnectivityTracker


def build_services(
    config: ExplorerConfig,
    connection: NodeConnection | None = None,
    metrics: ExplorerMetrics | None = None,
) -> ExplorerServices:
    metrics = metrics or ExplorerMetrics()
    connection = connection or NodeConnection(
        config.kaspad_url,
        config.network,
        timeout=config.rpc_timeout,
        metrics=metrics,
    )
    return ExplorerServices(
        config=config,
        connection=connection,
        metrics=metrics,
        tip_chain=TipChainWalker(connection, default_max_count=config.max_blocks, metrics=metrics),
        mempool=MempoolSnapshotter(
            connection,
            max_display=config.mempool_max_display,
            retry=AsyncRetryStrategy(
                max_attempts=config.mempool_retry_attempts,
                base_delay=config.mempool_retry_backoff,
            ),
            staleness_seconds=config.mempool_staleness_seconds,
            metrics=metrics,
        ),
        balances=BalanceReconciler(
            connection,
            utxo_timeout=config.utxo_timeout,
            display_limit=config.utxo_display_limit,
            cache_ttl=config.balance_cache_ttl,
            cache=KeyedCache(max_entries=config.balance_cache_max_entries),
            metrics=metrics,
        ),
        connectivity=ConnectivityTracker(connection, metrics=metrics),
    )


def _services(request: Request) -> ExplorerServices:
    return request.app.state.services


def _build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/info")
    async def get_network_info(request: Request) -> dict[str, Any]:
        return _services(request).connection.network_info.to_dict()

    @router.get("/blocks")
    async def get_blocks(request: Request, limit: int | None = Query(None, ge=1, le=100)) -> dict[str, Any]:
        page = await _services(request).tip_chain.walk_recent_blocks(limit)
        return page.to_dict()

    @router.get("/mempool")
    async def get_mempool(request: Request, limit: int | None = Query(None, ge=0, le=500)) -> dict[str, Any]:
        services = _services(request)
        if not services.connection.is_connected:
            raise ServiceUnavailableError("No active connection to kaspad")
        snapshot = await services.mempool.get_mempool_view(limit)
        return snapshot.to_dict()

    @router.get("/address/{address}")
    async def get_address_balance(request: Request, address: str) -> dict[str, Any]:
        record = await _services(request).balances.get_address_balance(address)
        return record.to_dict()

    @router.get("/peers")
    async def get_peer_info(request: Request) -> list[dict[str, Any]]:
        snapshot = await _services(request).connectivity.get_peer_view()
        return [peer.to_dict() for peer in snapshot.peers]

    return router


def create_app(
    config: ExplorerConfig | None = None,
    connection: NodeConnection | None = None,
    metrics: ExplorerMetrics | None = None,
    connect_on_startup: bool = True,
) -> FastAPI:
    """
    Build the explorer application.

    Args:
        config: Explorer settings (environment defaults when omitted)
        connection: Pre-built node connection, mainly for tests
        metrics: Metrics collector shared by all services
        connect_on_startup: Connect to kaspad in the lifespan handler
    """
    config = config or ExplorerConfig.from_env()
    services = build_services(config, connection, metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Kaspa explorer...", extra={"event": "app.starting"})
        if connect_on_startup and not await services.connection.connect():
            logger.error(
                "Starting without a kaspad connection; node endpoints will report 503",
                extra={"event": "app.degraded_start"},
            )
        services.connection.start_reconnect_loop(config.reconnect_interval)

        yield

        logger.info("Shutting down Kaspa explorer...", extra={"event": "app.stopping"})
        await services.connection.close()

    app = FastAPI(
        title="Kaspa Explorer API",
        description="Read-only resilience layer between a dashboard and kaspad",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ExplorerError)
    async def explorer_error_handler(request: Request, exc: ExplorerError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s",
                request.method,
                request.url.path,
                exc.message,
                extra={"event": "api.request_failed", "kind": exc.kind},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    api_keys = ApiKeyGuard.from_config(config)
    app.include_router(_build_router(), prefix="/api", dependencies=api_keys.dependencies())

    static_dir = Path(config.static_dir)
    if static_dir.is_dir():
        app.mount("/static", StaticFiles(directory=static_dir), name="static")

    @app.get("/")
    async def root():
        index = static_dir / "index.html"
        if index.is_file():
            return FileResponse(index)
        return {
            "name": "Kaspa Explorer API",
            "version": __version__,
            "network": config.network,
            "endpoints": {
                "info": "/api/info",
                "blocks": "/api/blocks",
                "mempool": "/api/mempool",
                "address": "/api/address/{address}",
                "peers": "/api/peers",
                "health": "/health",
                "metrics": "/metrics",
            },
        }

    @app.get("/health")
    async def health_check():
        connected = services.connection.is_connected
        return {
            "status": "healthy" if connected else "degraded",
            "components": {"kaspad": "connected" if connected else "disconnected"},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        return Response(content=services.metrics.export(), media_type=services.metrics.content_type)

    return app
