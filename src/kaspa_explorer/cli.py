#!/usr/bin/env python3
"""Kaspa Explorer command line entry point."""

from __future__ import annotations

import logging
import sys

import click
import uvicorn

from kaspa_explorer import __version__
from kaspa_explorer.api.app import create_app
from kaspa_explorer.config import ExplorerConfig
from kaspa_explorer.exceptions import ConfigurationError
from kaspa_explorer.logging_config import setup_logging

logger = logging.getLogger(__name__)


@click.command(name="kaspa-explorer", help="Kaspa block explorer backed by a kaspad wRPC endpoint.")
@click.option("-p", "--port", type=int, default=None, help="Port to run the explorer on [default: 3000]")
@click.option("-k", "--kaspad-url", default=None, help="kaspad wRPC (JSON) URL [default: 127.0.0.1:18210]")
@click.option("--host", default=None, help="Interface to bind [default: 0.0.0.0]")
@click.option("--network", default=None, help="Network label shown by /api/info [default: testnet-12]")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
)
@click.option("--log-format", type=click.Choice(["json", "text"]), default=None)
@click.option("--log-file", default=None, help="Also write logs to this rotating file")
@click.option(
    "--reconnect-interval",
    type=float,
    default=None,
    help="Seconds between reconnect attempts while kaspad is down (0 disables)",
)
@click.version_option(__version__, prog_name="kaspa-explorer")
def main(
    port: int | None,
    kaspad_url: str | None,
    host: str | None,
    network: str | None,
    log_level: str | None,
    log_format: str | None,
    log_file: str | None,
    reconnect_interval: float | None,
) -> None:
    try:
        config = ExplorerConfig.from_env().with_overrides(
            port=port,
            kaspad_url=kaspad_url,
            host=host,
            network=network,
            log_level=log_level.upper() if log_level else None,
            log_format=log_format,
            log_file=log_file,
            reconnect_interval=reconnect_interval,
        )
    except ConfigurationError as exc:
        raise click.ClickException(exc.message) from exc

    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file, network=config.network)
    logger.info(
        "Starting explorer on http://%s:%d (kaspad %s)",
        config.host,
        config.port,
        config.kaspad_url,
        extra={"event": "cli.starting"},
    )

    try:
        app = create_app(config)
    except ConfigurationError as exc:
        raise click.ClickException(exc.message) from exc
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower(), access_log=True)


if __name__ == "__main__":
    sys.exit(main())
