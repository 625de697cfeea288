"""
Service entrypoint.

Resolves configuration, initialises logging, loads the persisted store and
serves the control API with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from . import PlayoutConfig
from .api.server import create_app
from .store import Store
from .utils.config import load_config
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app) -> AsyncIterator[None]:
    LOG.info("Playout service starting")
    try:
        yield
    finally:
        LOG.info("Playout service shutting down")


async def serve(config: PlayoutConfig) -> None:
    """
    Run the control API inside an asyncio loop.
    """

    import uvicorn

    store = Store.open(config.data_path) if config.data_path else Store()
    app = create_app(store=store, config=config, lifespan=lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=config.log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Playout control server")
    parser.add_argument("--config", default=None, help="path to a YAML configuration file")
    parser.add_argument("--host", default=None, help="bind host for the API server")
    parser.add_argument("--port", type=int, default=None, help="bind port for the API server")
    parser.add_argument("--data", default=None, help="JSON file the store is loaded from and saved to")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = load_config(args.config)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.data:
        config.data_path = args.data
    configure_logging(config.log_level)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Playout service interrupted by user.")


if __name__ == "__main__":
    run()
