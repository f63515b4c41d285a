"""
VStore Server - Main entry point.

This module starts the VStore server with all components:
- Record storage (SQLite or in-memory)
- Lifecycle store over the enabled collections
- HTTP server (v3 REST API)

Usage:
    python -m vstore.vstore_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Storage is connected before the HTTP server accepts requests
    - Graceful shutdown stops the HTTP server before closing storage
    - All components share the same collection registry

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import StaticTokenResolver, create_http_app, run_http_server
from .apply import LifecycleStore
from .config import ServerConfig, StorageBackend
from .schema import CollectionRegistry
from .storage import RecordStorage, create_storage

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """VStore Server orchestrator.

    Manages the lifecycle of all server components:
    - Storage connection
    - Lifecycle store
    - HTTP server

    Attributes:
        config: Server configuration
        storage: Record storage engine
        store: Lifecycle store
        runner: aiohttp runner while serving

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.storage: RecordStorage | None = None
        self.store: LifecycleStore | None = None
        self.runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting VStore server")
        self.config.log_config()

        try:
            if self.config.storage.backend == StorageBackend.SQLITE:
                Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

            registry = CollectionRegistry.with_builtins(self.config.api.collections)
            logger.info(f"Collections enabled: {', '.join(registry.names())}")

            self.storage = create_storage(self.config.storage)
            await self.storage.connect()
            logger.info(f"Record storage connected: {self.storage.name}")

            self.store = LifecycleStore(self.storage, registry)
            resolver = StaticTokenResolver.from_config(self.config.auth)

            app = create_http_app(
                self.store,
                resolver,
                api_config=self.config.api,
                http_config=self.config.http,
            )
            self.runner = await run_http_server(
                app, host=self.config.http.host, port=self.config.http.port
            )

            self._running = True
            logger.info("VStore server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping VStore server")

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        if self.storage:
            await self.storage.close()

        self._running = False
        logger.info("VStore server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
