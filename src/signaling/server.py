"""Signaling relay server.

Main server implementation that:
1. Builds the connection registry and message router
2. Starts the WebSocket transport
3. Provides HTTP health check and metrics endpoints
4. Runs until interrupted, then shuts everything down
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from signaling.config import RelayConfig
from signaling.health import setup_health_routes
from signaling.metrics import MetricsCollector, get_metrics_collector
from signaling.registry import ConnectionRegistry
from signaling.router import MessageRouter
from signaling.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs") / "relay.yaml"


class RelayServer:
    """Signaling relay with its WebSocket and health listeners.

    Thread-safety: This class is NOT thread-safe. Use from a single async task.
    """

    def __init__(self, config: RelayConfig, metrics: MetricsCollector | None = None) -> None:
        """Initialize relay server.

        Args:
            config: Relay configuration
            metrics: Metrics collector (defaults to the global collector)
        """
        self.config = config
        self.metrics = metrics or get_metrics_collector()
        self.registry = ConnectionRegistry(identity_length=config.identity.length)
        self.router = MessageRouter(self.registry, self.metrics)

        ws_config = config.transport.websocket
        self.transport = WebSocketTransport(
            self.registry,
            self.router,
            host=ws_config.host,
            port=ws_config.port,
            max_connections=ws_config.max_connections,
            max_message_size=ws_config.max_message_size,
            send_queue_size=ws_config.send_queue_size,
            metrics=self.metrics,
        )
        self._health_runner: AppRunner | None = None

    async def start(self) -> None:
        """Start the WebSocket transport and, if enabled, the health server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        await self.transport.start()

        if self.config.health.enabled:
            health_app = Application()
            setup_health_routes(health_app, self.registry, self.transport, self.metrics)

            self._health_runner = AppRunner(health_app)
            await self._health_runner.setup()
            site = TCPSite(self._health_runner, self.config.health.host, self.config.health_port)
            try:
                await site.start()
            except OSError:
                await self.transport.stop()
                await self._health_runner.cleanup()
                self._health_runner = None
                raise
            logger.info("Health check server started", extra={"port": self.config.health_port})

        logger.info(
            "Signaling relay ready",
            extra={"port": self.config.transport.websocket.port},
        )

    async def stop(self) -> None:
        """Stop listeners and close all connections."""
        logger.info("Shutting down signaling relay")

        try:
            await asyncio.wait_for(
                self.transport.stop(),
                timeout=self.config.graceful_shutdown_timeout_s,
            )
        except TimeoutError:
            logger.warning(
                "Transport did not stop within timeout",
                extra={"timeout_s": self.config.graceful_shutdown_timeout_s},
            )

        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None
            logger.info("Health check server stopped")

        logger.info("Signaling relay stopped", extra={"remaining": len(self.registry)})


async def start_server(config: RelayConfig) -> None:
    """Run the relay until cancelled.

    Args:
        config: Relay configuration
    """
    server = RelayServer(config)
    await server.start()

    try:
        await asyncio.Future()  # run forever
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        await server.stop()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="WebRTC signaling relay")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to relay config YAML file (defaults apply if missing)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="WebSocket port (overrides config and RELAY_PORT)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (overrides config and RELAY_LOG_LEVEL)",
    )
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> RelayConfig:
    """Build the effective configuration from file, environment and arguments."""
    config = RelayConfig.from_yaml_with_defaults(args.config)
    if args.port is None and args.log_level is None:
        return config

    # Re-validate so CLI values go through the same checks as the file
    data = config.model_dump()
    if args.port is not None:
        data["transport"]["websocket"]["port"] = args.port
    if args.log_level is not None:
        data["log_level"] = args.log_level
    return RelayConfig.model_validate(data)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the signaling relay."""
    args = parse_args(argv)
    config = load_config(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(
        "Loaded configuration",
        extra={"config_path": str(args.config), "port": config.transport.websocket.port},
    )

    try:
        asyncio.run(start_server(config))
    except KeyboardInterrupt:
        logger.info("Signaling relay interrupted")


if __name__ == "__main__":
    main()
