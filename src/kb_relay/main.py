"""Main entry point for kb-relay."""

import asyncio
import logging
import os
import signal
import sys

import uvicorn
from dotenv import load_dotenv
from pydantic import SecretStr, ValidationError

from kb_relay.backend import ChatBackendClient
from kb_relay.config import Config, load_config
from kb_relay.core import BackgroundDispatcher, DedupGuard, FeedbackCorrelator
from kb_relay.health import HealthMonitor, create_app
from kb_relay.orchestrator import Orchestrator
from kb_relay.ratelimit import RateLimiter, WindowStore, open_window_store

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("discord").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)


def load_secrets_from_env(config: Config) -> Config:
    """Load tokens from the conventional env vars if not in config."""
    if not config.discord.token:
        token = os.getenv("DISCORD_BOT_TOKEN")
        if token:
            config.discord.token = SecretStr(token)

    if not config.backend.api_key:
        key = os.getenv("DISCORD_BOT_API_KEY")
        if key:
            config.backend.api_key = SecretStr(key)

    return config


class RelayService:
    """Owns every long-lived component and their start/stop order."""

    def __init__(self, config: Config):
        self._config = config
        self.store: WindowStore | None = None
        self.limiter: RateLimiter | None = None
        self.dedup = DedupGuard(config.dedup.max_tracked)
        self.correlator = FeedbackCorrelator(
            ttl_ms=config.feedback.ttl_ms,
            sweep_interval_seconds=config.feedback.sweep_interval_seconds,
        )
        self.dispatcher = BackgroundDispatcher()
        self.backend = ChatBackendClient(config.backend)
        self.monitor = HealthMonitor(metrics_enabled=config.health.metrics_enabled)
        self.orchestrator: Orchestrator | None = None
        self._client = None
        self._health_server: uvicorn.Server | None = None
        self._tasks: list[asyncio.Task] = []
        self._stopped = False

    async def init(self) -> None:
        """Build and start components. Does not connect to Discord yet."""
        cfg = self._config

        self.store = await open_window_store(cfg.rate_limit)
        self.monitor.set_shared_store_status(self.store.backend == "redis")
        self.limiter = RateLimiter(
            self.store,
            window_ms=cfg.rate_limit.window_ms,
            max_requests=cfg.rate_limit.max_requests,
            enabled=cfg.rate_limit.enabled,
        )

        await self.correlator.init()
        self.dispatcher.start()

        logger.info("Testing backend connection...")
        backend_ok = await self.backend.health_check()
        if not backend_ok:
            logger.warning("Backend connection test failed; answers will fail until it is reachable")
        self.monitor.set_backend_status(backend_ok)

        self.orchestrator = Orchestrator(
            cfg.discord,
            limiter=self.limiter,
            dedup=self.dedup,
            correlator=self.correlator,
            backend=self.backend,
            monitor=self.monitor,
            dispatcher=self.dispatcher,
            upstream_timeout_seconds=cfg.backend.request_timeout_seconds,
        )

        if cfg.health.enabled:
            app = create_app(self.monitor, self.limiter, self.dedup, self.correlator)
            server_config = uvicorn.Config(
                app, host=cfg.health.host, port=cfg.health.port, log_level="warning"
            )
            self._health_server = uvicorn.Server(server_config)
            self._tasks.append(asyncio.create_task(self._health_server.serve()))
            logger.info(f"Health server started on http://{cfg.health.host}:{cfg.health.port}")

        self._tasks.append(asyncio.create_task(self._log_status_forever()))

    async def run(self) -> None:
        """Connect to Discord and run until the client closes."""
        from kb_relay.platform.discord_client import DiscordRelay

        token = self._config.discord.token
        if not token:
            raise ValueError("DISCORD_BOT_TOKEN must be set")

        self._client = DiscordRelay(
            self.orchestrator,
            self.monitor,
            command_prefix=self._config.discord.command_prefix,
        )
        logger.info("Connecting to Discord...")
        await self._client.start(token.get_secret_value())

    async def shutdown(self) -> None:
        """Stop everything in reverse start order. Safe to call twice."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down...")

        if self._client is not None:
            await self._client.close()
            self.monitor.set_platform_status(False)

        if self._health_server is not None:
            self._health_server.should_exit = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.dispatcher.shutdown()
        await self.correlator.shutdown()
        if self.limiter is not None:
            await self.limiter.shutdown()
        await self.backend.close()
        logger.info("Shutdown complete")

    async def _log_status_forever(self) -> None:
        while True:
            await asyncio.sleep(self._config.health.status_log_interval_seconds)
            logger.info(
                f"STATUS: healthy={self.monitor.healthy} "
                f"pending_feedback={len(self.correlator)} "
                f"processed={len(self.dedup)} {self.monitor.stats.summary_line()}"
            )


async def async_main(config_path: str | None = None, debug: bool = False) -> None:
    """Async main entry point."""
    setup_logging(debug)

    # Load .env file if present
    load_dotenv()

    try:
        config = load_config(config_path)
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)
    config = load_secrets_from_env(config)

    logger.info("Starting kb-relay...")
    logger.info(f"Backend URL: {config.backend.url}")
    logger.info(
        f"Rate limit: enabled={config.rate_limit.enabled} "
        f"window={config.rate_limit.window_ms}ms max={config.rate_limit.max_requests}"
    )

    service = RelayService(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.shutdown()))
        except NotImplementedError:
            pass  # Windows

    try:
        await service.init()
        await service.run()
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        await service.shutdown()
        sys.exit(1)
    await service.shutdown()


def main() -> None:
    """Main entry point (sync wrapper)."""
    import argparse

    parser = argparse.ArgumentParser(
        description="kb-relay: knowledge-base chat relay bot for Discord",
    )
    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    asyncio.run(async_main(config_path=args.config, debug=args.debug))


if __name__ == "__main__":
    main()
