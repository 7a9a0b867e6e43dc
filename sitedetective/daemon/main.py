"""Main daemon process for the site detective."""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import psutil
from aiohttp import web
from loguru import logger

from . import bus as events
from .api import create_api_app
from .config import Config
from .service import SiteDetective


class DetectiveDaemon:
    """Main daemon hosting the detective behind the HTTP API."""

    def __init__(self, config: Config, detective: Optional[SiteDetective] = None):
        self.config = config
        self.start_time = datetime.utcnow()
        self.detective = detective or SiteDetective.from_config(config)
        self.stopped = asyncio.Event()
        self._stopping: Optional[asyncio.Future] = None

        # Statistics
        self.stats = {
            "quick_scans": 0,
            "deep_scans_started": 0,
            "deep_scans_completed": 0,
            "deep_scans_failed": 0,
        }

        # HTTP API
        self.api_app = None
        self.api_runner = None
        self.api_site = None

    async def start(self) -> None:
        """Start all daemon services."""
        logger.info("Starting site detective daemon...")

        await self.detective.start()

        bus = self.detective.event_bus
        bus.subscribe(events.QUICK_SCAN_COMPLETED, self._count("quick_scans"))
        bus.subscribe(events.JOB_STARTED, self._count("deep_scans_started"))
        bus.subscribe(events.JOB_COMPLETED, self._count("deep_scans_completed"))
        bus.subscribe(events.JOB_FAILED, self._count("deep_scans_failed"))

        await self._start_api()

        logger.info("Site detective daemon started successfully")

    async def stop(self) -> None:
        """
        Stop all daemon services.

        Concurrent callers share one teardown; `stopped` is set only once it
        has finished.
        """
        if self._stopping is None:
            self._stopping = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._stopping)

    async def _shutdown(self) -> None:
        logger.info("Stopping site detective daemon...")
        try:
            if self.api_site:
                await self.api_site.stop()
            if self.api_runner:
                await self.api_runner.cleanup()

            await self.detective.stop()
        finally:
            self.stopped.set()

        logger.info("Site detective daemon stopped")

    async def _start_api(self) -> None:
        """Start the HTTP API server."""
        self.api_app = create_api_app(self)
        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        host, port = self.config.api.host, self.config.api.port
        self.api_site = web.TCPSite(self.api_runner, host, port)
        await self.api_site.start()

        logger.info(f"API server started on http://{host}:{port}")

    def _count(self, key: str):
        async def handler(event) -> None:
            self.stats[key] += 1
        return handler

    def get_status(self) -> dict:
        """Get daemon status and statistics."""
        process = psutil.Process()
        uptime = (datetime.utcnow() - self.start_time).total_seconds()

        return {
            "status": "running",
            "version": "0.1.0",
            "uptime": f"{uptime:.0f}s",
            "stats": {
                **self.stats,
                **self.detective.stats(),
                "memory_mb": process.memory_info().rss / 1024 / 1024,
                "cpu_percent": process.cpu_percent(),
            },
            "config": {
                "snapshot_path": str(self.config.site.snapshot_path or ""),
                "explainer": self.config.explainer.provider,
                "export_directory": str(self.config.export.directory),
            },
        }


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level
    )

    # Also log to file
    log_dir = Path.home() / ".local" / "share" / "sitedetective" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG"
    )


async def main(config_path: Optional[str] = None):
    """Main entry point for the daemon."""
    setup_logging()

    try:
        config = Config.load(Path(config_path) if config_path else None)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    daemon = DetectiveDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: (
            logger.info(f"Received signal {s.name}, shutting down..."),
            asyncio.create_task(daemon.stop()),
        ))

    try:
        await daemon.start()
        await daemon.stopped.wait()
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
    finally:
        await daemon.stop()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
