"""
TagScan Main Controller

Runs the scan pipeline as a long-lived service:
- Builds the pipeline from configuration
- Checks durable storage reachability
- Serves the REST control API
- Shuts everything down cleanly on SIGINT/SIGTERM
"""

import asyncio
import logging
import signal
import sys

logger = logging.getLogger(__name__)


class TagScanController:
    """Owns the pipeline and the API server task."""

    def __init__(self):
        self._running = False
        self._pipeline = None
        self._background_tasks: list[asyncio.Task] = []
        logger.info("TagScanController initialized")

    @property
    def pipeline(self):
        return self._pipeline

    async def start(self) -> None:
        """Start TagScan and block until shutdown."""
        from tagscan.config import api_config, setup_logging

        setup_logging()

        logger.info("=== Starting TagScan ===")

        from tagscan.pipeline import create_pipeline

        self._pipeline = create_pipeline()

        if self._pipeline.storage.enabled:
            if await self._pipeline.storage.check_health():
                logger.info("Durable storage reachable")
            else:
                logger.warning("Durable storage unreachable, uploads will fail until it recovers")
        else:
            logger.warning("Durable storage not configured, originals will not be kept")

        self._setup_signal_handlers()
        self._running = True

        if api_config.enabled:
            from tagscan.api.server import start_server

            task = asyncio.create_task(
                start_server(
                    host=api_config.host,
                    port=api_config.port,
                    pipeline=self._pipeline,
                ),
                name="api_server",
            )
            self._background_tasks.append(task)
            logger.info(f"API server task started on {api_config.host}:{api_config.port}")

        logger.info("=== TagScan Running ===")

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            logger.info("Main loop cancelled")

        await self._shutdown()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Signal {signum} received, initiating shutdown...")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def _shutdown(self) -> None:
        """Clean shutdown of all components."""
        logger.info("Initiating shutdown...")

        if self._background_tasks:
            for task in self._background_tasks:
                if not task.done():
                    task.cancel()
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background_tasks, return_exceptions=True),
                    timeout=5.0,
                )
            except asyncio.TimeoutError:
                logger.warning("Background tasks did not cancel within 5s")
            self._background_tasks.clear()

        if self._pipeline:
            await self._pipeline.close()

        logger.info("Shutdown complete")

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "pipeline": self._pipeline.get_status() if self._pipeline else None,
        }


# ==================== Entry Point ====================


async def app() -> None:
    """Main application entry point."""
    controller = TagScanController()
    await controller.start()


def main() -> None:
    """CLI entry point."""
    from tagscan import __version__

    print(f"=== TagScan v{__version__} ===")
    print("Multi-modal capture and valuation pipeline")
    print()

    try:
        asyncio.run(app())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
