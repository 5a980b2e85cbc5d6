"""Worker process: match ingestion, queued executions and periodic reconciliation."""

import asyncio
import signal

from geotrigger.core.config import get_settings
from geotrigger.core.logging import get_logger, setup_logging
from geotrigger.engine.factory import build_orchestrator, build_sweeper
from geotrigger.engine.queue_worker import QueuedExecutionWorker
from geotrigger.engine.reconciliation import ReconciliationSweeper
from geotrigger.messaging.consumer import RabbitMQConsumer
from geotrigger.messaging.handler import MatchHandler
from geotrigger.storage.auxiliary import ExecutionQueue, IdempotencyStore
from geotrigger.storage.redis_client import (
    close_redis_pool,
    get_redis,
    init_redis_pool,
)

logger = get_logger(__name__)


class WorkerManager:
    """Manager for coordinating worker processes."""

    def __init__(self):
        self._settings = get_settings()
        self._consumer: RabbitMQConsumer | None = None
        self._executor: QueuedExecutionWorker | None = None
        self._sweeper: ReconciliationSweeper | None = None
        self._orchestrator = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all worker processes."""
        setup_logging()
        logger.info("Starting worker manager")

        await init_redis_pool()
        redis = get_redis()

        self._orchestrator = build_orchestrator(redis)
        handler = MatchHandler(self._orchestrator, IdempotencyStore(redis))
        self._consumer = RabbitMQConsumer(handler.handle_match)
        self._executor = QueuedExecutionWorker(ExecutionQueue(redis), self._orchestrator)
        self._sweeper = build_sweeper(redis)

        try:
            await asyncio.gather(
                self._run_consumer(),
                self._run_executor(),
                self._run_sweeper(),
            )
        finally:
            await self._cleanup()

    async def _run_consumer(self) -> None:
        """Run match consumer."""
        if self._consumer:
            try:
                await self._consumer.start_consuming()
            except asyncio.CancelledError:
                logger.info("Consumer cancelled")
            except Exception as e:
                logger.error("Consumer error", error=str(e), exc_info=True)

    async def _run_executor(self) -> None:
        """Run queued execution worker."""
        if self._executor:
            try:
                await self._executor.start()
            except asyncio.CancelledError:
                logger.info("Queued execution worker cancelled")
            except Exception as e:
                logger.error("Queued execution worker error", error=str(e), exc_info=True)

    async def _run_sweeper(self) -> None:
        """Run reconciliation passes until shutdown."""
        interval = self._settings.sweep_interval_seconds
        while not self._shutdown_event.is_set():
            try:
                await self._sweeper.run()
            except asyncio.CancelledError:
                logger.info("Sweeper cancelled")
                return
            except Exception as e:
                logger.error("Reconciliation pass failed", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def stop(self) -> None:
        """Signal workers to stop."""
        logger.info("Stopping workers")
        if self._consumer:
            self._consumer.stop()
        if self._executor:
            self._executor.stop()
        self._shutdown_event.set()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        logger.info("Cleaning up resources")
        if self._consumer:
            await self._consumer.disconnect()
        if self._orchestrator:
            await self._orchestrator.close()
        await close_redis_pool()
        logger.info("Cleanup complete")


async def main() -> None:
    """Main entry point for worker process."""
    manager = WorkerManager()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(manager.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await manager.start()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
