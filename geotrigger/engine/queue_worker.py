"""Worker executing auto-executable attempts from the execution queue."""

import asyncio

from geotrigger.core.errors import AdmissionDenied, ContractRejected, GeoTriggerError, SubmissionFailed
from geotrigger.core.logging import get_logger, short_key
from geotrigger.engine.orchestrator import ExecutionOrchestrator
from geotrigger.observability.metrics import EXECUTION_QUEUE_LENGTH
from geotrigger.storage.auxiliary import ExecutionQueue

logger = get_logger(__name__)


class QueuedExecutionWorker:
    """Pulls queued attempts and submits them off the admission path."""

    def __init__(self, queue: ExecutionQueue, orchestrator: ExecutionOrchestrator):
        self._queue = queue
        self._orchestrator = orchestrator
        self._should_stop = False

    async def start(self) -> None:
        """Start processing the execution queue."""
        logger.info("Queued execution worker started")

        while not self._should_stop:
            try:
                item = await self._queue.dequeue(timeout=2)
                EXECUTION_QUEUE_LENGTH.set(await self._queue.queue_length())
                if item:
                    await self.process(*item)
            except Exception as e:
                logger.error("Worker error", error=str(e), exc_info=True)
                await asyncio.sleep(1)

        logger.info("Queued execution worker stopped")

    def stop(self) -> None:
        """Signal worker to stop."""
        self._should_stop = True

    async def process(self, rule_id: int, public_key: str, event_id: str) -> None:
        """Execute one queued attempt.

        Admission denials leave the attempt queued in the log for the user to
        confirm; submission failures leave it retryable.
        """
        log = logger.bind(rule_id=rule_id, event_id=event_id, public_key=short_key(public_key))
        try:
            result = await self._orchestrator.execute_queued(rule_id, public_key, event_id)
        except AdmissionDenied as e:
            log.info("Queued execution not admitted", reason=e.code, error=e.message)
        except (SubmissionFailed, ContractRejected) as e:
            log.warning("Queued execution failed", reason=e.code, error=e.message)
        except GeoTriggerError as e:
            log.warning("Queued execution skipped", reason=e.code, error=e.message)
        else:
            log.info("Queued execution processed", state=result.state.value, tx_hash=result.tx_hash)
