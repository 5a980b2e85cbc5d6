"""Geo-match ingestion handler."""

import time

from geotrigger.core.logging import get_logger, short_key
from geotrigger.engine.orchestrator import ExecutionOrchestrator
from geotrigger.models.event import MatchEvent
from geotrigger.observability.tracing import TraceContext, match_trace_id
from geotrigger.storage.auxiliary import IdempotencyStore

logger = get_logger(__name__)


class MatchHandler:
    """Records geo-matcher results as execution attempts."""

    def __init__(self, orchestrator: ExecutionOrchestrator, idempotency: IdempotencyStore):
        self._orchestrator = orchestrator
        self._idempotency = idempotency

    async def handle_match(self, match: MatchEvent) -> None:
        """Process one match.

        Pipeline steps:
        1. Idempotency check on (event, rule, wallet)
        2. Record the attempt with its initial pending reason

        Args:
            match: Match to record
        """
        start_time = time.time()

        trace_id = match_trace_id(match.event_id, match.rule_id, match.public_key)
        with TraceContext(trace_id, event_id=match.event_id, rule_id=match.rule_id):
            match_id = f"{match.event_id}:{match.rule_id}:{match.public_key}"
            if not await self._idempotency.mark_processed(match_id):
                logger.debug("Match already processed", event_id=match.event_id, rule_id=match.rule_id)
                return

            attempt = await self._orchestrator.record_match(match)

            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.info(
                "Match processing complete",
                event_id=match.event_id,
                rule_id=match.rule_id,
                public_key=short_key(match.public_key),
                recorded=attempt is not None,
                elapsed_ms=elapsed_ms,
            )
