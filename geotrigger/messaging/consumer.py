"""RabbitMQ consumer for geo-matcher output."""

import json
from typing import Any, Callable, Coroutine

import aio_pika
from aio_pika import IncomingMessage
from aio_pika.abc import AbstractRobustConnection
from pydantic import ValidationError

from geotrigger.core.config import get_settings
from geotrigger.core.logging import get_logger, short_key
from geotrigger.models.event import MatchEvent

logger = get_logger(__name__)

MatchHandler = Callable[[MatchEvent], Coroutine[Any, Any, None]]


def parse_match(body: bytes, message_id: str | None = None) -> MatchEvent:
    """Build a MatchEvent from a message body.

    The geo-matcher publishes ``rule_id``, ``public_key`` and the location
    event id (``event_id``, falling back to ``update_id`` and then the AMQP
    message id), plus optional ``user_id``, ``latitude``, ``longitude`` and
    ``matched_at``.

    Raises:
        ValueError: invalid JSON or missing required fields
    """
    data = json.loads(body.decode())
    if not isinstance(data, dict):
        raise ValueError("Match message must be a JSON object")

    event_id = data.get("event_id") or data.get("update_id") or message_id
    if event_id is None:
        raise ValueError("Match message has no event id")

    fields = {
        "rule_id": data.get("rule_id"),
        "public_key": data.get("public_key"),
        "event_id": str(event_id),
        "user_id": data.get("user_id"),
        "latitude": data.get("latitude"),
        "longitude": data.get("longitude"),
    }
    if data.get("matched_at"):
        fields["matched_at"] = data["matched_at"]
    try:
        return MatchEvent(**fields)
    except ValidationError as e:
        raise ValueError(str(e)) from e


class RabbitMQConsumer:
    """Consumes geo-match messages and hands them to the ingestion handler."""

    def __init__(self, handler: MatchHandler):
        self._settings = get_settings()
        self._handler = handler
        self._connection: AbstractRobustConnection | None = None
        self._should_stop = False

    async def connect(self) -> None:
        """Connect to RabbitMQ."""
        self._connection = await aio_pika.connect_robust(
            self._settings.rabbitmq_url,
            reconnect_interval=5,
        )
        logger.info("Connected to RabbitMQ")

    async def disconnect(self) -> None:
        """Disconnect from RabbitMQ."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Disconnected from RabbitMQ")

    async def start_consuming(self) -> None:
        """Consume match messages until stopped."""
        if not self._connection:
            await self.connect()

        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=10)

        queue = await channel.declare_queue(
            self._settings.rabbitmq_queue,
            durable=True,
        )

        logger.info("Starting match consumption", queue=self._settings.rabbitmq_queue)

        async with queue.iterator() as queue_iter:
            async for message in queue_iter:
                if self._should_stop:
                    break
                await self._process_message(message)

    async def _process_message(self, message: IncomingMessage) -> None:
        """Process a single message.

        Malformed messages are logged and acknowledged; handler errors are
        logged so one bad match does not stall the queue.
        """
        async with message.process():
            try:
                match = parse_match(message.body, message.message_id)
            except ValueError as e:
                logger.warning("Invalid match message", message_id=message.message_id, error=str(e))
                return

            logger.debug(
                "Processing match",
                event_id=match.event_id,
                rule_id=match.rule_id,
                public_key=short_key(match.public_key),
            )
            try:
                await self._handler(match)
            except Exception as e:
                logger.error(
                    "Error processing match",
                    event_id=match.event_id,
                    rule_id=match.rule_id,
                    error=str(e),
                    exc_info=True,
                )

    def stop(self) -> None:
        """Signal consumer to stop."""
        self._should_stop = True
        logger.info("Consumer stop requested")
