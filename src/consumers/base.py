"""Kafka consumer loop that dispatches events to handlers by ``event_type``.

Offsets are committed after each message is dispatched, so a crash mid-handler
redelivers the event. Handlers must therefore be idempotent. Transient trust
engine errors are retried in place with backoff; when they persist the offset
is left uncommitted and the consumer seeks back to the message.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from aiokafka import AIOKafkaConsumer, TopicPartition

from src.domains.fraud.exceptions import TrustEngineError
from src.shared.kafka_utils import create_consumer

logger = structlog.get_logger()

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TrustEngineError) and exc.transient


class BaseConsumer:
    def __init__(
        self,
        topics: list[str],
        bootstrap_servers: str,
        group_id: str,
        handlers: dict[str, EventHandler] | None = None,
        max_attempts: int = 3,
        retry_backoff_s: float = 0.2,
    ):
        self.topics = topics
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.handlers: dict[str, EventHandler] = dict(handlers or {})
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_s = retry_backoff_s
        self._consumer: AIOKafkaConsumer | None = None

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        self.handlers[event_type] = handler

    async def start(self) -> None:
        self._consumer = create_consumer(self.topics, self.bootstrap_servers, self.group_id)
        await self._consumer.start()
        logger.info("consumer_started", topics=self.topics, group_id=self.group_id)
        try:
            async for msg in self._consumer:
                await self.process(msg)
        finally:
            await self._consumer.stop()

    async def process(self, msg: Any) -> bool:
        """Dispatch one consumer record and settle its offset.

        Returns False when the record was left uncommitted for redelivery.
        """
        try:
            handled = await self.dispatch(msg.value)
        except TrustEngineError as exc:
            logger.warning(
                "event_redelivery_scheduled",
                topic=msg.topic,
                partition=msg.partition,
                offset=msg.offset,
                error=exc.error_code,
            )
            self._consumer.seek(TopicPartition(msg.topic, msg.partition), msg.offset)
            return False

        if not handled:
            logger.warning("event_dropped", topic=msg.topic, offset=msg.offset)
        await self._consumer.commit()
        return True

    async def dispatch(self, event: Any) -> bool:
        """Route one decoded event.

        Returns False when the handler failed permanently. Transient errors are
        retried with exponential backoff and re-raised once attempts run out.
        """
        if not isinstance(event, dict):
            logger.warning("malformed_event_skipped", value_type=type(event).__name__)
            return True

        event_type = event.get("event_type", "unknown")
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.debug("no_handler_for_event", event_type=event_type)
            return True

        for attempt in range(1, self.max_attempts + 1):
            try:
                await handler(event)
            except Exception as exc:
                if not is_transient(exc):
                    logger.exception(
                        "event_handler_failed",
                        event_type=event_type,
                        event_id=event.get("event_id"),
                    )
                    return False
                if attempt == self.max_attempts:
                    raise
                logger.warning(
                    "event_handler_retry",
                    event_type=event_type,
                    event_id=event.get("event_id"),
                    attempt=attempt,
                    error=exc.error_code,
                )
                await asyncio.sleep(self.retry_backoff_s * 2 ** (attempt - 1))
            else:
                return True
        return False

    async def stop(self) -> None:
        if self._consumer is not None:
            await self._consumer.stop()
            self._consumer = None
            logger.info("consumer_stopped", topics=self.topics)
