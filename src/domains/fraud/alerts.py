"""Publish newly created fraud signals to Kafka for the review team."""

import structlog

from src.db.models import FraudSignalDB

logger = structlog.get_logger()


def signal_event(signal: FraudSignalDB) -> dict:
    return {
        "event_type": "fraud-signal-created",
        "signal_id": signal.id,
        "session_id": signal.session_id,
        "user_id": signal.user_id,
        "signal_type": signal.signal_type,
        "severity": signal.severity,
        "weight": signal.weight,
        "rule_keys": signal.raw_evidence.get("rule_keys", []),
        "created_at": signal.created_at.isoformat(),
    }


async def publish_signals(signals: list[FraudSignalDB], producer, topic: str) -> int:
    """Send one event per signal, keyed by user so a user's signals stay ordered.

    Args:
        signals: Persisted signal rows (ids assigned).
        producer: An aiokafka AIOKafkaProducer created by ``create_producer``.
        topic: Destination topic.
    """
    if producer is None:
        logger.debug("kafka_producer_not_available", signal_count=len(signals))
        return 0

    published = 0
    for signal in signals:
        try:
            await producer.send_and_wait(
                topic,
                value=signal_event(signal),
                key=signal.user_id.encode("utf-8"),
            )
            published += 1
        except Exception:
            logger.exception("signal_publish_failed", signal_id=signal.id, topic=topic)
    if published:
        logger.info("signals_published_to_kafka", count=published, topic=topic)
    return published
