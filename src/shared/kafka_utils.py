"""Kafka client construction shared by the signal publisher and the order consumer.

Events travel as UTF-8 JSON objects; keys are user ids so every event for a
user lands on the same partition.
"""

import json
from typing import Any

import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

logger = structlog.get_logger()


def encode_event(value: dict[str, Any]) -> bytes:
    return json.dumps(value, default=str).encode("utf-8")


def decode_event(raw: bytes) -> Any:
    return json.loads(raw.decode("utf-8"))


async def create_producer(
    bootstrap_servers: str, client_id: str = "trustgate"
) -> AIOKafkaProducer:
    """Start a producer that waits for all in-sync replicas before acking."""
    producer = AIOKafkaProducer(
        bootstrap_servers=bootstrap_servers,
        client_id=client_id,
        acks="all",
        value_serializer=encode_event,
    )
    await producer.start()
    logger.info("kafka_producer_started", bootstrap_servers=bootstrap_servers)
    return producer


def create_consumer(topics: list[str], bootstrap_servers: str, group_id: str) -> AIOKafkaConsumer:
    """Build (but do not start) a consumer with manual offset commits."""
    return AIOKafkaConsumer(
        *topics,
        bootstrap_servers=bootstrap_servers,
        group_id=group_id,
        value_deserializer=decode_event,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
