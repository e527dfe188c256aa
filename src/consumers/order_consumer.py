"""Consumer for order outcome events from checkout."""

from datetime import datetime
from typing import Any

import structlog

from src.db.database import async_session_factory
from src.domains.fraud.collector import SignalCollector
from src.domains.fraud.config import FraudConfig
from src.domains.fraud.fingerprint import FingerprintRegistry
from src.domains.fraud.ledger import TrustLedger
from src.domains.fraud.models import OrderCompletedRequest, SessionStatus, TrustSnapshot

from .base import BaseConsumer

logger = structlog.get_logger()

ORDER_EVENT_TYPES = ["order-completed"]


class OrderOutcomeConsumer(BaseConsumer):
    """Feeds completed orders into the trust ledger.

    Redelivered events are harmless: the ledger keys each order by its id.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str = "trustgate",
        config: FraudConfig | None = None,
        session_factory=None,
    ) -> None:
        super().__init__(
            topics=[topic],
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
        )
        self._session_factory = session_factory or async_session_factory
        self._ledger = TrustLedger(config=config)
        self._collector = SignalCollector(config=config)
        self._registry = FingerprintRegistry()
        for event_type in ORDER_EVENT_TYPES:
            self.register_handler(event_type, self._handle_order_completed)

    async def _handle_order_completed(self, event: dict[str, Any]) -> None:
        payload = event.get("payload", {})
        order_id = payload.get("order_id")
        if not order_id or not payload.get("user_id"):
            logger.warning("order_event_incomplete", event_id=event.get("event_id"))
            return

        request = OrderCompletedRequest(
            user_id=payload["user_id"],
            amount=payload.get("amount", 0),
            currency=payload.get("currency", "USD"),
            session_id=payload.get("session_id"),
            seller_id=payload.get("seller_id"),
            completed_at=payload.get("completed_at"),
        )
        async with self._session_factory() as session:
            await record_outcome(
                session, self._ledger, self._collector, self._registry, order_id, request
            )


async def record_outcome(
    session,
    ledger: TrustLedger,
    collector: SignalCollector,
    registry: FingerprintRegistry,
    order_id: str,
    request: OrderCompletedRequest,
    now: datetime | None = None,
) -> tuple[TrustSnapshot, bool]:
    """Apply one order outcome: ledger update, device write-back, session close.

    Shared by the Kafka consumer and the HTTP completion endpoint.
    """
    snapshot, applied = await ledger.record_order_completion(
        session,
        user_id=request.user_id,
        order_id=order_id,
        amount=request.amount,
        currency=request.currency,
        session_id=request.session_id,
        seller_id=request.seller_id,
        completed_at=request.completed_at or now,
    )
    if applied and request.session_id:
        checkout = await collector.load_session(session, request.session_id)
        if checkout is not None and checkout.fingerprint_id is not None:
            await registry.mark_trusted(session, checkout.fingerprint_id)
        await collector.finalize(session, request.session_id, SessionStatus.COMPLETED, now)
        await session.commit()

    logger.info(
        "order_outcome_recorded",
        order_id=order_id,
        user_id=request.user_id,
        applied=applied,
        trust_score=snapshot.score,
        trust_band=snapshot.band.value,
    )
    return snapshot, applied
