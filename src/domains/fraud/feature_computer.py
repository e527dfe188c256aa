"""Compute per-user order history features from completed_orders."""

from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import CompletedOrderDB

from .config import FraudConfig, default_config
from .models import UserHistory

logger = structlog.get_logger()


class UserHistoryComputer:
    """Queries completed orders to compute the UserHistory a checkout is scored against."""

    def __init__(self, config: FraudConfig | None = None) -> None:
        self._config = config or default_config

    async def compute(
        self,
        session: AsyncSession,
        user_id: str,
        now: datetime | None = None,
        seller_id: str | None = None,
    ) -> UserHistory:
        now = now or datetime.now(UTC)
        history = self._config.history
        window_start = now - timedelta(minutes=history.velocity_window_minutes)
        day_start = now - timedelta(hours=history.daily_window_hours)
        average_start = now - timedelta(days=history.average_order_window_days)

        velocity = await self._velocity(session, user_id, window_start, now)
        daily = await self._window_count(session, user_id, day_start, now)
        same_seller = 0
        if seller_id is not None:
            same_seller = await self._window_count(session, user_id, day_start, now, seller_id)
        average = await self._average_order_value(session, user_id, average_start, now)
        largest = await self._max_order_amount(session, user_id)
        prior = await self._completed_count(session, user_id)

        return UserHistory(
            tx_count_window=velocity["count"],
            tx_amount_window=velocity["sum"],
            tx_count_day=daily,
            same_seller_orders_day=same_seller,
            average_order_value=average,
            max_order_amount=largest,
            prior_completed_orders=prior,
        )

    async def _velocity(
        self,
        session: AsyncSession,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> dict:
        stmt = select(
            func.count().label("cnt"),
            func.coalesce(func.sum(CompletedOrderDB.amount), 0).label("total"),
        ).where(
            CompletedOrderDB.user_id == user_id,
            CompletedOrderDB.completed_at >= start,
            CompletedOrderDB.completed_at <= end,
        )
        result = await session.execute(stmt)
        row = result.one()
        return {"count": int(row.cnt), "sum": float(row.total)}

    async def _window_count(
        self,
        session: AsyncSession,
        user_id: str,
        start: datetime,
        end: datetime,
        seller_id: str | None = None,
    ) -> int:
        stmt = select(func.count()).where(
            CompletedOrderDB.user_id == user_id,
            CompletedOrderDB.completed_at >= start,
            CompletedOrderDB.completed_at <= end,
        )
        if seller_id is not None:
            stmt = stmt.where(CompletedOrderDB.seller_id == seller_id)
        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def _average_order_value(
        self,
        session: AsyncSession,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> float | None:
        stmt = select(func.avg(CompletedOrderDB.amount)).where(
            CompletedOrderDB.user_id == user_id,
            CompletedOrderDB.completed_at >= start,
            CompletedOrderDB.completed_at <= end,
        )
        result = await session.execute(stmt)
        average = result.scalar_one_or_none()
        return float(average) if average is not None else None

    async def _max_order_amount(self, session: AsyncSession, user_id: str) -> float | None:
        stmt = select(func.max(CompletedOrderDB.amount)).where(CompletedOrderDB.user_id == user_id)
        result = await session.execute(stmt)
        largest = result.scalar_one_or_none()
        return float(largest) if largest is not None else None

    async def _completed_count(self, session: AsyncSession, user_id: str) -> int:
        stmt = select(func.count()).where(CompletedOrderDB.user_id == user_id)
        result = await session.execute(stmt)
        return int(result.scalar_one())
