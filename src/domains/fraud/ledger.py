"""Trust ledger: one progressive trust score per user.

State transitions are pure functions over ``TrustState``; ``TrustLedger``
persists them. Each mutation is keyed by an idempotency key so duplicate or
replayed events apply once, and every write is a version-checked conditional
update so two events settling for the same user never lose an update.
"""

import hashlib
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import CompletedOrderDB, FraudSignalDB, LedgerEntryDB, TrustScoreDB

from .config import FraudConfig, default_config
from .exceptions import LedgerConflict, UnknownUser
from .models import (
    SEVERITY_RANK,
    ResolutionStatus,
    ReviewOutcome,
    Severity,
    TrustBand,
    TrustSnapshot,
    TrustState,
)

logger = structlog.get_logger()

TRUST_HOLDING_SEVERITIES = [
    s.value for s in Severity if SEVERITY_RANK[s] >= SEVERITY_RANK[Severity.WARNING]
]


def clamp_score(score: int) -> int:
    return max(0, min(100, score))


def severity_penalty(severity: Severity, config: FraudConfig | None = None) -> int:
    cfg = config or default_config
    return {
        Severity.CRITICAL: cfg.ledger.critical_penalty,
        Severity.WARNING: cfg.ledger.warning_penalty,
        Severity.INFORMATIONAL: cfg.ledger.informational_penalty,
    }[Severity(severity)]


def derive_band(state: TrustState, config: FraudConfig | None = None) -> TrustBand:
    cfg = config or default_config
    if state.is_suspended:
        return TrustBand.SUSPENDED
    if state.score >= cfg.ledger.trusted_min:
        return TrustBand.TRUSTED
    if state.score >= cfg.ledger.building_min:
        return TrustBand.BUILDING
    if state.total_confirmed_fraud_signals > 0:
        return TrustBand.FLAGGED
    return TrustBand.NEW


def apply_order_completion(
    state: TrustState,
    has_open_signal: bool,
    config: FraudConfig | None = None,
) -> TrustState:
    """+2 per clean completed order, capped at 100. Open signals or suspension hold the score."""
    cfg = config or default_config
    completed = state.total_completed_orders + 1
    if has_open_signal or state.is_suspended:
        return state.model_copy(update={"total_completed_orders": completed})
    increment = min(cfg.ledger.completion_increment, 100 - state.score)
    return state.model_copy(
        update={
            "score": clamp_score(state.score + increment),
            "consecutive_clean_transactions": state.consecutive_clean_transactions + 1,
            "total_completed_orders": completed,
        }
    )


def apply_confirmed_signal(
    state: TrustState,
    severity: Severity,
    config: FraudConfig | None = None,
) -> TrustState:
    cfg = config or default_config
    score = clamp_score(state.score - severity_penalty(severity, cfg))
    return state.model_copy(
        update={
            "score": score,
            "consecutive_clean_transactions": 0,
            "total_confirmed_fraud_signals": state.total_confirmed_fraud_signals + 1,
            "is_suspended": state.is_suspended or score <= cfg.ledger.suspension_floor,
        }
    )


def idempotency_key(user_id: str, kind: str, reference_id: str) -> str:
    return hashlib.sha256(f"{user_id}:{kind}:{reference_id}".encode()).hexdigest()


def _unchanged(state: TrustState) -> TrustState:
    return state


def _state(row: TrustScoreDB) -> TrustState:
    return TrustState(
        score=row.score,
        consecutive_clean_transactions=row.consecutive_clean_transactions,
        total_confirmed_fraud_signals=row.total_confirmed_fraud_signals,
        total_completed_orders=row.total_completed_orders,
        is_suspended=row.is_suspended,
    )


class TrustLedger:
    def __init__(self, config: FraudConfig | None = None) -> None:
        self._config = config or default_config

    def snapshot(
        self,
        user_id: str,
        state: TrustState,
        last_updated_at: datetime | None = None,
    ) -> TrustSnapshot:
        band = derive_band(state, self._config)
        return TrustSnapshot(
            user_id=user_id,
            score=state.score,
            band=band,
            consecutive_clean_transactions=state.consecutive_clean_transactions,
            total_confirmed_fraud_signals=state.total_confirmed_fraud_signals,
            total_completed_orders=state.total_completed_orders,
            is_suspended=state.is_suspended,
            requires_secondary_verification=(
                band in (TrustBand.FLAGGED, TrustBand.SUSPENDED)
                or state.score < self._config.ledger.secondary_verification_below
            ),
            last_updated_at=last_updated_at,
        )

    def snapshot_row(self, row: TrustScoreDB) -> TrustSnapshot:
        return self.snapshot(row.user_id, _state(row), row.last_updated_at)

    async def get(self, session: AsyncSession, user_id: str) -> TrustScoreDB:
        row = await self._load(session, user_id)
        if row is None:
            raise UnknownUser(f"No trust record for user {user_id}", user_id=user_id)
        return row

    async def get_or_create(
        self,
        session: AsyncSession,
        user_id: str,
        now: datetime | None = None,
    ) -> TrustScoreDB:
        """Return the user's trust record, provisioning the default on first sight."""
        try:
            return await self.get(session, user_id)
        except UnknownUser:
            pass

        now = now or datetime.now(UTC)
        row = TrustScoreDB(
            user_id=user_id,
            score=self._config.ledger.default_score,
            last_updated_at=now,
            consecutive_clean_transactions=0,
            total_confirmed_fraud_signals=0,
            total_completed_orders=0,
            is_suspended=False,
            version=1,
        )
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
        except IntegrityError:
            return await self.get(session, user_id)
        logger.info("trust_score_provisioned", user_id=user_id, score=row.score)
        return row

    async def record_order_completion(
        self,
        session: AsyncSession,
        user_id: str,
        order_id: str,
        amount: float,
        currency: str = "USD",
        session_id: str | None = None,
        completed_at: datetime | None = None,
        seller_id: str | None = None,
    ) -> tuple[TrustSnapshot, bool]:
        """Apply a completed order. Returns the resulting snapshot and whether it applied."""
        now = completed_at or datetime.now(UTC)
        has_open = await self._has_open_signal(session, user_id)

        def on_applied() -> None:
            session.add(
                CompletedOrderDB(
                    order_id=order_id,
                    user_id=user_id,
                    amount=amount,
                    currency=currency,
                    session_id=session_id,
                    seller_id=seller_id,
                    completed_at=now,
                )
            )

        snapshot, applied = await self._mutate(
            session,
            user_id=user_id,
            key=idempotency_key(user_id, "order", order_id),
            mutation="order_completed",
            reference_id=order_id,
            transition=lambda s: apply_order_completion(s, has_open, self._config),
            now=now,
            on_applied=on_applied,
        )
        await session.commit()
        return snapshot, applied

    async def apply_signal_resolution(
        self,
        session: AsyncSession,
        user_id: str,
        signal_id: int,
        severity: Severity,
        decision: ReviewOutcome,
        now: datetime | None = None,
        commit: bool = True,
    ) -> TrustSnapshot:
        """Confirmed signals cost the severity penalty; false positives are recorded only."""
        if decision == ReviewOutcome.CONFIRMED:
            transition = partial(apply_confirmed_signal, severity=severity, config=self._config)
            mutation = "signal_confirmed"
        else:
            transition = _unchanged
            mutation = "signal_false_positive"

        snapshot, _ = await self._mutate(
            session,
            user_id=user_id,
            key=idempotency_key(user_id, "signal", str(signal_id)),
            mutation=mutation,
            reference_id=str(signal_id),
            transition=transition,
            now=now or datetime.now(UTC),
        )
        if commit:
            await session.commit()
        if snapshot.is_suspended and decision == ReviewOutcome.CONFIRMED:
            logger.warning("user_suspended", user_id=user_id, score=snapshot.score)
        return snapshot

    async def reinstate(
        self,
        session: AsyncSession,
        user_id: str,
        admin_id: str,
        score: int | None = None,
    ) -> TrustSnapshot:
        """Manual exit from suspension; the only way out of the suspended band."""
        restored = score if score is not None else self._config.ledger.suspension_floor + 1

        snapshot, _ = await self._mutate(
            session,
            user_id=user_id,
            key=idempotency_key(user_id, "reinstatement", str(uuid.uuid4())),
            mutation="manual_reinstatement",
            reference_id=admin_id,
            transition=lambda s: s.model_copy(
                update={"is_suspended": False, "score": clamp_score(restored)}
            ),
            now=datetime.now(UTC),
        )
        await session.commit()
        logger.info("user_reinstated", user_id=user_id, admin_id=admin_id, score=snapshot.score)
        return snapshot

    async def _mutate(
        self,
        session: AsyncSession,
        user_id: str,
        key: str,
        mutation: str,
        reference_id: str,
        transition: Callable[[TrustState], TrustState],
        now: datetime,
        on_applied: Callable[[], None] | None = None,
    ) -> tuple[TrustSnapshot, bool]:
        row = await self.get_or_create(session, user_id, now)

        # The idempotency key and the versioned update share one savepoint: a
        # concurrent duplicate fails on the unique index, and a conflict that
        # outlives the retries releases the key with the rest of the savepoint.
        entry = LedgerEntryDB(
            idempotency_key=key,
            user_id=user_id,
            mutation=mutation,
            reference_id=reference_id,
            score_before=row.score,
            score_after=row.score,
            created_at=now,
        )
        try:
            async with session.begin_nested():
                session.add(entry)
                await session.flush()
                before, after = await self._versioned_update(
                    session, row, user_id, mutation, transition, now
                )
                entry.score_before = before.score
                entry.score_after = after.score
        except IntegrityError:
            logger.info(
                "ledger_mutation_duplicate",
                user_id=user_id,
                mutation=mutation,
                reference_id=reference_id,
            )
            return self.snapshot_row(row), False

        if on_applied is not None:
            on_applied()

        logger.info(
            "trust_ledger_updated",
            user_id=user_id,
            mutation=mutation,
            reference_id=reference_id,
            score_before=before.score,
            score_after=after.score,
            band=derive_band(after, self._config).value,
        )
        return self.snapshot(user_id, after, now), True

    async def _versioned_update(
        self,
        session: AsyncSession,
        row: TrustScoreDB,
        user_id: str,
        mutation: str,
        transition: Callable[[TrustState], TrustState],
        now: datetime,
    ) -> tuple[TrustState, TrustState]:
        for attempt in range(self._config.ledger.max_retries + 1):
            before = _state(row)
            after = transition(before)
            result = await session.execute(
                update(TrustScoreDB)
                .where(TrustScoreDB.user_id == user_id, TrustScoreDB.version == row.version)
                .values(
                    score=after.score,
                    consecutive_clean_transactions=after.consecutive_clean_transactions,
                    total_confirmed_fraud_signals=after.total_confirmed_fraud_signals,
                    total_completed_orders=after.total_completed_orders,
                    is_suspended=after.is_suspended,
                    last_updated_at=now,
                    version=row.version + 1,
                )
            )
            if result.rowcount == 1:
                return before, after
            logger.warning("ledger_conflict_retry", user_id=user_id, attempt=attempt + 1)
            row = await self._load(session, user_id, refresh=True)
            if row is None:
                raise UnknownUser(f"No trust record for user {user_id}", user_id=user_id)
        raise LedgerConflict(
            f"Concurrent trust update for user {user_id}", user_id=user_id, mutation=mutation
        )

    async def _load(
        self, session: AsyncSession, user_id: str, refresh: bool = False
    ) -> TrustScoreDB | None:
        stmt = select(TrustScoreDB).where(TrustScoreDB.user_id == user_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _has_open_signal(self, session: AsyncSession, user_id: str) -> bool:
        """Open warning or critical signals hold trust growth; informational ones do not."""
        stmt = select(func.count()).where(
            FraudSignalDB.user_id == user_id,
            FraudSignalDB.resolution_status == ResolutionStatus.OPEN.value,
            FraudSignalDB.severity.in_(TRUST_HOLDING_SEVERITIES),
        )
        result = await session.execute(stmt)
        return result.scalar_one() > 0
