"""Review workbench: the human-in-the-loop queue over open fraud signals."""

from collections import defaultdict
from datetime import UTC, datetime

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import FraudSignalDB, ReviewDecisionDB

from .exceptions import DuplicateResolution, SignalNotFound
from .ledger import TrustLedger
from .models import (
    FraudSignalView,
    ResolutionResult,
    ResolutionStatus,
    ReviewOutcome,
    RuleFeedback,
    Severity,
    SignalType,
)

logger = structlog.get_logger()

_SEVERITY_ORDER = case(
    (FraudSignalDB.severity == Severity.CRITICAL.value, 0),
    (FraudSignalDB.severity == Severity.WARNING.value, 1),
    else_=2,
)


class ReviewWorkbench:
    def __init__(self, ledger: TrustLedger | None = None) -> None:
        self._ledger = ledger or TrustLedger()

    async def queue(
        self,
        session: AsyncSession,
        limit: int = 50,
        offset: int = 0,
        signal_type: SignalType | None = None,
    ) -> list[FraudSignalDB]:
        """Open signals, most severe first, newest first within a severity."""
        stmt = select(FraudSignalDB).where(
            FraudSignalDB.resolution_status == ResolutionStatus.OPEN.value
        )
        if signal_type is not None:
            stmt = stmt.where(FraudSignalDB.signal_type == signal_type.value)
        stmt = (
            stmt.order_by(_SEVERITY_ORDER, FraudSignalDB.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_signal(self, session: AsyncSession, signal_id: int) -> FraudSignalDB:
        result = await session.execute(select(FraudSignalDB).where(FraudSignalDB.id == signal_id))
        signal = result.scalar_one_or_none()
        if signal is None:
            raise SignalNotFound(f"Signal {signal_id} not found", signal_id=signal_id)
        return signal

    async def resolve(
        self,
        session: AsyncSession,
        signal_id: int,
        decision: ReviewOutcome,
        reviewer_id: str,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> ResolutionResult:
        """Resolve an open signal exactly once and apply its trust consequence.

        The status change, the immutable review decision and the ledger
        mutation commit together. A signal that is no longer open raises
        ``DuplicateResolution`` and changes nothing.
        """
        now = now or datetime.now(UTC)
        signal = await self.get_signal(session, signal_id)

        result = await session.execute(
            update(FraudSignalDB)
            .where(
                FraudSignalDB.id == signal_id,
                FraudSignalDB.version == signal.version,
                FraudSignalDB.resolution_status == ResolutionStatus.OPEN.value,
            )
            .values(
                resolution_status=decision.value,
                resolved_by=reviewer_id,
                resolved_at=now,
                version=signal.version + 1,
            )
        )
        if result.rowcount != 1:
            await session.rollback()
            logger.warning(
                "duplicate_resolution_rejected",
                signal_id=signal_id,
                reviewer_id=reviewer_id,
                current_status=signal.resolution_status,
            )
            raise DuplicateResolution(
                f"Signal {signal_id} is already resolved", signal_id=signal_id
            )

        session.add(
            ReviewDecisionDB(
                signal_id=signal_id,
                user_id=signal.user_id,
                reviewer_id=reviewer_id,
                decision=decision.value,
                notes=notes,
                decided_at=now,
            )
        )
        trust = await self._ledger.apply_signal_resolution(
            session,
            user_id=signal.user_id,
            signal_id=signal_id,
            severity=Severity(signal.severity),
            decision=decision,
            now=now,
            commit=False,
        )
        await session.commit()

        logger.info(
            "signal_resolved",
            signal_id=signal_id,
            user_id=signal.user_id,
            decision=decision.value,
            reviewer_id=reviewer_id,
            trust_score=trust.score,
            trust_band=trust.band.value,
        )
        view = FraudSignalView.model_validate(signal).model_copy(
            update={
                "resolution_status": ResolutionStatus(decision.value),
                "resolved_by": reviewer_id,
                "resolved_at": now,
            }
        )
        return ResolutionResult(signal=view, trust_score=trust)

    async def rule_feedback(self, session: AsyncSession) -> list[RuleFeedback]:
        """Confirmed and false-positive counts per rule key, for manual weight tuning."""
        result = await session.execute(
            select(FraudSignalDB.raw_evidence, FraudSignalDB.resolution_status).where(
                FraudSignalDB.resolution_status != ResolutionStatus.OPEN.value
            )
        )
        counts: dict[str, dict[str, int]] = defaultdict(lambda: {"confirmed": 0, "fp": 0})
        for evidence, status in result.all():
            for rule_key in (evidence or {}).get("rule_keys", []):
                if status == ResolutionStatus.CONFIRMED.value:
                    counts[rule_key]["confirmed"] += 1
                else:
                    counts[rule_key]["fp"] += 1

        return [
            RuleFeedback(rule_key=key, confirmed=c["confirmed"], false_positive=c["fp"])
            for key, c in sorted(counts.items())
        ]
