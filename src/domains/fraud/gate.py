"""Decision gate: the synchronous checkout entry point.

The gate answers every assessment within its latency budget. Timeouts and
internal errors fail open to ``review`` so checkout is never blocked by an
engine fault. Signal persistence and Kafka publication run after the
response is sent.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.database import async_session_factory
from src.db.models import CheckoutSessionDB, FraudSignalDB

from .alerts import publish_signals
from .collector import SignalCollector, merge_telemetry
from .config import FraudConfig, default_config
from .exceptions import ScoringTimeout, TrustEngineError
from .models import (
    SEVERITY_RANK,
    AssessRequest,
    AssessResponse,
    CollectedSignals,
    Recommendation,
    ResolutionStatus,
    ScoringResult,
    SessionStatus,
    Severity,
    Signal,
)
from .scorer import RiskScoringEngine

logger = structlog.get_logger()


@dataclass
class AssessmentAudit:
    """Everything the background writer needs to record one assessment."""

    user_id: str
    session_id: str
    telemetry: dict
    risk_score: float
    recommendation: Recommendation
    created_at: datetime
    fingerprint_id: int | None = None
    cart_total: float = 0.0
    currency: str = "USD"
    degraded: bool = False
    signals: list[Signal] = field(default_factory=list)


class DecisionGate:
    def __init__(
        self,
        config: FraudConfig | None = None,
        collector: SignalCollector | None = None,
        engine: RiskScoringEngine | None = None,
        session_factory=None,
        producer=None,
        signal_topic: str = "trustgate.fraud.signals",
    ) -> None:
        self._config = config or default_config
        self._collector = collector or SignalCollector(config=self._config)
        self._engine = engine or RiskScoringEngine(config=self._config)
        self._session_factory = session_factory or async_session_factory
        self.producer = producer
        self._signal_topic = signal_topic

    async def assess(
        self,
        session: AsyncSession,
        request: AssessRequest,
        now: datetime | None = None,
    ) -> tuple[AssessResponse, AssessmentAudit]:
        now = now or datetime.now(UTC)
        started = time.perf_counter()
        try:
            collected, result = await self._score_within_budget(session, request, now)
        except TrustEngineError as exc:
            await self._rollback(session)
            logger.warning(
                "scoring_degraded",
                user_id=request.user_id,
                reason=exc.error_code,
                detail=exc.message,
            )
            return self._fail_open(request, now)
        except Exception:
            await self._rollback(session)
            logger.exception("scoring_degraded", user_id=request.user_id, reason="internal_error")
            return self._fail_open(request, now)

        assessment = result.assessment
        response = AssessResponse(
            risk_score=assessment.score,
            recommendation=assessment.recommendation,
            reasons=assessment.reasons,
            trust_band=result.trust_band,
            session_id=collected.session_id,
            degraded=collected.features.low_confidence,
        )
        audit = AssessmentAudit(
            user_id=request.user_id,
            session_id=collected.session_id,
            telemetry=collected.telemetry,
            risk_score=assessment.score,
            recommendation=assessment.recommendation,
            created_at=now,
            fingerprint_id=collected.fingerprint_id,
            cart_total=request.cart_total,
            currency=request.currency,
            degraded=collected.features.low_confidence,
            signals=result.signals,
        )
        logger.info(
            "checkout_assessed",
            user_id=request.user_id,
            session_id=collected.session_id,
            risk_score=assessment.score,
            recommendation=assessment.recommendation.value,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response, audit

    async def _score_within_budget(
        self, session: AsyncSession, request: AssessRequest, now: datetime
    ) -> tuple[CollectedSignals, ScoringResult]:
        timeout_ms = self._config.gate.timeout_ms
        try:
            return await asyncio.wait_for(
                self._score(session, request, now), timeout=timeout_ms / 1000
            )
        except TimeoutError as exc:
            raise ScoringTimeout(
                f"Scoring exceeded {timeout_ms}ms", user_id=request.user_id
            ) from exc

    async def _score(
        self, session: AsyncSession, request: AssessRequest, now: datetime
    ) -> tuple[CollectedSignals, ScoringResult]:
        collected = await self._collector.collect(
            session, request.user_id, request.session_telemetry, now
        )
        result = await self._engine.score(
            session,
            request.user_id,
            collected,
            request.cart_total,
            now,
            seller_id=request.seller_id,
        )
        # Fingerprint and trust rows provisioned during scoring
        await session.commit()
        return collected, result

    def _fail_open(
        self, request: AssessRequest, now: datetime
    ) -> tuple[AssessResponse, AssessmentAudit]:
        telemetry = request.session_telemetry
        session_id = telemetry.session_id or str(uuid.uuid4())
        response = AssessResponse(
            risk_score=self._config.scoring.review_threshold,
            recommendation=Recommendation.REVIEW,
            reasons=[],
            session_id=session_id,
            degraded=True,
        )
        audit = AssessmentAudit(
            user_id=request.user_id,
            session_id=session_id,
            telemetry=merge_telemetry(None, telemetry),
            risk_score=response.risk_score,
            recommendation=Recommendation.REVIEW,
            created_at=now,
            cart_total=request.cart_total,
            currency=request.currency,
            degraded=True,
        )
        return response, audit

    async def _rollback(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except Exception:
            logger.exception("scoring_rollback_failed")

    async def persist_assessment(self, audit: AssessmentAudit) -> list[FraudSignalDB]:
        """Record the assessment on the session row and open a signal per anomaly.

        Runs as a background task with its own database session. Failures are
        logged; the checkout response has already been returned.
        """
        try:
            async with self._session_factory() as session:
                rows = await self._write_audit(session, audit)
        except Exception:
            logger.exception(
                "assessment_audit_failed",
                session_id=audit.session_id,
                user_id=audit.user_id,
            )
            return []

        logger.info(
            "assessment_audit_written",
            session_id=audit.session_id,
            user_id=audit.user_id,
            signal_count=len(rows),
        )
        alertable = [
            row
            for row in rows
            if SEVERITY_RANK[Severity(row.severity)] >= SEVERITY_RANK[Severity.WARNING]
        ]
        await publish_signals(alertable, self.producer, self._signal_topic)
        return rows

    async def _write_audit(
        self, session: AsyncSession, audit: AssessmentAudit
    ) -> list[FraudSignalDB]:
        checkout = await session.get(CheckoutSessionDB, audit.session_id)
        if checkout is None:
            checkout = CheckoutSessionDB(
                id=audit.session_id,
                user_id=audit.user_id,
                status=SessionStatus.ACTIVE.value,
                created_at=audit.created_at,
                expires_at=audit.created_at
                + timedelta(minutes=self._config.sessions.ttl_minutes),
            )
            session.add(checkout)
        checkout.telemetry = audit.telemetry
        checkout.fingerprint_id = audit.fingerprint_id
        checkout.risk_score = audit.risk_score
        checkout.recommendation = audit.recommendation.value
        checkout.updated_at = audit.created_at

        rows = [
            FraudSignalDB(
                session_id=audit.session_id,
                user_id=audit.user_id,
                signal_type=signal.signal_type.value,
                severity=signal.severity.value,
                weight=signal.weight,
                raw_evidence={
                    "rule_keys": list(signal.rule_keys),
                    "checks": signal.evidence,
                    "cart_total": audit.cart_total,
                    "currency": audit.currency,
                    "risk_score": audit.risk_score,
                    "recommendation": audit.recommendation.value,
                    "low_confidence": audit.degraded,
                },
                created_at=audit.created_at,
                resolution_status=ResolutionStatus.OPEN.value,
                version=1,
            )
            for signal in audit.signals
        ]
        session.add_all(rows)
        await session.commit()
        return rows
