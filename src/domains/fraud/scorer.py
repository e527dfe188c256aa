"""Risk scoring engine: history + rules + trust -> 0-100 risk score and recommendation."""

from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .config import FraudConfig, default_config
from .exceptions import UnknownUser
from .feature_computer import UserHistoryComputer
from .ledger import TrustLedger
from .models import CheckContext, CollectedSignals, Recommendation, ScoringResult
from .rule_store import RuleStore
from .rules_engine import RulesEngine

logger = structlog.get_logger()


class RiskScoringEngine:
    """Orchestrates one scoring pass for a checkout attempt."""

    def __init__(
        self,
        config: FraudConfig | None = None,
        rule_store: RuleStore | None = None,
        ledger: TrustLedger | None = None,
        history: UserHistoryComputer | None = None,
    ) -> None:
        self._config = config or default_config
        self._rule_store = rule_store or RuleStore(config=self._config)
        self._ledger = ledger or TrustLedger(config=self._config)
        self._history = history or UserHistoryComputer(config=self._config)
        self._rules_engine = RulesEngine(config=self._config)

    async def score(
        self,
        session: AsyncSession,
        user_id: str,
        collected: CollectedSignals,
        cart_total: float,
        now: datetime | None = None,
        seller_id: str | None = None,
    ) -> ScoringResult:
        now = now or datetime.now(UTC)

        # 1. Order history and the current rule set
        history = await self._history.compute(session, user_id, now, seller_id=seller_id)
        rules = await self._rule_store.get_rules(session)

        # 2. Trust; users seen for the first time get the default record
        try:
            trust_row = await self._ledger.get(session, user_id)
        except UnknownUser:
            trust_row = await self._ledger.get_or_create(session, user_id, now)
        trust = self._ledger.snapshot_row(trust_row)

        # 3. Checks -> signals -> score
        context = CheckContext(
            features=collected.features,
            is_known_device=collected.is_known_device,
            cart_total=cart_total,
            seller_id=seller_id,
            history=history,
        )
        assessment, signals, results = self._rules_engine.assess(context, rules, trust.score)

        # Suspended users never auto-approve, whatever the score says
        if trust.is_suspended and assessment.recommendation == Recommendation.APPROVE:
            assessment = assessment.model_copy(update={"recommendation": Recommendation.REVIEW})

        logger.info(
            "risk_scored",
            user_id=user_id,
            session_id=collected.session_id,
            score=assessment.score,
            recommendation=assessment.recommendation.value,
            reasons=[r.value for r in assessment.reasons],
            trust_score=trust.score,
            trust_band=trust.band.value,
            low_confidence=collected.features.low_confidence,
        )

        return ScoringResult(
            assessment=assessment,
            signals=signals,
            check_results=results,
            history=history,
            trust_band=trust.band,
            is_suspended=trust.is_suspended,
        )
