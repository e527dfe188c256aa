"""Rule-based risk engine: run checks, collapse them into signals, fold into a score."""

from collections import defaultdict

import structlog

from .config import FraudConfig, default_config
from .models import (
    SEVERITY_RANK,
    Assessment,
    CheckContext,
    CheckResult,
    Contribution,
    Recommendation,
    RuleSet,
    Severity,
    Signal,
    SignalType,
)
from .rules import ALL_CHECKS, FraudCheck

logger = structlog.get_logger()

_SIGNAL_ORDER = {signal_type: i for i, signal_type in enumerate(SignalType)}


def collapse_to_signals(results: list[CheckResult]) -> list[Signal]:
    """One signal per triggered signal type.

    When several checks of a type trigger, the signal takes the highest weight
    and the highest severity among them, so a type never counts twice.
    """
    by_type: dict[SignalType, list[CheckResult]] = defaultdict(list)
    for result in results:
        if result.triggered:
            by_type[result.signal_type].append(result)

    signals = []
    for signal_type, triggered in by_type.items():
        signals.append(
            Signal(
                signal_type=signal_type,
                severity=max((r.severity for r in triggered), key=SEVERITY_RANK.__getitem__),
                weight=max(r.weight for r in triggered),
                rule_keys=tuple(r.rule_key for r in triggered),
                evidence={
                    r.rule_key: {"details": r.details, **r.evidence} for r in triggered
                },
            )
        )
    return sorted(signals, key=lambda s: _SIGNAL_ORDER[s.signal_type])


def trust_discount_factor(trust_score: int, config: FraudConfig | None = None) -> float:
    """Fraction of a discountable weight removed for the user's trust.

    Zero at or below the neutral score, ``max_discount`` at 100.
    """
    cfg = config or default_config
    neutral = cfg.discount.neutral_score
    span = 100 - neutral
    if span <= 0:
        return 0.0
    earned = min(max((trust_score - neutral) / span, 0.0), 1.0)
    return round(earned * cfg.discount.max_discount, 4)


def classify(score: float, has_critical: bool, config: FraudConfig | None = None) -> Recommendation:
    cfg = config or default_config
    if has_critical or score >= cfg.scoring.block_threshold:
        return Recommendation.BLOCK
    if score >= cfg.scoring.review_threshold:
        return Recommendation.REVIEW
    return Recommendation.APPROVE


def aggregate(
    signals: list[Signal],
    trust_score: int,
    config: FraudConfig | None = None,
) -> Assessment:
    """Fold triggered signals into a 0-100 risk score and a recommendation.

    Informational and warning weights are discounted by trust first; critical
    weights never are. The first-transaction penalty is added after the
    discount, undiscounted. The total is clamped to [0, max_score] and any
    critical signal forces ``block``.
    """
    cfg = config or default_config
    factor = trust_discount_factor(trust_score, cfg)

    contributions: list[Contribution] = []
    total = 0.0
    ordered = [s for s in signals if s.signal_type != SignalType.FIRST_TRANSACTION] + [
        s for s in signals if s.signal_type == SignalType.FIRST_TRANSACTION
    ]
    for signal in ordered:
        discounted = signal.discountable and signal.signal_type != SignalType.FIRST_TRANSACTION
        applied = signal.weight * (1 - factor) if discounted else signal.weight
        total += applied
        contributions.append(
            Contribution(
                signal_type=signal.signal_type,
                severity=signal.severity,
                weight=signal.weight,
                applied_weight=round(applied, 4),
            )
        )

    score = round(min(max(total, 0.0), cfg.scoring.max_score), 2)
    has_critical = any(s.severity == Severity.CRITICAL for s in signals)
    return Assessment(
        score=score,
        recommendation=classify(score, has_critical, cfg),
        reasons=[s.signal_type for s in signals],
        contributions=contributions,
        trust_score=trust_score,
        discount_factor=factor,
        critical_override=has_critical and score < cfg.scoring.block_threshold,
    )


class RulesEngine:
    """Evaluates a checkout against every fraud check and aggregates the result."""

    def __init__(
        self,
        config: FraudConfig | None = None,
        checks: list[FraudCheck] | None = None,
    ) -> None:
        self._config = config or default_config
        self._checks = list(checks if checks is not None else ALL_CHECKS)

    def evaluate(self, context: CheckContext, rules: RuleSet) -> list[CheckResult]:
        results: list[CheckResult] = []
        for check in self._checks:
            try:
                results.append(check.evaluate(context, rules))
            except Exception:
                logger.exception("check_evaluation_error", rule_key=check.rule_key)
                results.append(
                    CheckResult(
                        rule_key=check.rule_key,
                        signal_type=check.signal_type,
                        triggered=False,
                        details="Check evaluation failed",
                    )
                )
        return results

    def assess(
        self,
        context: CheckContext,
        rules: RuleSet,
        trust_score: int,
    ) -> tuple[Assessment, list[Signal], list[CheckResult]]:
        results = self.evaluate(context, rules)
        signals = collapse_to_signals(results)
        assessment = aggregate(signals, trust_score, self._config)
        logger.info(
            "checks_evaluated",
            triggered=[r.rule_key for r in results if r.triggered],
            score=assessment.score,
            recommendation=assessment.recommendation.value,
            trust_score=trust_score,
        )
        return assessment, signals, results
