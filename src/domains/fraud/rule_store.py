"""Rule store: per-signal thresholds and weights, tunable without a redeploy.

Rows in ``detection_rules`` override the code defaults. Scoring only reads;
administrators change rules through ``update_rule``. Weights are tuned by
hand, using the false-positive counts the review workbench reports.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import DetectionRuleDB

from .config import FraudConfig, default_config
from .exceptions import InvalidRule, RuleNotFound
from .models import DetectionRule, RuleSet, RuleUpdate, SignalType

logger = structlog.get_logger()


def _from_row(row: DetectionRuleDB) -> DetectionRule:
    return DetectionRule(
        rule_key=row.rule_key,
        signal_type=SignalType(row.signal_type),
        comparator=row.comparator,
        threshold_value=row.threshold_value,
        weight=row.weight,
        is_active=row.is_active,
        description=row.description or "",
    )


class RuleStore:
    def __init__(
        self,
        config: FraudConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or default_config
        self._clock = clock
        self._cache: tuple[float, RuleSet] | None = None

    def default_rules(self) -> RuleSet:
        return RuleSet(
            rules={
                key: DetectionRule(
                    rule_key=key,
                    signal_type=SignalType(d.signal_type),
                    comparator=d.comparator,
                    threshold_value=d.threshold_value,
                    weight=d.weight,
                    description=d.description,
                )
                for key, d in self._config.rules.defaults.items()
            }
        )

    @property
    def is_cached(self) -> bool:
        return self._cache is not None

    def invalidate(self) -> None:
        self._cache = None

    async def get_rules(self, session: AsyncSession) -> RuleSet:
        if self._cache is not None:
            loaded_at, cached = self._cache
            if self._clock() - loaded_at < self._config.rules.cache_ttl_seconds:
                return cached

        rules = self.default_rules()
        try:
            result = await session.execute(select(DetectionRuleDB))
            rows = result.scalars().all()
        except Exception:
            logger.warning("rule_store_unavailable", exc_info=True)
            return rules

        for row in rows:
            try:
                rules.rules[row.rule_key] = _from_row(row)
            except ValueError:
                logger.error("detection_rule_invalid", rule_key=row.rule_key)

        self._cache = (self._clock(), rules)
        return rules

    async def list_rules(self, session: AsyncSession) -> list[DetectionRule]:
        self.invalidate()
        rules = await self.get_rules(session)
        return sorted(rules.rules.values(), key=lambda r: r.rule_key)

    async def seed_defaults(self, session: AsyncSession) -> int:
        """Insert a row for every default rule key that has none yet."""
        result = await session.execute(select(DetectionRuleDB.rule_key))
        existing = set(result.scalars().all())
        added = 0
        for rule in self.default_rules().rules.values():
            if rule.rule_key in existing:
                continue
            session.add(
                DetectionRuleDB(
                    rule_key=rule.rule_key,
                    signal_type=rule.signal_type.value,
                    comparator=rule.comparator.value,
                    threshold_value=rule.threshold_value,
                    weight=rule.weight,
                    is_active=True,
                    description=rule.description,
                    updated_by="system",
                    updated_at=datetime.now(UTC),
                )
            )
            added += 1
        if added:
            await session.commit()
            logger.info("detection_rules_seeded", count=added)
        self.invalidate()
        return added

    async def update_rule(
        self,
        session: AsyncSession,
        rule_key: str,
        changes: RuleUpdate,
        updated_by: str,
    ) -> DetectionRule:
        if rule_key not in self._config.rules.defaults:
            raise RuleNotFound(f"Unknown rule key: {rule_key}", rule_key=rule_key)
        values = changes.model_dump(exclude_none=True)
        if not values:
            raise InvalidRule("No rule fields to update", rule_key=rule_key)

        result = await session.execute(
            select(DetectionRuleDB).where(DetectionRuleDB.rule_key == rule_key)
        )
        row = result.scalar_one_or_none()
        if row is None:
            default = self.default_rules().rules[rule_key]
            row = DetectionRuleDB(
                rule_key=rule_key,
                signal_type=default.signal_type.value,
                comparator=default.comparator.value,
                threshold_value=default.threshold_value,
                weight=default.weight,
                is_active=True,
                description=default.description,
            )
            session.add(row)

        previous = {key: getattr(row, key) for key in values}
        for key, value in values.items():
            setattr(row, key, value.value if key == "comparator" else value)
        row.updated_by = updated_by
        row.updated_at = datetime.now(UTC)
        await session.commit()
        self.invalidate()

        logger.info(
            "detection_rule_updated",
            rule_key=rule_key,
            updated_by=updated_by,
            previous=previous,
            changes={k: str(v) for k, v in values.items()},
        )
        return _from_row(row)
