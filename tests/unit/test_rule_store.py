"""Unit tests for the detection rule store."""

from unittest.mock import AsyncMock

import pytest

from src.db.models import DetectionRuleDB
from src.domains.fraud.config import FraudConfig
from src.domains.fraud.exceptions import InvalidRule, RuleNotFound
from src.domains.fraud.models import Comparator, RuleUpdate
from src.domains.fraud.rule_store import RuleStore
from tests.conftest import mock_session, result_with


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _row(rule_key="velocity_tx_count", **kwargs) -> DetectionRuleDB:
    defaults = {
        "rule_key": rule_key,
        "signal_type": "velocity",
        "comparator": "gt",
        "threshold_value": 3,
        "weight": 50,
        "is_active": True,
        "description": "tuned",
    }
    defaults.update(kwargs)
    return DetectionRuleDB(**defaults)


class TestGetRules:
    @pytest.mark.asyncio
    async def test_rows_override_defaults(self):
        session = mock_session()
        session.execute = AsyncMock(return_value=result_with(scalars=[_row()]))
        rules = await RuleStore().get_rules(session)

        assert rules.rules["velocity_tx_count"].threshold_value == 3
        assert rules.rules["velocity_tx_count"].weight == 50
        assert rules.rules["velocity_amount"].threshold_value == 1000.0

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self):
        clock = FakeClock()
        store = RuleStore(config=FraudConfig(), clock=clock)
        session = mock_session()
        session.execute = AsyncMock(return_value=result_with(scalars=[]))

        await store.get_rules(session)
        clock.now += 10
        await store.get_rules(session)
        assert session.execute.await_count == 1

        clock.now += 30
        await store.get_rules(session)
        assert session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_database_failure_falls_back_to_defaults(self):
        session = mock_session()
        session.execute = AsyncMock(side_effect=ConnectionError("db down"))
        store = RuleStore()
        rules = await store.get_rules(session)
        assert rules == store.default_rules()

    @pytest.mark.asyncio
    async def test_invalid_row_keeps_default(self):
        session = mock_session()
        bad = _row(comparator="between")
        session.execute = AsyncMock(return_value=result_with(scalars=[bad]))
        rules = await RuleStore().get_rules(session)
        assert rules.rules["velocity_tx_count"].threshold_value == 5

    @pytest.mark.asyncio
    async def test_deactivated_rule_not_active(self):
        session = mock_session()
        disabled = _row(
            "device_cookies_disabled",
            signal_type="device",
            comparator="eq",
            threshold_value=0,
            weight=10,
            is_active=False,
        )
        session.execute = AsyncMock(return_value=result_with(scalars=[disabled]))
        rules = await RuleStore().get_rules(session)
        assert rules.active("device_cookies_disabled") is None


class TestSeedDefaults:
    @pytest.mark.asyncio
    async def test_inserts_missing_rules_only(self):
        session = mock_session()
        session.execute = AsyncMock(
            return_value=result_with(scalars=["velocity_tx_count", "velocity_amount"])
        )
        added = await RuleStore().seed_defaults(session)
        assert added == 12
        assert session.add.call_count == 12
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nothing_to_seed(self):
        session = mock_session()
        session.execute = AsyncMock(
            return_value=result_with(scalars=list(FraudConfig().rules.defaults))
        )
        assert await RuleStore().seed_defaults(session) == 0
        session.commit.assert_not_awaited()


class TestUpdateRule:
    @pytest.mark.asyncio
    async def test_unknown_rule_key(self):
        with pytest.raises(RuleNotFound):
            await RuleStore().update_rule(
                mock_session(), "nope", RuleUpdate(weight=1), "admin-1"
            )

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self):
        with pytest.raises(InvalidRule):
            await RuleStore().update_rule(
                mock_session(), "velocity_tx_count", RuleUpdate(), "admin-1"
            )

    @pytest.mark.asyncio
    async def test_updates_existing_row_and_invalidates_cache(self):
        session = mock_session()
        row = _row(threshold_value=5, weight=35)
        session.execute = AsyncMock(return_value=result_with(scalar=row))
        store = RuleStore()
        store._cache = (0.0, store.default_rules())

        rule = await store.update_rule(
            session,
            "velocity_tx_count",
            RuleUpdate(threshold_value=8, comparator=Comparator.GTE),
            "admin-1",
        )

        assert rule.threshold_value == 8
        assert rule.comparator == Comparator.GTE
        assert row.comparator == "gte"
        assert row.updated_by == "admin-1"
        assert store._cache is None
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_creates_row_when_missing(self):
        session = mock_session()
        session.execute = AsyncMock(return_value=result_with(scalar=None))

        rule = await RuleStore().update_rule(
            session, "amount_round_number", RuleUpdate(is_active=False), "admin-1"
        )

        assert rule.is_active is False
        assert rule.threshold_value == 500.0
        added = session.add.call_args[0][0]
        assert added.rule_key == "amount_round_number"
