"""Unit tests for velocity fraud checks."""

from src.domains.fraud.models import (
    CheckContext,
    FeatureVector,
    Severity,
    SignalType,
    UserHistory,
)
from src.domains.fraud.rule_store import RuleStore
from src.domains.fraud.rules.velocity import (
    DailyTransactionCountCheck,
    SameSellerRepeatCheck,
    TransactionAmountCheck,
    TransactionCountCheck,
)

RULES = RuleStore().default_rules()


def _context(count: int = 0, amount: float = 0.0) -> CheckContext:
    return CheckContext(
        features=FeatureVector(),
        cart_total=50.0,
        history=UserHistory(tx_count_window=count, tx_amount_window=amount),
    )


class TestTransactionCountCheck:
    check = TransactionCountCheck()

    def test_below_threshold(self):
        assert not self.check.evaluate(_context(count=3), RULES).triggered

    def test_at_threshold_is_not_above(self):
        assert not self.check.evaluate(_context(count=5), RULES).triggered

    def test_above_threshold(self):
        result = self.check.evaluate(_context(count=6), RULES)
        assert result.triggered
        assert result.signal_type == SignalType.VELOCITY
        assert result.severity == Severity.WARNING
        assert result.weight == 60

    def test_evidence_populated(self):
        result = self.check.evaluate(_context(count=9), RULES)
        assert result.evidence["count"] == 9
        assert result.evidence["threshold"] == 5
        assert result.evidence["comparator"] == "gt"

    def test_inactive_rule_never_triggers(self):
        rules = RuleStore().default_rules()
        rules.rules["velocity_tx_count"] = rules.rules["velocity_tx_count"].model_copy(
            update={"is_active": False}
        )
        assert not self.check.evaluate(_context(count=50), rules).triggered


class TestTransactionAmountCheck:
    check = TransactionAmountCheck()

    def test_below_threshold(self):
        assert not self.check.evaluate(_context(amount=999.99), RULES).triggered

    def test_above_threshold(self):
        result = self.check.evaluate(_context(amount=1200.0), RULES)
        assert result.triggered
        assert result.evidence["total"] == 1200.0
        assert "trailing hour" in result.details

    def test_tuned_threshold_applies(self):
        rules = RuleStore().default_rules()
        rules.rules["velocity_amount"] = rules.rules["velocity_amount"].model_copy(
            update={"threshold_value": 500.0}
        )
        assert self.check.evaluate(_context(amount=600.0), rules).triggered


class TestDailyTransactionCountCheck:
    check = DailyTransactionCountCheck()

    def test_ten_orders_is_not_above(self):
        context = CheckContext(features=FeatureVector(), history=UserHistory(tx_count_day=10))
        assert not self.check.evaluate(context, RULES).triggered

    def test_eleven_orders_in_a_day(self):
        context = CheckContext(features=FeatureVector(), history=UserHistory(tx_count_day=11))
        result = self.check.evaluate(context, RULES)
        assert result.triggered
        assert result.evidence["window"] == "24h"
        assert result.weight == 40


class TestSameSellerRepeatCheck:
    check = SameSellerRepeatCheck()

    def _context(self, count: int, seller_id: str | None = "seller-9") -> CheckContext:
        return CheckContext(
            features=FeatureVector(),
            seller_id=seller_id,
            history=UserHistory(same_seller_orders_day=count),
        )

    def test_two_prior_orders(self):
        assert not self.check.evaluate(self._context(2), RULES).triggered

    def test_three_prior_orders(self):
        result = self.check.evaluate(self._context(3), RULES)
        assert result.triggered
        assert result.evidence["seller_id"] == "seller-9"

    def test_unknown_seller_never_triggers(self):
        assert not self.check.evaluate(self._context(8, seller_id=None), RULES).triggered
