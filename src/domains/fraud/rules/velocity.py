"""Velocity checks over the user's trailing-hour completed orders."""

from ..models import CheckContext, CheckResult, DetectionRule, Severity, SignalType
from .base import FraudCheck


class TransactionCountCheck(FraudCheck):
    """Triggers when the trailing-hour order count passes ``max_tx_per_hour``."""

    rule_key = "velocity_tx_count"
    signal_type = SignalType.VELOCITY
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        count = context.history.tx_count_window
        if not rule.matches(count):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"{count} orders in the trailing hour",
            evidence={"count": count, "window": "1h"},
        )


class TransactionAmountCheck(FraudCheck):
    """Triggers when the trailing-hour order total passes ``max_amount_per_hour``."""

    rule_key = "velocity_amount"
    signal_type = SignalType.VELOCITY
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        total = context.history.tx_amount_window
        if not rule.matches(total):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"${total:,.2f} ordered in the trailing hour",
            evidence={"total": total, "window": "1h"},
        )


class DailyTransactionCountCheck(FraudCheck):
    rule_key = "velocity_daily"
    signal_type = SignalType.VELOCITY
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        count = context.history.tx_count_day
        if not rule.matches(count):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"{count} orders in the trailing 24 hours",
            evidence={"count": count, "window": "24h"},
        )


class SameSellerRepeatCheck(FraudCheck):
    """Repeated purchases from the cart's seller within a day."""

    rule_key = "velocity_same_seller"
    signal_type = SignalType.VELOCITY
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        if context.seller_id is None:
            return self._not_triggered()
        count = context.history.same_seller_orders_day
        if not rule.matches(count):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"{count} orders from seller {context.seller_id} in the trailing 24 hours",
            evidence={"count": count, "seller_id": context.seller_id, "window": "24h"},
        )
