"""Amount anomaly checks against the user's own order history."""

from decimal import Decimal

from ..models import CheckContext, CheckResult, DetectionRule, Severity, SignalType
from .base import FraudCheck


class AverageOrderMultipleCheck(FraudCheck):
    """Cart total far above the trailing 90-day average order value."""

    rule_key = "amount_aov_multiplier"
    signal_type = SignalType.AMOUNT
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        average = context.history.average_order_value
        if not average or average <= 0:
            return self._not_triggered()
        multiple = context.cart_total / average
        if not rule.matches(multiple):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"Cart is {multiple:.1f}x the 90-day average order",
            evidence={
                "cart_total": context.cart_total,
                "average_order_value": average,
                "multiple": round(multiple, 2),
            },
        )


class RoundNumberCheck(FraudCheck):
    rule_key = "amount_round_number"
    signal_type = SignalType.AMOUNT
    severity = Severity.INFORMATIONAL

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        total = context.cart_total
        if not rule.matches(total) or Decimal(str(total)) % 100 != 0:
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"Round-number cart total ${total:,.0f}",
            evidence={"cart_total": total},
        )


class NewMaximumAmountCheck(FraudCheck):
    """Cart total well above the largest order the user has completed."""

    rule_key = "amount_max"
    signal_type = SignalType.AMOUNT
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        previous_max = context.history.max_order_amount
        if not previous_max or previous_max <= 0:
            return self._not_triggered()
        multiple = context.cart_total / previous_max
        if not rule.matches(multiple):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"Cart is {multiple:.1f}x the largest previous order",
            evidence={
                "cart_total": context.cart_total,
                "previous_max": previous_max,
                "multiple": round(multiple, 2),
            },
        )


class HighValueFirstOrderCheck(FraudCheck):
    rule_key = "amount_first"
    signal_type = SignalType.AMOUNT
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        if context.history.prior_completed_orders > 0 or not rule.matches(context.cart_total):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"First order with a ${context.cart_total:,.2f} cart",
            evidence={"cart_total": context.cart_total},
        )
