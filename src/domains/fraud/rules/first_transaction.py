"""First-transaction risk: no completed orders on record."""

from ..models import CheckContext, CheckResult, DetectionRule, Severity, SignalType
from .base import FraudCheck


class FirstTransactionCheck(FraudCheck):
    rule_key = "first_transaction"
    signal_type = SignalType.FIRST_TRANSACTION
    severity = Severity.INFORMATIONAL

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        prior = context.history.prior_completed_orders
        if not rule.matches(prior):
            return self._not_triggered()
        return self._triggered(
            rule,
            details="First order for this user",
            evidence={"prior_completed_orders": prior},
        )
