"""Abstract base class for fraud checks."""

from abc import ABC, abstractmethod

from ..models import CheckContext, CheckResult, DetectionRule, RuleSet, Severity, SignalType


class FraudCheck(ABC):
    """Base class for all fraud checks.

    A check is bound to one rule key. The rule store supplies its comparator,
    threshold and weight; the severity is fixed here in code. Checks are pure:
    the same context and rule set always give the same result.
    """

    rule_key: str
    signal_type: SignalType
    severity: Severity

    def evaluate(self, context: CheckContext, rules: RuleSet) -> CheckResult:
        rule = rules.active(self.rule_key)
        if rule is None:
            return self._not_triggered()
        return self.check(context, rule)

    @abstractmethod
    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        """Apply the rule to the context."""
        ...

    def _not_triggered(self) -> CheckResult:
        return CheckResult(
            rule_key=self.rule_key,
            signal_type=self.signal_type,
            triggered=False,
            severity=self.severity,
        )

    def _triggered(
        self,
        rule: DetectionRule,
        details: str,
        evidence: dict | None = None,
    ) -> CheckResult:
        return CheckResult(
            rule_key=self.rule_key,
            signal_type=self.signal_type,
            triggered=True,
            severity=self.severity,
            weight=rule.weight,
            details=details,
            evidence={
                "threshold": rule.threshold_value,
                "comparator": rule.comparator.value,
                **(evidence or {}),
            },
        )
