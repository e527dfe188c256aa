"""Behavioral biometrics checks: mechanical input and implausibly fast checkout."""

from ..models import CheckContext, CheckResult, DetectionRule, Severity, SignalType
from .base import FraudCheck


class MechanicalInputCheck(FraudCheck):
    """Pointer movement and keystroke timing both near-constant, as scripted input is."""

    rule_key = "behavioral_mechanical_input"
    signal_type = SignalType.BEHAVIORAL
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        pointer = context.features.pointer_movement_variance
        keystroke = context.features.keystroke_interval_stddev
        # Nulled fields mean missing telemetry, not zero variance.
        if pointer is None or keystroke is None:
            return self._not_triggered()
        if not (rule.matches(pointer) and rule.matches(keystroke)):
            return self._not_triggered()
        return self._triggered(
            rule,
            details="Pointer and keystroke timing show no human variation",
            evidence={
                "pointer_movement_variance": pointer,
                "keystroke_interval_stddev": keystroke,
            },
        )


class FastSubmitCheck(FraudCheck):
    rule_key = "behavioral_fast_submit"
    signal_type = SignalType.BEHAVIORAL
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        elapsed = context.features.time_to_submit_ms
        if not rule.matches(elapsed):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"Checkout submitted {elapsed:.0f}ms after start",
            evidence={"time_to_submit_ms": elapsed},
        )
