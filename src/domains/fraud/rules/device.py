"""Device checks: headless browsers, disabled cookies, unknown devices on large carts."""

from ..models import CheckContext, CheckResult, DetectionRule, Severity, SignalType
from .base import FraudCheck


def _flag(value: bool | None) -> float | None:
    if value is None:
        return None
    return 1.0 if value else 0.0


class HeadlessBrowserCheck(FraudCheck):
    rule_key = "device_headless"
    signal_type = SignalType.DEVICE
    severity = Severity.CRITICAL

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        if not rule.matches(_flag(context.features.is_headless_suspected)):
            return self._not_triggered()
        return self._triggered(
            rule,
            details="Headless browser or automation framework detected",
            evidence={"is_headless_suspected": True},
        )


class CookiesDisabledCheck(FraudCheck):
    rule_key = "device_cookies_disabled"
    signal_type = SignalType.DEVICE
    severity = Severity.INFORMATIONAL

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        if not rule.matches(_flag(context.features.cookies_enabled)):
            return self._not_triggered()
        return self._triggered(
            rule,
            details="Cookies disabled on device",
            evidence={"cookies_enabled": context.features.cookies_enabled},
        )


class NewDeviceHighValueCheck(FraudCheck):
    """Unrecognized device with a cart above the new-device high-value threshold."""

    rule_key = "device_new_high_value"
    signal_type = SignalType.DEVICE
    severity = Severity.WARNING

    def check(self, context: CheckContext, rule: DetectionRule) -> CheckResult:
        if context.is_known_device or not rule.matches(context.cart_total):
            return self._not_triggered()
        return self._triggered(
            rule,
            details=f"New device with ${context.cart_total:,.2f} cart",
            evidence={
                "cart_total": context.cart_total,
                "fingerprint_hash": context.features.fingerprint_hash,
            },
        )
