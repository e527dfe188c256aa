"""Fraud engine configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


@dataclass
class ScoringThresholds:
    review_threshold: float = 30.0
    block_threshold: float = 70.0
    max_score: float = 100.0


@dataclass
class TrustDiscount:
    # Trust at or below neutral_score earns no discount; 100 earns max_discount.
    neutral_score: int = 50
    max_discount: float = 0.5


@dataclass
class LedgerSettings:
    default_score: int = 50
    completion_increment: int = 2
    critical_penalty: int = 40
    warning_penalty: int = 15
    informational_penalty: int = 5
    suspension_floor: int = 10
    building_min: int = 51
    trusted_min: int = 76
    max_retries: int = 1
    # Below this score checkout should ask for secondary verification
    secondary_verification_below: int = 30


@dataclass
class GateSettings:
    timeout_ms: int = 150


@dataclass
class SessionSettings:
    ttl_minutes: int = 30
    min_pointer_samples: int = 3
    min_keystrokes: int = 3


@dataclass
class RuleDefault:
    signal_type: str
    comparator: str
    threshold_value: float
    weight: float
    description: str


def _default_rules() -> dict[str, RuleDefault]:
    return {
        "velocity_tx_count": RuleDefault(
            "velocity", "gt", 5, 60, "Completed orders in the trailing hour"
        ),
        "velocity_amount": RuleDefault(
            "velocity", "gt", 1000.0, 60, "Order value in the trailing hour"
        ),
        "velocity_daily": RuleDefault(
            "velocity", "gt", 10, 40, "Completed orders in the trailing 24 hours"
        ),
        "velocity_same_seller": RuleDefault(
            "velocity", "gte", 3, 20, "Prior orders from the same seller in the trailing 24 hours"
        ),
        "behavioral_mechanical_input": RuleDefault(
            "behavioral", "lte", 0.01, 30, "Pointer variance and keystroke stddev near zero"
        ),
        "behavioral_fast_submit": RuleDefault(
            "behavioral", "lt", 5000, 20, "Checkout submitted faster than a human plausibly can"
        ),
        "device_headless": RuleDefault("device", "eq", 1, 40, "Headless browser indicators"),
        "device_cookies_disabled": RuleDefault("device", "eq", 0, 10, "Cookies disabled"),
        "device_new_high_value": RuleDefault(
            "device", "gt", 200.0, 25, "Unrecognized device above the high-value cart total"
        ),
        "amount_aov_multiplier": RuleDefault(
            "amount", "gt", 10, 30, "Cart total versus trailing 90-day average order value"
        ),
        "amount_round_number": RuleDefault(
            "amount", "gt", 500.0, 10, "Round-hundred cart total above the minimum"
        ),
        "amount_max": RuleDefault(
            "amount", "gt", 2, 20, "Cart total versus the user's largest previous order"
        ),
        "amount_first": RuleDefault(
            "amount", "gt", 500.0, 25, "High-value cart on a first order"
        ),
        "first_transaction": RuleDefault(
            "first_transaction", "eq", 0, 15, "No prior completed orders"
        ),
    }


@dataclass
class RuleStoreSettings:
    cache_ttl_seconds: float = 30.0
    defaults: dict[str, RuleDefault] = field(default_factory=_default_rules)


@dataclass
class HistorySettings:
    velocity_window_minutes: int = 60
    daily_window_hours: int = 24
    average_order_window_days: int = 90


@dataclass
class FraudConfig:
    scoring: ScoringThresholds = field(default_factory=ScoringThresholds)
    discount: TrustDiscount = field(default_factory=TrustDiscount)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    gate: GateSettings = field(default_factory=GateSettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)
    rules: RuleStoreSettings = field(default_factory=RuleStoreSettings)
    history: HistorySettings = field(default_factory=HistorySettings)

    @classmethod
    def from_env(cls) -> "FraudConfig":
        """Load config with env var overrides. Env vars use FRAUD_ prefix."""
        config = cls()

        # Scoring overrides
        if v := os.getenv("FRAUD_REVIEW_THRESHOLD"):
            config.scoring.review_threshold = float(v)
        if v := os.getenv("FRAUD_BLOCK_THRESHOLD"):
            config.scoring.block_threshold = float(v)
        if v := os.getenv("FRAUD_MAX_TRUST_DISCOUNT"):
            config.discount.max_discount = float(v)

        # Gate and session overrides
        if v := os.getenv("FRAUD_SCORING_TIMEOUT_MS"):
            config.gate.timeout_ms = int(v)
        if v := os.getenv("FRAUD_SESSION_TTL_MINUTES"):
            config.sessions.ttl_minutes = int(v)

        # Ledger overrides
        if v := os.getenv("FRAUD_COMPLETION_INCREMENT"):
            config.ledger.completion_increment = int(v)
        if v := os.getenv("FRAUD_SUSPENSION_FLOOR"):
            config.ledger.suspension_floor = int(v)

        # Rule store
        if v := os.getenv("FRAUD_RULE_CACHE_TTL_SECONDS"):
            config.rules.cache_ttl_seconds = float(v)

        return config


# Module-level default instance
default_config = FraudConfig()
