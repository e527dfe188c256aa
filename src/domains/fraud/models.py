"""Pydantic models for the fraud domain."""

import math
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SignalType(StrEnum):
    VELOCITY = "velocity"
    BEHAVIORAL = "behavioral"
    DEVICE = "device"
    AMOUNT = "amount"
    FIRST_TRANSACTION = "first_transaction"


class Severity(StrEnum):
    INFORMATIONAL = "informational"
    WARNING = "warning"
    CRITICAL = "critical"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFORMATIONAL: 1,
    Severity.WARNING: 2,
    Severity.CRITICAL: 3,
}


class Recommendation(StrEnum):
    APPROVE = "approve"
    REVIEW = "review"
    BLOCK = "block"


class ResolutionStatus(StrEnum):
    OPEN = "open"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"


class ReviewOutcome(StrEnum):
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"


class TrustBand(StrEnum):
    NEW = "new"
    BUILDING = "building"
    TRUSTED = "trusted"
    FLAGGED = "flagged"
    SUSPENDED = "suspended"


class SessionStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class Comparator(StrEnum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


# --- Telemetry and features ---


class PointerSample(BaseModel):
    x: float
    y: float
    t: float  # ms since session start


class SessionTelemetry(BaseModel):
    session_id: str | None = None
    device_attributes: dict = Field(default_factory=dict)
    pointer_samples: list[PointerSample] = []
    keystroke_timestamps_ms: list[float] = []
    time_to_submit_ms: float | None = None


class FeatureVector(BaseModel):
    pointer_movement_variance: float | None = None
    keystroke_interval_stddev: float | None = None
    time_to_submit_ms: float | None = None
    is_headless_suspected: bool | None = None
    cookies_enabled: bool | None = None
    fingerprint_hash: str | None = None
    low_confidence: bool = False
    degraded_fields: list[str] = []


class CollectedSignals(BaseModel):
    session_id: str
    features: FeatureVector
    fingerprint_id: int | None = None
    is_known_device: bool = False
    telemetry: dict = Field(default_factory=dict)


class UserHistory(BaseModel):
    tx_count_window: int = 0
    tx_amount_window: float = 0.0
    tx_count_day: int = 0
    # Prior orders from the seller of the current cart, trailing day
    same_seller_orders_day: int = 0
    average_order_value: float | None = None
    max_order_amount: float | None = None
    prior_completed_orders: int = 0


# --- Rules and scoring ---


class DetectionRule(BaseModel):
    rule_key: str
    signal_type: SignalType
    comparator: Comparator
    threshold_value: float
    weight: float = Field(ge=0)
    is_active: bool = True
    description: str = ""

    def matches(self, value: float | None) -> bool:
        if value is None:
            return False
        if self.comparator == Comparator.GT:
            return value > self.threshold_value
        if self.comparator == Comparator.GTE:
            return value >= self.threshold_value
        if self.comparator == Comparator.LT:
            return value < self.threshold_value
        if self.comparator == Comparator.LTE:
            return value <= self.threshold_value
        return math.isclose(value, self.threshold_value, rel_tol=1e-9, abs_tol=1e-9)


class RuleSet(BaseModel):
    rules: dict[str, DetectionRule] = Field(default_factory=dict)

    def active(self, rule_key: str) -> DetectionRule | None:
        rule = self.rules.get(rule_key)
        if rule is None or not rule.is_active:
            return None
        return rule


class CheckResult(BaseModel):
    rule_key: str
    signal_type: SignalType
    triggered: bool
    severity: Severity = Severity.INFORMATIONAL
    weight: float = 0.0
    details: str = ""
    evidence: dict = Field(default_factory=dict)


class Signal(BaseModel):
    """One detected anomaly: a signal type with the severity and weight it carries."""

    model_config = ConfigDict(frozen=True)

    signal_type: SignalType
    severity: Severity
    weight: float
    rule_keys: tuple[str, ...] = ()
    evidence: dict = Field(default_factory=dict)

    @property
    def discountable(self) -> bool:
        return self.severity != Severity.CRITICAL


class Contribution(BaseModel):
    signal_type: SignalType
    severity: Severity
    weight: float
    applied_weight: float


class Assessment(BaseModel):
    score: float = Field(ge=0, le=100)
    recommendation: Recommendation
    reasons: list[SignalType] = []
    contributions: list[Contribution] = []
    trust_score: int
    discount_factor: float = 0.0
    critical_override: bool = False


class ScoringResult(BaseModel):
    assessment: Assessment
    signals: list[Signal] = []
    check_results: list[CheckResult] = []
    history: UserHistory
    trust_band: TrustBand
    is_suspended: bool = False


# --- Trust ledger ---


class TrustState(BaseModel):
    score: int = Field(default=50, ge=0, le=100)
    consecutive_clean_transactions: int = 0
    total_confirmed_fraud_signals: int = 0
    total_completed_orders: int = 0
    is_suspended: bool = False


class TrustSnapshot(BaseModel):
    user_id: str
    score: int
    band: TrustBand
    consecutive_clean_transactions: int
    total_confirmed_fraud_signals: int
    total_completed_orders: int
    is_suspended: bool
    requires_secondary_verification: bool
    last_updated_at: datetime | None = None


# --- API payloads ---


class AssessRequest(BaseModel):
    user_id: str
    session_telemetry: SessionTelemetry = Field(default_factory=SessionTelemetry)
    cart_total: float = Field(ge=0)
    currency: str = "USD"
    seller_id: str | None = None


class AssessResponse(BaseModel):
    risk_score: float = Field(ge=0, le=100)
    recommendation: Recommendation
    reasons: list[SignalType] = []
    trust_band: TrustBand | None = None
    session_id: str | None = None
    degraded: bool = False


class StartSessionRequest(BaseModel):
    user_id: str
    device_attributes: dict = Field(default_factory=dict)


class SessionEventsRequest(BaseModel):
    device_attributes: dict = Field(default_factory=dict)
    pointer_samples: list[PointerSample] = []
    keystroke_timestamps_ms: list[float] = []
    time_to_submit_ms: float | None = None


class OrderCompletedRequest(BaseModel):
    user_id: str
    amount: float = Field(ge=0)
    currency: str = "USD"
    seller_id: str | None = None
    session_id: str | None = None
    completed_at: datetime | None = None


class ResolveRequest(BaseModel):
    decision: ReviewOutcome
    reviewer_id: str
    notes: str | None = None


class RuleUpdate(BaseModel):
    comparator: Comparator | None = None
    threshold_value: float | None = None
    weight: float | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ReinstateRequest(BaseModel):
    admin_id: str
    score: int | None = Field(default=None, ge=0, le=100)


class FraudSignalView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str | None = None
    user_id: str
    order_id: str | None = None
    signal_type: SignalType
    severity: Severity
    weight: float
    raw_evidence: dict = Field(default_factory=dict)
    created_at: datetime
    resolution_status: ResolutionStatus
    resolved_by: str | None = None
    resolved_at: datetime | None = None


class ResolutionResult(BaseModel):
    signal: FraudSignalView
    trust_score: TrustSnapshot


class RuleFeedback(BaseModel):
    rule_key: str
    confirmed: int = 0
    false_positive: int = 0

    @computed_field
    @property
    def false_positive_rate(self) -> float:
        resolved = self.confirmed + self.false_positive
        return round(self.false_positive / resolved, 4) if resolved else 0.0


class CheckContext(BaseModel):
    """Everything a check may look at; precomputed so checks stay pure."""

    features: FeatureVector
    is_known_device: bool = False
    cart_total: float = 0.0
    seller_id: str | None = None
    history: UserHistory = Field(default_factory=UserHistory)
