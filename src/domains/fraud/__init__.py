"""Checkout fraud detection and trust scoring domain."""

from .collector import SignalCollector
from .fingerprint import FingerprintRegistry
from .gate import DecisionGate
from .ledger import TrustLedger
from .models import (
    AssessRequest,
    AssessResponse,
    FeatureVector,
    Recommendation,
    Severity,
    Signal,
    SignalType,
    TrustBand,
    TrustSnapshot,
)
from .rule_store import RuleStore
from .rules import ALL_CHECKS
from .rules_engine import RulesEngine, aggregate
from .scorer import RiskScoringEngine
from .workbench import ReviewWorkbench

__all__ = [
    "ALL_CHECKS",
    "AssessRequest",
    "AssessResponse",
    "DecisionGate",
    "FeatureVector",
    "FingerprintRegistry",
    "Recommendation",
    "ReviewWorkbench",
    "RiskScoringEngine",
    "RuleStore",
    "RulesEngine",
    "Severity",
    "Signal",
    "SignalType",
    "SignalCollector",
    "TrustBand",
    "TrustLedger",
    "TrustSnapshot",
    "aggregate",
]
