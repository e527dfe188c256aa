"""Fraud engine error taxonomy.

Every error carries the HTTP status and error code the API reports for it.
Assessment-path errors never reach checkout: the decision gate converts them
to a ``review`` recommendation.
"""


class TrustEngineError(Exception):
    status_code: int = 500
    error_code: str = "trust_engine_error"
    # Safe to retry the same operation unchanged
    transient: bool = False

    def __init__(self, message: str = "", **context) -> None:
        self.message = message or self.__class__.__doc__ or self.error_code
        self.context = context
        super().__init__(self.message)


class SignalCollectionDegraded(TrustEngineError):
    """Telemetry was unavailable or too sparse; a low-confidence vector is used."""

    status_code = 200
    error_code = "signal_collection_degraded"


class ScoringTimeout(TrustEngineError):
    """Risk scoring exceeded its latency budget."""

    status_code = 503
    error_code = "scoring_timeout"
    transient = True


class LedgerConflict(TrustEngineError):
    """Concurrent trust ledger update detected; retry the operation."""

    status_code = 409
    error_code = "ledger_conflict"
    transient = True


class DuplicateResolution(TrustEngineError):
    """Fraud signal has already been resolved."""

    status_code = 409
    error_code = "duplicate_resolution"


class UnknownUser(TrustEngineError):
    """No trust record exists for this user."""

    status_code = 404
    error_code = "unknown_user"


class SignalNotFound(TrustEngineError):
    """Fraud signal does not exist."""

    status_code = 404
    error_code = "signal_not_found"


class SessionNotFound(TrustEngineError):
    """Checkout session does not exist."""

    status_code = 404
    error_code = "session_not_found"


class SessionClosed(TrustEngineError):
    """Checkout session is already completed or expired."""

    status_code = 409
    error_code = "session_closed"


class RuleNotFound(TrustEngineError):
    """Detection rule does not exist."""

    status_code = 404
    error_code = "rule_not_found"


class InvalidRule(TrustEngineError):
    """Detection rule change is not valid."""

    status_code = 422
    error_code = "invalid_rule"
