"""Fraud checks package.

Exports ALL_CHECKS (one instance per rule key, in evaluation order) and the
individual check classes for direct use.
"""

from .amount import (
    AverageOrderMultipleCheck,
    HighValueFirstOrderCheck,
    NewMaximumAmountCheck,
    RoundNumberCheck,
)
from .base import FraudCheck
from .behavioral import FastSubmitCheck, MechanicalInputCheck
from .device import CookiesDisabledCheck, HeadlessBrowserCheck, NewDeviceHighValueCheck
from .first_transaction import FirstTransactionCheck
from .velocity import (
    DailyTransactionCountCheck,
    SameSellerRepeatCheck,
    TransactionAmountCheck,
    TransactionCountCheck,
)

ALL_CHECKS: list[FraudCheck] = [
    # Velocity
    TransactionCountCheck(),
    TransactionAmountCheck(),
    DailyTransactionCountCheck(),
    SameSellerRepeatCheck(),
    # Behavioral
    MechanicalInputCheck(),
    FastSubmitCheck(),
    # Device
    HeadlessBrowserCheck(),
    CookiesDisabledCheck(),
    NewDeviceHighValueCheck(),
    # Amount
    AverageOrderMultipleCheck(),
    RoundNumberCheck(),
    NewMaximumAmountCheck(),
    HighValueFirstOrderCheck(),
    # First transaction
    FirstTransactionCheck(),
]

__all__ = [
    "ALL_CHECKS",
    "FraudCheck",
    "TransactionCountCheck",
    "TransactionAmountCheck",
    "DailyTransactionCountCheck",
    "SameSellerRepeatCheck",
    "MechanicalInputCheck",
    "FastSubmitCheck",
    "HeadlessBrowserCheck",
    "CookiesDisabledCheck",
    "NewDeviceHighValueCheck",
    "AverageOrderMultipleCheck",
    "RoundNumberCheck",
    "NewMaximumAmountCheck",
    "HighValueFirstOrderCheck",
    "FirstTransactionCheck",
]
