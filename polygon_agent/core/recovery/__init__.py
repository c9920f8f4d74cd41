"""
Error taxonomy and retry handling.
"""

from .errors import (
    CallbackTimeout,
    ChainMismatch,
    DecryptionFailure,
    EdgeProxyBlocked,
    ErrorCategory,
    ErrorContext,
    ExpiredRequest,
    InsufficientGas,
    InvalidConstraints,
    InvalidPayload,
    MarketNotFound,
    MissingSession,
    RecoverableError,
    RequestNotFound,
    TransactionFailed,
    TunnelUnavailable,
    UnrecoverableError,
    VenueAuthFailure,
    VenueOrderRejected,
    classify_error,
)
from .strategies import RetryConfig, RetryStrategy

__all__ = [
    "CallbackTimeout",
    "ChainMismatch",
    "DecryptionFailure",
    "EdgeProxyBlocked",
    "ErrorCategory",
    "ErrorContext",
    "ExpiredRequest",
    "InsufficientGas",
    "InvalidConstraints",
    "InvalidPayload",
    "MarketNotFound",
    "MissingSession",
    "RecoverableError",
    "RequestNotFound",
    "RetryConfig",
    "RetryStrategy",
    "TransactionFailed",
    "TunnelUnavailable",
    "UnrecoverableError",
    "VenueAuthFailure",
    "VenueOrderRejected",
    "classify_error",
]
