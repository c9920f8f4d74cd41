"""
Error Classification

Defines the error taxonomy for wallet sessions, the credential vault and
trade execution. Errors are classified as recoverable (can retry) or
unrecoverable (needs a human or a new request).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    NETWORK = "network"           # Network/connectivity issues
    EDGE_PROXY = "edge_proxy"     # Venue edge proxy rejected the request
    TIMEOUT = "timeout"           # Operation timed out
    EXPIRED = "expired"           # Approval request past its TTL
    VALIDATION = "validation"     # Malformed input or payload
    CHAIN_MISMATCH = "chain_mismatch"
    CRYPTO = "crypto"             # Decryption/authentication failure
    SESSION = "session"           # No usable wallet session
    NOT_FOUND = "not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"  # Not enough native gas
    TRANSACTION_REVERTED = "transaction_reverted"  # On-chain revert
    AUTHENTICATION = "authentication"  # Venue credential rejected
    ORDER_REJECTED = "order_rejected"
    PROVIDER = "provider"         # External provider error
    TUNNEL = "tunnel"             # Public tunnel could not be started
    UNKNOWN = "unknown"           # Unclassified error


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    provider: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors that can be retried.

    These errors are typically transient:
    - Network issues
    - Edge proxy rejections
    - A tunnel that failed to come up
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(Exception):
    """
    Base class for errors that cannot be retried.

    These errors require human intervention:
    - Expired or tampered approval payloads
    - Missing sessions
    - Insufficient gas
    - Venue rejections
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


def _unrecoverable(category: ErrorCategory, action: str, **details: Any) -> ErrorContext:
    return ErrorContext(
        category=category,
        recoverable=False,
        suggested_action=action,
        details={k: v for k, v in details.items() if v is not None},
    )


# Specific recoverable errors
class EdgeProxyBlocked(RecoverableError):
    """The venue's edge proxy rejected a request (403/503 challenge page)."""

    def __init__(self, message: str = "Request blocked by edge proxy", status_code: Optional[int] = None):
        super().__init__(
            message,
            category=ErrorCategory.EDGE_PROXY,
            context=ErrorContext(
                category=ErrorCategory.EDGE_PROXY,
                recoverable=True,
                provider="polymarket",
                suggested_action="Retry with linear backoff",
                details={"status_code": status_code} if status_code else {},
            ),
        )
        self.status_code = status_code


class TunnelUnavailable(RecoverableError):
    """The public tunnel binary could not be resolved or started."""

    def __init__(self, message: str = "Tunnel unavailable"):
        super().__init__(
            message,
            category=ErrorCategory.TUNNEL,
            context=ErrorContext(
                category=ErrorCategory.TUNNEL,
                recoverable=True,
                suggested_action="Paste the approval blob manually",
            ),
        )


# Specific unrecoverable errors
class ExpiredRequest(UnrecoverableError):
    """Approval request was consumed after its expiry."""

    def __init__(self, message: str = "Request expired", request_id: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.EXPIRED,
            context=_unrecoverable(
                ErrorCategory.EXPIRED,
                "Create a new approval request",
                request_id=request_id,
            ),
        )


class InvalidPayload(UnrecoverableError):
    """Decrypted session payload is malformed or missing required fields."""

    def __init__(self, message: str = "Invalid session payload", field_name: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            context=_unrecoverable(ErrorCategory.VALIDATION, "Approve the request again", field=field_name),
        )


class InvalidConstraints(UnrecoverableError):
    """Requested session constraints are inconsistent."""

    def __init__(self, message: str = "Invalid session constraints"):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            context=_unrecoverable(ErrorCategory.VALIDATION, "Fix the requested limits"),
        )


class ChainMismatch(UnrecoverableError):
    """Approved session is for a different chain than requested."""

    def __init__(self, expected: Optional[int] = None, actual: Optional[int] = None):
        super().__init__(
            f"Chain mismatch: requested {expected}, payload has {actual}",
            category=ErrorCategory.CHAIN_MISMATCH,
            context=ErrorContext(
                category=ErrorCategory.CHAIN_MISMATCH,
                recoverable=False,
                chain_id=expected,
                suggested_action="Approve the request on the requested chain",
                details={"expected": expected, "actual": actual},
            ),
        )
        self.expected = expected
        self.actual = actual


class DecryptionFailure(UnrecoverableError):
    """Ciphertext failed authentication or could not be decrypted."""

    def __init__(self, message: str = "Decryption failed"):
        super().__init__(
            message,
            category=ErrorCategory.CRYPTO,
            context=_unrecoverable(ErrorCategory.CRYPTO, "Check the key and the stored record"),
        )


class MissingSession(UnrecoverableError):
    """No usable wallet session is stored for the wallet name."""

    def __init__(self, wallet_name: Optional[str] = None, message: Optional[str] = None):
        super().__init__(
            message or f"No session stored for wallet '{wallet_name}'",
            category=ErrorCategory.SESSION,
            context=_unrecoverable(
                ErrorCategory.SESSION,
                "Run `wallet create` to establish a session",
                wallet=wallet_name,
            ),
        )
        self.wallet_name = wallet_name


class RequestNotFound(UnrecoverableError):
    """No pending approval request matches the given id or wallet."""

    def __init__(self, request_id: Optional[str] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Request not found: {request_id}",
            category=ErrorCategory.NOT_FOUND,
            context=_unrecoverable(ErrorCategory.NOT_FOUND, "Create a new approval request", request_id=request_id),
        )


class MarketNotFound(UnrecoverableError):
    """Venue has no market for the given condition id."""

    def __init__(self, market_id: str):
        super().__init__(
            f"Market not found: {market_id}",
            category=ErrorCategory.NOT_FOUND,
            context=_unrecoverable(ErrorCategory.NOT_FOUND, "Check the market condition id", market=market_id),
        )


class InsufficientGas(UnrecoverableError):
    """Signing identity cannot pay gas. Message is the chain's rejection text."""

    def __init__(self, message: str, address: Optional[str] = None, chain_id: Optional[int] = None):
        super().__init__(
            message,
            category=ErrorCategory.INSUFFICIENT_FUNDS,
            context=ErrorContext(
                category=ErrorCategory.INSUFFICIENT_FUNDS,
                recoverable=False,
                chain_id=chain_id,
                suggested_action="Send native gas token to the signing identity",
                details={"address": address} if address else {},
            ),
        )


class TransactionFailed(UnrecoverableError):
    """Transaction was rejected by the node or reverted on-chain."""

    def __init__(
        self,
        message: str = "Transaction failed",
        tx_hash: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TRANSACTION_REVERTED,
            context=ErrorContext(
                category=ErrorCategory.TRANSACTION_REVERTED,
                recoverable=False,
                tx_hash=tx_hash,
                chain_id=chain_id,
                suggested_action="Review transaction parameters",
            ),
        )
        self.tx_hash = tx_hash


class VenueAuthFailure(UnrecoverableError):
    """Venue rejected credential issuance/derivation or an authenticated call."""

    def __init__(self, message: str = "Venue authentication failed", status_code: Optional[int] = None):
        super().__init__(
            message,
            category=ErrorCategory.AUTHENTICATION,
            context=ErrorContext(
                category=ErrorCategory.AUTHENTICATION,
                recoverable=False,
                provider="polymarket",
                suggested_action="Check the signing identity",
                details={"status_code": status_code} if status_code else {},
            ),
        )
        self.status_code = status_code


class VenueOrderRejected(UnrecoverableError):
    """Venue refused the submitted order."""

    def __init__(self, message: str = "Order rejected", response: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            category=ErrorCategory.ORDER_REJECTED,
            context=ErrorContext(
                category=ErrorCategory.ORDER_REJECTED,
                recoverable=False,
                provider="polymarket",
                suggested_action="Sell the held tokens manually or retry with a different price",
                details={"response": response} if response else {},
            ),
        )
        self.response = response


class CallbackTimeout(UnrecoverableError):
    """No approval arrived before the wait-mode deadline."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        super().__init__(
            f"Timed out waiting for wallet approval after {timeout_seconds}s",
            category=ErrorCategory.TIMEOUT,
            context=_unrecoverable(
                ErrorCategory.TIMEOUT,
                "Import the approval later with `wallet import`",
                timeout_seconds=timeout_seconds,
            ),
        )


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Taxonomy errors carry their own context; anything else is classified
    from its type and message.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    message = str(error).lower()

    if isinstance(error, httpx.TransportError):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            retry_after_seconds=0.5,
            suggested_action="Check network connectivity",
        )

    funds_patterns = ["insufficient funds", "not enough", "exceeds balance"]
    if any(p in message for p in funds_patterns):
        return ErrorContext(
            category=ErrorCategory.INSUFFICIENT_FUNDS,
            recoverable=False,
            suggested_action="Add funds to wallet",
        )

    revert_patterns = ["revert", "execution reverted"]
    if any(p in message for p in revert_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSACTION_REVERTED,
            recoverable=False,
            suggested_action="Review transaction parameters",
        )

    network_patterns = ["connection", "network", "unreachable", "refused", "dns", "socket"]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            retry_after_seconds=0.5,
            suggested_action="Check network connectivity",
        )

    timeout_patterns = ["timeout", "timed out"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            suggested_action="Retry with longer timeout",
        )

    if isinstance(error, (ValueError, TypeError, KeyError)):
        return ErrorContext(category=ErrorCategory.VALIDATION, recoverable=False)

    return ErrorContext(category=ErrorCategory.UNKNOWN, recoverable=False)
