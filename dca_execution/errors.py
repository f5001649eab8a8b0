"""
DCA Execution - Error Taxonomy.

============================================================
PURPOSE
============================================================
Exception hierarchy for signing, sizing and exchange calls.

ERROR CATEGORIES:
1. CredentialsMissing    - No keys/tokens stored for the exchange
2. SigningError          - Key material malformed
3. SizingRejected        - Below minimum notional (pre or post rounding)
4. ExchangeBusinessError - Structured error reported by the venue
5. TransportError        - Unreachable host or non-JSON body
6. ReauthRequired        - OAuth session gone, reconnect needed

RETRYABLE vs NON-RETRYABLE:
- Retryable: rate limits, venue 5xx, clock drift, transport failures
- Non-retryable: credentials, funds, validation
Nothing here is retried automatically. The classification is for
the caller and for logs.

============================================================
"""

from enum import Enum
from typing import Any, Dict, Optional


# ============================================================
# CLASSIFICATION
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""

    CREDENTIALS_MISSING = "CREDENTIALS_MISSING"
    SIGNING = "SIGNING"
    SIZING = "SIZING"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    REAUTH_REQUIRED = "REAUTH_REQUIRED"
    INVALID_ORDER = "INVALID_ORDER"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    MIN_NOTIONAL = "MIN_NOTIONAL"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    WITHDRAWAL_REJECTED = "WITHDRAWAL_REJECTED"
    UNSUPPORTED = "UNSUPPORTED"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    UNKNOWN = "UNKNOWN"


class RetryEligibility(Enum):
    """Whether an error is transient."""

    RETRY = "RETRY"           # Safe to retry
    NO_RETRY = "NO_RETRY"     # Should not retry
    BACKOFF = "BACKOFF"       # Retry after waiting


# ============================================================
# BASE EXCEPTION
# ============================================================

class ExecutionError(Exception):
    """
    Base exception for the execution layer.

    ``message`` is for logs. ``user_message`` is what a result
    envelope shows to the user.
    """

    category = ErrorCategory.UNKNOWN
    retry_eligible = RetryEligibility.NO_RETRY

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        exchange_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.exchange_id = exchange_id

    @property
    def code(self) -> str:
        return self.category.value

    def is_retryable(self) -> bool:
        return self.retry_eligible in (RetryEligibility.RETRY, RetryEligibility.BACKOFF)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "user_message": self.user_message,
            "retry_eligible": self.retry_eligible.value,
            "exchange_id": self.exchange_id,
        }


# ============================================================
# CREDENTIAL / SIGNING ERRORS
# ============================================================

class CredentialsMissing(ExecutionError):
    """No credentials stored for the requested exchange and user."""

    category = ErrorCategory.CREDENTIALS_MISSING


class SigningError(ExecutionError):
    """Stored key material could not be used to sign."""

    category = ErrorCategory.SIGNING

    def __init__(self, message: str, exchange_id: Optional[str] = None):
        super().__init__(
            message,
            user_message=f"API credentials are malformed: {message}",
            exchange_id=exchange_id,
        )


class ReauthRequired(ExecutionError):
    """OAuth tokens are no longer usable; the account must be reconnected."""

    category = ErrorCategory.REAUTH_REQUIRED


TokenExpired = ReauthRequired


# ============================================================
# SIZING
# ============================================================

class SizingRejected(ExecutionError):
    """Order rejected by the sizer before any order call was made."""

    category = ErrorCategory.SIZING

    def __init__(
        self,
        message: str,
        stage: str,
        order_value=None,
        min_notional=None,
        exchange_id: Optional[str] = None,
    ):
        super().__init__(message, exchange_id=exchange_id)
        self.stage = stage
        """Either "pre_rounding" or "post_rounding"."""
        self.order_value = order_value
        self.min_notional = min_notional


# ============================================================
# EXCHANGE ERRORS
# ============================================================

class ExchangeBusinessError(ExecutionError):
    """Structured error returned by the venue. Message passed through verbatim."""

    category = ErrorCategory.EXCHANGE_ERROR

    def __init__(
        self,
        message: str,
        exchange_id: Optional[str] = None,
        exchange_code: Optional[str] = None,
        http_status: Optional[int] = None,
        category: Optional[ErrorCategory] = None,
        retry_eligible: Optional[RetryEligibility] = None,
    ):
        super().__init__(message, exchange_id=exchange_id)
        self.exchange_code = exchange_code
        self.http_status = http_status
        if category is not None:
            self.category = category
        if retry_eligible is not None:
            self.retry_eligible = retry_eligible

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["exchange_code"] = self.exchange_code
        data["http_status"] = self.http_status
        return data


class TransportError(ExecutionError):
    """
    Host unreachable, timed out, or answered with a non-JSON body.

    The raw body is kept for logs only and never reaches the user.
    """

    category = ErrorCategory.NETWORK
    retry_eligible = RetryEligibility.RETRY

    def __init__(
        self,
        message: str,
        exchange_name: str = "Exchange",
        exchange_id: Optional[str] = None,
        http_status: Optional[int] = None,
        timeout: bool = False,
    ):
        super().__init__(
            message,
            user_message=unavailable_message(exchange_name),
            exchange_id=exchange_id,
        )
        self.http_status = http_status
        if timeout:
            self.category = ErrorCategory.TIMEOUT


def unavailable_message(exchange_name: str) -> str:
    """Generic user-facing message for transport failures."""
    return (
        f"{exchange_name} API is temporarily unavailable. "
        "Please try again in a few minutes."
    )


# ============================================================
# UNSUPPORTED REQUESTS
# ============================================================

class UnsupportedOperation(ExecutionError):
    """Operation not available on this exchange."""

    category = ErrorCategory.UNSUPPORTED


class UnsupportedCurrency(ExecutionError):
    """Currency has no trading pair on this exchange."""

    category = ErrorCategory.UNSUPPORTED


class UnsupportedExchange(ExecutionError):
    """Exchange identifier outside the supported set."""

    category = ErrorCategory.UNSUPPORTED


class InvalidRequest(ExecutionError):
    """Caller passed an unusable argument (empty address, non-positive amount)."""

    category = ErrorCategory.INVALID_ORDER
