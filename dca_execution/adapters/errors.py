"""
Exchange Adapter - Venue Error Mapping.

============================================================
PURPOSE
============================================================
Maps venue error bodies onto ExchangeBusinessError with a
unified category and retry eligibility.

The venue's own message is always kept verbatim; it is what
the user sees.

============================================================
VENUE ERROR SHAPES
============================================================
Binance:  {"code": -2010, "msg": "Account has insufficient balance..."}
Kraken:   {"error": ["EOrder:Insufficient funds"], "result": {}}
Coinbase: {"error": "INVALID_ARGUMENT", "message": "..."}            (v3)
          {"success": false, "error_response": {"message": ...}}     (v3 orders)
          {"errors": [{"id": "...", "message": "..."}]}              (v2)

============================================================
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ErrorCategory, ExchangeBusinessError, RetryEligibility


logger = logging.getLogger(__name__)


def _classify_status(http_status: Optional[int]) -> Tuple[ErrorCategory, RetryEligibility]:
    """Fallback classification from the HTTP status alone."""
    if http_status in (418, 429):
        return ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF
    if http_status in (401, 403):
        return ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY
    if http_status is not None and http_status >= 500:
        return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY
    if http_status == 404:
        return ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY
    return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.NO_RETRY


# ============================================================
# BINANCE ERROR MAPPING
# ============================================================

BINANCE_ERROR_MAP: Dict[int, Tuple[ErrorCategory, RetryEligibility]] = {
    # Rate limiting
    -1003: (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    -1015: (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Authentication
    -1002: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    -1022: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    -2014: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    -2015: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Clock drift outside recvWindow
    -1021: (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),

    # Order validation
    -1013: (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    -1100: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1101: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1102: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1111: (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    -1121: (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Funds
    -2010: (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    -2018: (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),

    # Min notional
    -4164: (ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),

    # Withdrawals
    -4026: (ErrorCategory.WITHDRAWAL_REJECTED, RetryEligibility.NO_RETRY),
    -4019: (ErrorCategory.WITHDRAWAL_REJECTED, RetryEligibility.NO_RETRY),

    # Exchange internal
    -1000: (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    -1001: (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    -1006: (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    -1007: (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
}


def map_binance_error(
    code: Any,
    message: str,
    http_status: Optional[int] = None,
) -> ExchangeBusinessError:
    """
    Map a Binance error body to ExchangeBusinessError.

    Args:
        code: Binance error code (negative integer)
        message: Binance ``msg``
        http_status: HTTP status code

    Returns:
        ExchangeBusinessError
    """
    try:
        numeric = int(code)
    except (TypeError, ValueError):
        numeric = None

    if numeric in BINANCE_ERROR_MAP:
        category, retry = BINANCE_ERROR_MAP[numeric]
    else:
        category, retry = _classify_status(http_status)

    return ExchangeBusinessError(
        message or "Unknown Binance error",
        exchange_id="binance",
        exchange_code=str(code),
        http_status=http_status,
        category=category,
        retry_eligible=retry,
    )


# ============================================================
# KRAKEN ERROR MAPPING
# ============================================================

# Prefix match, most specific first
KRAKEN_ERROR_MAP: List[Tuple[str, ErrorCategory, RetryEligibility]] = [
    ("EAPI:Invalid key", ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    ("EAPI:Invalid signature", ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    ("EAPI:Invalid nonce", ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
    ("EAPI:Rate limit", ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    ("EGeneral:Permission denied", ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    ("EGeneral:Invalid arguments", ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    ("EGeneral:Temporary lockout", ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    ("EGeneral:Internal error", ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    ("EOrder:Rate limit", ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    ("EOrder:Insufficient funds", ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    ("EOrder:Order minimum not met", ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),
    ("EOrder:Cost minimum not met", ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),
    ("EOrder:Invalid order", ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    ("EQuery:Unknown asset pair", ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    ("EFunding:Insufficient funds", ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    ("EFunding:Unknown withdraw key", ErrorCategory.WITHDRAWAL_REJECTED, RetryEligibility.NO_RETRY),
    ("EFunding:", ErrorCategory.WITHDRAWAL_REJECTED, RetryEligibility.NO_RETRY),
    ("EService:Unavailable", ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    ("EService:Busy", ErrorCategory.EXCHANGE_ERROR, RetryEligibility.BACKOFF),
    ("EService:Deadline elapsed", ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
]


def map_kraken_error(
    errors: List[str],
    http_status: Optional[int] = None,
) -> ExchangeBusinessError:
    """
    Map a Kraken error list to ExchangeBusinessError.

    The first entry decides the category; all entries are joined
    into the message.

    Args:
        errors: Kraken ``error`` array
        http_status: HTTP status code

    Returns:
        ExchangeBusinessError
    """
    errors = [str(e) for e in errors or []]
    first = errors[0] if errors else ""

    for prefix, category, retry in KRAKEN_ERROR_MAP:
        if first.startswith(prefix):
            break
    else:
        category, retry = _classify_status(http_status)

    return ExchangeBusinessError(
        ", ".join(errors) or "Unknown Kraken error",
        exchange_id="kraken",
        exchange_code=first or None,
        http_status=http_status,
        category=category,
        retry_eligible=retry,
    )


# ============================================================
# COINBASE ERROR MAPPING
# ============================================================

COINBASE_ERROR_MAP: Dict[str, Tuple[ErrorCategory, RetryEligibility]] = {
    "UNAUTHENTICATED": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "authentication_error": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "invalid_token": (ErrorCategory.REAUTH_REQUIRED, RetryEligibility.NO_RETRY),
    "expired_token": (ErrorCategory.REAUTH_REQUIRED, RetryEligibility.NO_RETRY),
    "revoked_token": (ErrorCategory.REAUTH_REQUIRED, RetryEligibility.NO_RETRY),
    "PERMISSION_DENIED": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "INVALID_ARGUMENT": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "validation_error": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "INSUFFICIENT_FUND": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "insufficient_funds": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "UNKNOWN_PRODUCT_ID": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "NOT_FOUND": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "not_found": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "rate_limit_exceeded": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "RESOURCE_EXHAUSTED": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "INTERNAL": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "internal_server_error": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}


def extract_coinbase_error(body: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Pull (code, message) out of any Coinbase error body shape.

    Returns:
        (code, message); either may be None
    """
    if not isinstance(body, dict):
        return None, None

    # v2: {"errors": [{"id", "message"}]}
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0] if isinstance(errors[0], dict) else {}
        return first.get("id"), first.get("message")

    # v3 order: {"success": false, "error_response": {...}}
    error_response = body.get("error_response")
    if isinstance(error_response, dict):
        code = error_response.get("error") or body.get("failure_reason")
        message = (
            error_response.get("message")
            or error_response.get("error_details")
            or error_response.get("preview_failure_reason")
        )
        return code, message

    # v3 / OAuth: {"error": "...", "message" | "error_description": "..."}
    code = body.get("error")
    message = body.get("message") or body.get("error_description")
    if isinstance(code, str) and not message:
        message = code
    return code if isinstance(code, str) else None, message


def map_coinbase_error(
    body: Any,
    http_status: Optional[int] = None,
    exchange_id: str = "coinbase",
) -> ExchangeBusinessError:
    """
    Map a Coinbase error body (v2 or v3) to ExchangeBusinessError.

    Args:
        body: Parsed JSON body
        http_status: HTTP status code
        exchange_id: ``coinbase`` or ``coinbase_advanced``

    Returns:
        ExchangeBusinessError
    """
    code, message = extract_coinbase_error(body)

    if code in COINBASE_ERROR_MAP:
        category, retry = COINBASE_ERROR_MAP[code]
    else:
        category, retry = _classify_status(http_status)

    if not message:
        message = f"Coinbase request failed (HTTP {http_status})"

    return ExchangeBusinessError(
        message,
        exchange_id=exchange_id,
        exchange_code=code,
        http_status=http_status,
        category=category,
        retry_eligible=retry,
    )
