"""
DCA Execution.

============================================================
PURPOSE
============================================================
Client-side execution layer for recurring Bitcoin purchases and
hardware-wallet withdrawals on the user's own exchange account.

SUPPORTED EXCHANGES:
- Binance (HMAC-SHA256 API keys)
- Kraken (HMAC-SHA512 API keys)
- Coinbase Advanced (CDP keys, ES256 JWT)
- Coinbase retail (OAuth2 + PKCE)

ENTRY POINT:
    ExchangeFacade - every operation returns an OperationResult

============================================================
"""

from .facade import ExchangeFacade, withdrawal_network
from .config import EngineConfig
from .credentials import (
    CredentialKey,
    CredentialStore,
    InMemorySecretBackend,
    SecretBackend,
)
from .eligibility import EXCHANGES, ExchangeInfo, get_available_exchanges
from .errors import (
    CredentialsMissing,
    ErrorCategory,
    ExchangeBusinessError,
    ExecutionError,
    InvalidRequest,
    ReauthRequired,
    RetryEligibility,
    SigningError,
    SizingRejected,
    TokenExpired,
    TransportError,
    UnsupportedCurrency,
    UnsupportedExchange,
    UnsupportedOperation,
)
from .markets import SUPPORTED_CURRENCIES, pair_for
from .oauth import AuthorizationRequest, CoinbaseOAuthClient
from .sizing import OrderSizer, reduce_execution
from .types import (
    Balance,
    ExchangeId,
    Fill,
    FillBased,
    OAuthTokenPair,
    OperationResult,
    OrderLevelOnly,
    OrderSpec,
    TradeResult,
    WithdrawalResult,
)


__all__ = [
    # Facade
    "ExchangeFacade",
    "withdrawal_network",
    # Config
    "EngineConfig",
    # Credentials
    "CredentialKey",
    "CredentialStore",
    "InMemorySecretBackend",
    "SecretBackend",
    # Catalogs
    "EXCHANGES",
    "ExchangeInfo",
    "get_available_exchanges",
    "SUPPORTED_CURRENCIES",
    "pair_for",
    # OAuth
    "AuthorizationRequest",
    "CoinbaseOAuthClient",
    # Sizing
    "OrderSizer",
    "reduce_execution",
    # Errors
    "CredentialsMissing",
    "ErrorCategory",
    "ExchangeBusinessError",
    "ExecutionError",
    "InvalidRequest",
    "ReauthRequired",
    "RetryEligibility",
    "SigningError",
    "SizingRejected",
    "TokenExpired",
    "TransportError",
    "UnsupportedCurrency",
    "UnsupportedExchange",
    "UnsupportedOperation",
    # Types
    "Balance",
    "ExchangeId",
    "Fill",
    "FillBased",
    "OAuthTokenPair",
    "OperationResult",
    "OrderLevelOnly",
    "OrderSpec",
    "TradeResult",
    "WithdrawalResult",
]
