"""
DCA Execution - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the execution layer.

CRITICAL CONSTRAINTS:
- No blind retries
- No secret material in configuration
- Deterministic behavior

Values can be overridden from the environment (``DCA_*``
variables, optionally loaded from a ``.env`` file).

============================================================
"""

import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


# ============================================================
# ENDPOINTS
# ============================================================

@dataclass
class EndpointConfig:
    """
    Exchange REST endpoints.

    Wire-exact; override only for sandboxes.
    """

    binance_url: str = "https://api.binance.com"
    """Binance spot and SAPI base URL."""

    kraken_url: str = "https://api.kraken.com"
    """Kraken REST base URL."""

    coinbase_url: str = "https://api.coinbase.com"
    """Coinbase Advanced (v3 brokerage) and retail (v2) base URL."""

    coinbase_host: str = "api.coinbase.com"
    """Host that goes into the CDP JWT ``uris`` claim."""

    coinbase_authorize_url: str = "https://www.coinbase.com/oauth/authorize"
    """OAuth authorization endpoint."""

    coinbase_token_url: str = "https://api.coinbase.com/oauth/token"
    """OAuth token endpoint."""


# ============================================================
# EXCHANGE SETTINGS
# ============================================================

@dataclass
class BinanceSettings:
    """Binance request settings."""

    recv_window_ms: int = 60000
    """recvWindow sent with every signed call."""

    default_min_notional: Decimal = Decimal("5")
    """Minimum order value when exchangeInfo carries no NOTIONAL filter."""

    withdrawal_network: str = "BTC"
    """Network entry used for the live withdrawal fee lookup."""


@dataclass
class KrakenSettings:
    """Kraken request settings."""

    fee_estimate_key: str = "default"
    """Pre-registered withdrawal key used for WithdrawInfo estimates."""

    fee_estimate_amount: str = "0.001"
    """BTC amount quoted for the fee estimate."""

    default_lot_decimals: int = 8
    """Volume precision when AssetPairs omits lot_decimals."""


@dataclass
class CoinbaseSettings:
    """Coinbase Advanced and retail settings."""

    client_id: str = "JqANMMfXeeW0SimxvWTHWok1dKrJFifl"
    """Public OAuth client id (PKCE, no client secret)."""

    redirect_uri: str = "mybitcoindca://oauth/coinbase"
    """OAuth redirect URI registered for the client."""

    scopes: List[str] = field(default_factory=lambda: [
        "wallet:accounts:read",
        "wallet:buys:create",
        "wallet:buys:read",
        "wallet:transactions:send",
        "wallet:transactions:read",
        "wallet:user:read",
        "wallet:payment-methods:read",
    ])
    """OAuth scopes requested for retail accounts."""

    api_version: str = "2024-01-01"
    """CB-VERSION header for v2 calls."""

    network_fee: Decimal = Decimal("0.0001")
    """Displayed withdrawal fee; Coinbase usually absorbs network fees."""

    token_refresh_skew_seconds: int = 60
    """Access tokens this close to expiry are refreshed first."""

    default_token_lifetime_seconds: int = 7200
    """Lifetime assumed when the token response omits expires_in."""

    accounts_page_limit: int = 250
    """Page size for account listings."""


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Top-level configuration for the execution layer.
    """

    endpoints: EndpointConfig = field(default_factory=EndpointConfig)
    binance: BinanceSettings = field(default_factory=BinanceSettings)
    kraken: KrakenSettings = field(default_factory=KrakenSettings)
    coinbase: CoinbaseSettings = field(default_factory=CoinbaseSettings)

    withdrawal_fee_fallback: Decimal = Decimal("0.0005")
    """BTC fee shown when the live fee lookup fails."""

    fill_poll_delay_seconds: float = 1.0
    """Pause between placing a market order and reading its execution."""

    http_timeout_seconds: Optional[float] = None
    """Total request timeout. None keeps the transport default."""

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EngineConfig":
        """
        Create config from environment variables.

        Args:
            dotenv: Load a .env file first

        Returns:
            EngineConfig
        """
        if dotenv:
            load_dotenv()

        config = cls()

        config.endpoints.binance_url = os.getenv("DCA_BINANCE_URL", config.endpoints.binance_url)
        config.endpoints.kraken_url = os.getenv("DCA_KRAKEN_URL", config.endpoints.kraken_url)
        config.endpoints.coinbase_url = os.getenv("DCA_COINBASE_URL", config.endpoints.coinbase_url)

        config.kraken.fee_estimate_key = os.getenv(
            "DCA_KRAKEN_FEE_ESTIMATE_KEY", config.kraken.fee_estimate_key
        )
        config.coinbase.client_id = os.getenv("DCA_COINBASE_CLIENT_ID", config.coinbase.client_id)
        config.coinbase.redirect_uri = os.getenv(
            "DCA_COINBASE_REDIRECT_URI", config.coinbase.redirect_uri
        )

        fallback = os.getenv("DCA_WITHDRAWAL_FEE_FALLBACK")
        if fallback:
            config.withdrawal_fee_fallback = Decimal(fallback)

        delay = os.getenv("DCA_FILL_POLL_DELAY_SECONDS")
        if delay:
            config.fill_poll_delay_seconds = float(delay)

        timeout = os.getenv("DCA_HTTP_TIMEOUT_SECONDS")
        if timeout:
            config.http_timeout_seconds = float(timeout)

        logger.debug("Loaded execution config from environment")
        return config
