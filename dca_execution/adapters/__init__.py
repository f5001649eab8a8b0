"""
DCA Execution - Adapters Package.

============================================================
PURPOSE
============================================================
Exchange adapter implementations.

AVAILABLE ADAPTERS:
- binance.BinanceAdapter: Binance spot + SAPI
- kraken.KrakenAdapter: Kraken REST
- coinbase_advanced.CoinbaseAdvancedAdapter: Coinbase Advanced (CDP keys)
- coinbase.CoinbaseAdapter: Coinbase retail (OAuth)

The venue modules and the factory are imported from their own
modules (``dca_execution.adapters.factory``); the retail adapter
depends on ``dca_execution.oauth``, which itself builds on the
shared pieces exported here.

UTILITIES:
- HttpTransport / AiohttpTransport: HTTP seam
- AdapterLogger: Secure logging
- Error mapping functions per exchange

============================================================
"""

# Transport
from .transport import (
    AiohttpTransport,
    HttpResponse,
    HttpTransport,
    JsonResponse,
)

# Errors
from .errors import (
    map_binance_error,
    map_coinbase_error,
    map_kraken_error,
)

# Logging
from .logging_utils import (
    AdapterLogger,
    mask_headers,
    mask_params,
    mask_text,
    mask_url,
    mask_value,
)

# Base
from .base import ExchangeAdapter


__all__ = [
    # Transport
    "AiohttpTransport",
    "HttpResponse",
    "HttpTransport",
    "JsonResponse",
    # Errors
    "map_binance_error",
    "map_coinbase_error",
    "map_kraken_error",
    # Logging
    "AdapterLogger",
    "mask_headers",
    "mask_params",
    "mask_text",
    "mask_url",
    "mask_value",
    # Base
    "ExchangeAdapter",
]
