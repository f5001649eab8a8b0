"""
DCA Execution - Currency and Trading Pair Catalog.

Kraken quotes BTC as XBT and Coinbase uses hyphenated product ids.
A pair of None means the exchange does not list that currency.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import UnsupportedCurrency
from .types import ExchangeId


DEFAULT_CURRENCY = "EUR"


@dataclass(frozen=True)
class Currency:
    """A fiat or stable currency and its BTC pair on each exchange."""

    code: str
    symbol: str
    name: str
    binance_pair: Optional[str]
    kraken_pair: Optional[str]
    coinbase_pair: Optional[str]

    @property
    def binance_quote(self) -> Optional[str]:
        """Quote asset of the Binance pair (USD trades against USDT)."""
        if not self.binance_pair:
            return None
        return self.binance_pair[len("BTC"):]


SUPPORTED_CURRENCIES: List[Currency] = [
    Currency("EUR", "€", "Euro", "BTCEUR", "XBTEUR", "BTC-EUR"),
    Currency("USD", "$", "US Dollar", "BTCUSDT", "XBTUSD", "BTC-USD"),
    Currency("GBP", "£", "British Pound", "BTCGBP", "XBTGBP", "BTC-GBP"),
    Currency("USDT", "₮", "Tether", "BTCUSDT", "XBTUSDT", "BTC-USDT"),
    Currency("USDC", "USDC", "USD Coin", "BTCUSDC", "XBTUSDC", "BTC-USDC"),
    Currency("BUSD", "BUSD", "Binance USD", "BTCBUSD", None, None),
    Currency("AUD", "A$", "Australian Dollar", "BTCAUD", "XBTAUD", "BTC-AUD"),
    Currency("BRL", "R$", "Brazilian Real", "BTCBRL", None, None),
    Currency("TRY", "₺", "Turkish Lira", "BTCTRY", None, None),
    Currency("TUSD", "TUSD", "TrueUSD", "BTCTUSD", None, None),
    Currency("CAD", "C$", "Canadian Dollar", None, "XBTCAD", "BTC-CAD"),
    Currency("CHF", "CHF", "Swiss Franc", None, "XBTCHF", "BTC-CHF"),
    Currency("JPY", "¥", "Japanese Yen", None, "XBTJPY", None),
]

_BY_CODE: Dict[str, Currency] = {c.code: c for c in SUPPORTED_CURRENCIES}


def get_currency(code: str) -> Optional[Currency]:
    return _BY_CODE.get((code or "").upper())


def pair_for(exchange_id: ExchangeId, currency_code: str) -> str:
    """
    Resolve the BTC trading pair for a currency on an exchange.

    Raises:
        UnsupportedCurrency: If the exchange does not list the currency
    """
    currency = get_currency(currency_code)
    pair = None
    if currency is not None:
        if exchange_id == ExchangeId.BINANCE:
            pair = currency.binance_pair
        elif exchange_id == ExchangeId.KRAKEN:
            pair = currency.kraken_pair
        else:
            pair = currency.coinbase_pair

    if pair is None:
        raise UnsupportedCurrency(
            f"Currency {currency_code} is not supported on {exchange_id.value}",
            exchange_id=exchange_id.value,
        )
    return pair


def currencies_for_exchange(exchange_id: ExchangeId) -> List[Currency]:
    """Currencies with a BTC pair on the given exchange."""
    if exchange_id == ExchangeId.BINANCE:
        return [c for c in SUPPORTED_CURRENCIES if c.binance_pair]
    if exchange_id == ExchangeId.KRAKEN:
        return [c for c in SUPPORTED_CURRENCIES if c.kraken_pair]
    return [c for c in SUPPORTED_CURRENCIES if c.coinbase_pair]


def format_amount(amount, currency_code: str = DEFAULT_CURRENCY) -> str:
    """Format like ``€100.00 EUR``."""
    currency = get_currency(currency_code)
    symbol = currency.symbol if currency else currency_code
    return f"{symbol}{float(amount):.2f} {currency_code}"
