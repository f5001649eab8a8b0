"""
DCA Execution - Types.

============================================================
PURPOSE
============================================================
All type definitions shared by the signing layer, the exchange
adapters, the order sizer and the facade.

CRITICAL PRINCIPLE:
    "Every adapter speaks the same result contract."
    "btc_amount is always net of trading fees."

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union


T = TypeVar("T")


# ============================================================
# EXCHANGE IDENTIFIERS
# ============================================================

class ExchangeId(Enum):
    """Supported exchange identifiers."""

    BINANCE = "binance"
    KRAKEN = "kraken"
    COINBASE_ADVANCED = "coinbase_advanced"
    COINBASE = "coinbase"
    """Coinbase retail, OAuth based."""

    @classmethod
    def parse(cls, value: Union[str, "ExchangeId"]) -> "ExchangeId":
        """
        Resolve an exchange identifier.

        Args:
            value: Identifier string or enum member

        Returns:
            ExchangeId

        Raises:
            ValueError: If the identifier is not a supported exchange
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported exchange: {value}") from None


class OrderSide(Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"


# ============================================================
# ACCOUNT TYPES
# ============================================================

@dataclass
class Balance:
    """Balance for a single asset."""

    asset: str
    free: Decimal = Decimal("0")
    locked: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.free + self.locked

    @property
    def is_empty(self) -> bool:
        return self.free == 0 and self.locked == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "free": str(self.free),
            "locked": str(self.locked),
        }


@dataclass
class OAuthTokenPair:
    """
    Coinbase retail OAuth tokens.

    A token inside the refresh skew window is treated as already
    expired so the refresh happens before the call, not after a 401.
    """

    access_token: str
    refresh_token: Optional[str] = None
    expiry_epoch_ms: Optional[int] = None

    def is_expired(self, now_ms: int, skew_seconds: int = 60) -> bool:
        """Check expiry against now, including the skew window."""
        if self.expiry_epoch_ms is None:
            return False
        return now_ms >= self.expiry_epoch_ms - skew_seconds * 1000


# ============================================================
# ORDER TYPES
# ============================================================

@dataclass
class OrderSpec:
    """Sized market buy, built fresh for every trade."""

    exchange_id: ExchangeId
    fiat_amount: Decimal
    currency: str
    computed_quantity: Decimal
    precision_digits: int
    min_notional: Decimal
    price: Decimal
    side: OrderSide = OrderSide.BUY
    quote_size: Optional[Decimal] = None
    """Fiat amount sent on the wire by venues that size market buys in quote."""

    @property
    def notional(self) -> Decimal:
        return self.computed_quantity * self.price

    def formatted_quantity(self) -> str:
        """Quantity as the exchange expects it on the wire."""
        return f"{self.computed_quantity:.{self.precision_digits}f}"


@dataclass
class Fill:
    """A single execution against the book."""

    price: Decimal
    qty: Decimal
    commission: Decimal = Decimal("0")
    commission_asset: Optional[str] = None
    trade_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": str(self.price),
            "qty": str(self.qty),
            "commission": str(self.commission),
            "commission_asset": self.commission_asset,
            "trade_id": self.trade_id,
        }


@dataclass
class FillBased:
    """Execution detail reported fill by fill."""

    fills: List[Fill]


@dataclass
class OrderLevelOnly:
    """
    Execution detail reported only at order level.

    Degraded precision: used when the venue returns no fills.
    """

    executed_qty: Decimal
    quote_qty: Decimal
    fee_quote: Decimal = Decimal("0")
    fee_base: Decimal = Decimal("0")


ExecutionDetail = Union[FillBased, OrderLevelOnly]


@dataclass
class ExecutionSummary:
    """Totals reduced from an ExecutionDetail."""

    total_base: Decimal
    total_quote: Decimal
    fee_base: Decimal = Decimal("0")
    fee_quote: Decimal = Decimal("0")

    @property
    def net_base(self) -> Decimal:
        return self.total_base - self.fee_base

    @property
    def avg_price(self) -> Decimal:
        if self.total_base == 0:
            return Decimal("0")
        return self.total_quote / self.total_base

    @property
    def fee_in_quote(self) -> Decimal:
        """Total trading fee expressed in the quote currency."""
        return self.fee_quote + self.fee_base * self.avg_price

    @property
    def fee_in_base(self) -> Decimal:
        """Total trading fee expressed in BTC."""
        avg = self.avg_price
        if avg == 0:
            return self.fee_base
        return self.fee_base + self.fee_quote / avg

    @property
    def quote_spent(self) -> Decimal:
        """Gross fiat outlay, quote-denominated fees included."""
        return self.total_quote + self.fee_quote


# ============================================================
# RESULTS
# ============================================================

@dataclass
class TradeResult:
    """
    Unified market buy result.

    Every adapter populates every field.
    """

    order_id: str
    btc_amount: Decimal
    """BTC credited to the account, net of trading fees."""

    fiat_spent: Decimal
    currency: str
    avg_price: Decimal
    trading_fee: Decimal
    """Trading fee in fiat."""

    trading_fee_btc: Decimal
    timestamp: str
    """ISO-8601 execution time."""

    fills: List[Fill] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "btc_amount": str(self.btc_amount),
            "fiat_spent": str(self.fiat_spent),
            "currency": self.currency,
            "avg_price": str(self.avg_price),
            "trading_fee": str(self.trading_fee),
            "trading_fee_btc": str(self.trading_fee_btc),
            "timestamp": self.timestamp,
            "fills": [f.to_dict() for f in self.fills],
        }


@dataclass
class WithdrawalResult:
    """Result of a withdrawal request."""

    success: bool
    provider_tx_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "provider_tx_id": self.provider_tx_id,
            "error": self.error,
        }


@dataclass
class OperationResult(Generic[T]):
    """
    Result envelope returned by every adapter and facade operation.

    Expected failures never raise; they come back here with a
    user-presentable message.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: T = None) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_code: Optional[str] = None) -> "OperationResult[T]":
        return cls(success=False, error=error, error_code=error_code)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.success:
            data = self.data
            if isinstance(data, list):
                data = [_serialize(d) for d in data]
            else:
                data = _serialize(data)
            result["data"] = data
        else:
            result["error"] = self.error
            if self.error_code:
                result["error_code"] = self.error_code
        return result


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Decimal):
        return str(value)
    return value


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_ms_to_iso(epoch_ms: int) -> str:
    """Convert epoch milliseconds to ISO-8601 UTC."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
