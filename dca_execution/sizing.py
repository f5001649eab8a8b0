"""
DCA Execution - Order Sizing.

============================================================
PURPOSE
============================================================
Turns a fiat amount into a valid market buy quantity, and
reduces venue execution reports into one summary.

SIZING RULES:
1. precision = round(abs(log10(step_size)))
2. quantity = floor(fiat / price, precision)  (always down)
3. Reject if fiat < min_notional (before rounding)
4. Reject if quantity * price < min_notional (after rounding)

Overspending the configured DCA amount is worse than
under-buying by a fraction of a cent, so rounding never goes up.

============================================================
"""

import logging
from decimal import Decimal, ROUND_DOWN, ROUND_FLOOR
from typing import Iterable, List, Optional, Union

from .errors import SizingRejected
from .types import (
    ExchangeId,
    ExecutionDetail,
    ExecutionSummary,
    Fill,
    FillBased,
    OrderLevelOnly,
    OrderSpec,
    TradeResult,
)


logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def precision_digits(step_size: Number) -> int:
    """
    Number of decimals implied by a step size.

    Args:
        step_size: Quantity granularity, e.g. ``0.00001000``

    Returns:
        Decimal places, e.g. 5
    """
    step = to_decimal(step_size)
    if step <= 0:
        raise ValueError(f"Step size must be positive: {step_size}")
    return int(round(abs(step.log10())))


# ============================================================
# ORDER SIZER
# ============================================================

class OrderSizer:
    """
    Computes order quantities from fiat amounts.

    Both minimum checks are independent and run in order, before
    any order call is made.
    """

    def __init__(self, exchange_id: ExchangeId, exchange_name: str):
        self._exchange_id = exchange_id
        self._exchange_name = exchange_name

    def size(
        self,
        fiat_amount: Number,
        current_price: Number,
        step_size: Number,
        min_notional: Number,
        currency: str,
    ) -> OrderSpec:
        """
        Size a base-quantity market buy.

        Args:
            fiat_amount: Amount to spend
            current_price: Current BTC price in the quote currency
            step_size: Exchange lot step
            min_notional: Minimum order value
            currency: Quote currency code

        Returns:
            OrderSpec

        Raises:
            SizingRejected: If the order is below the minimum notional
        """
        fiat = to_decimal(fiat_amount)
        price = to_decimal(current_price)
        minimum = to_decimal(min_notional)

        self._check_inputs(fiat, price, currency)

        if fiat < minimum:
            raise SizingRejected(
                f"Order value {fiat} {currency} is below {self._exchange_name} minimum "
                f"of {minimum} {currency}. Please increase your DCA amount.",
                stage="pre_rounding",
                order_value=fiat,
                min_notional=minimum,
                exchange_id=self._exchange_id.value,
            )

        digits = precision_digits(step_size)
        quantum = Decimal(1).scaleb(-digits)
        quantity = (fiat / price).quantize(quantum, rounding=ROUND_DOWN)

        # Division is itself rounded to the context precision
        while quantity > 0 and quantity * price > fiat:
            quantity -= quantum

        order_value = quantity * price
        if quantity <= 0 or order_value < minimum:
            raise SizingRejected(
                f"Order value {order_value:.2f} {currency} is below {self._exchange_name} "
                f"minimum of {minimum} {currency} after rounding. "
                "Please increase your DCA amount slightly.",
                stage="post_rounding",
                order_value=order_value,
                min_notional=minimum,
                exchange_id=self._exchange_id.value,
            )

        logger.debug(
            f"Sized {self._exchange_id.value} buy: {fiat} {currency} @ {price} "
            f"-> {quantity} ({digits} dp)"
        )

        return OrderSpec(
            exchange_id=self._exchange_id,
            fiat_amount=fiat,
            currency=currency,
            computed_quantity=quantity,
            precision_digits=digits,
            min_notional=minimum,
            price=price,
        )

    def size_quote(
        self,
        fiat_amount: Number,
        quote_increment: Number,
        min_notional: Number,
        currency: str,
        current_price: Optional[Number] = None,
    ) -> OrderSpec:
        """
        Size a quote-denominated market buy.

        The fiat amount is floored to the quote increment and
        checked against the minimum before and after rounding.

        Args:
            fiat_amount: Amount to spend
            quote_increment: Smallest quote step the venue accepts
            min_notional: Minimum order value
            currency: Quote currency code
            current_price: Optional price for the quantity estimate

        Returns:
            OrderSpec with quote_size set
        """
        fiat = to_decimal(fiat_amount)
        minimum = to_decimal(min_notional)
        price = to_decimal(current_price) if current_price is not None else None

        self._check_inputs(fiat, price, currency)

        if fiat < minimum:
            raise SizingRejected(
                f"Order value {fiat} {currency} is below {self._exchange_name} minimum "
                f"of {minimum} {currency}. Please increase your DCA amount.",
                stage="pre_rounding",
                order_value=fiat,
                min_notional=minimum,
                exchange_id=self._exchange_id.value,
            )

        increment = to_decimal(quote_increment)
        digits = precision_digits(increment)
        quote_size = (fiat / increment).to_integral_value(rounding=ROUND_FLOOR) * increment
        quote_size = quote_size.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_DOWN)

        if quote_size <= 0 or quote_size < minimum:
            raise SizingRejected(
                f"Order value {quote_size} {currency} is below {self._exchange_name} "
                f"minimum of {minimum} {currency} after rounding. "
                "Please increase your DCA amount slightly.",
                stage="post_rounding",
                order_value=quote_size,
                min_notional=minimum,
                exchange_id=self._exchange_id.value,
            )

        quantity = quote_size / price if price else Decimal("0")

        return OrderSpec(
            exchange_id=self._exchange_id,
            fiat_amount=fiat,
            currency=currency,
            computed_quantity=quantity,
            precision_digits=digits,
            min_notional=minimum,
            price=price or Decimal("0"),
            quote_size=quote_size,
        )

    def _check_inputs(self, fiat: Decimal, price: Optional[Decimal], currency: str) -> None:
        if fiat <= 0:
            raise SizingRejected(
                f"DCA amount must be positive, got {fiat} {currency}",
                stage="pre_rounding",
                order_value=fiat,
                exchange_id=self._exchange_id.value,
            )
        if price is not None and price <= 0:
            raise SizingRejected(
                f"{self._exchange_name} returned an invalid price: {price}",
                stage="pre_rounding",
                exchange_id=self._exchange_id.value,
            )


# ============================================================
# EXECUTION REDUCTION
# ============================================================

def reduce_execution(
    detail: ExecutionDetail,
    base_asset: str = "BTC",
    quote_asset: Optional[str] = None,
) -> ExecutionSummary:
    """
    Reduce an execution report to totals.

    Fill-based reports are summed fill by fill. Commissions in the
    base asset reduce the BTC received; commissions in the quote
    asset add to the fiat outlay. A commission without an asset is
    taken as base. Commissions in any other asset (e.g. BNB) are
    paid from elsewhere and only logged.

    Args:
        detail: FillBased or OrderLevelOnly
        base_asset: Base asset code
        quote_asset: Quote asset code

    Returns:
        ExecutionSummary
    """
    if isinstance(detail, OrderLevelOnly):
        return ExecutionSummary(
            total_base=detail.executed_qty,
            total_quote=detail.quote_qty,
            fee_base=detail.fee_base,
            fee_quote=detail.fee_quote,
        )

    if not isinstance(detail, FillBased):
        raise TypeError(f"Unknown execution detail: {type(detail).__name__}")

    summary = ExecutionSummary(total_base=Decimal("0"), total_quote=Decimal("0"))
    for fill in detail.fills:
        summary.total_base += fill.qty
        summary.total_quote += fill.price * fill.qty

        asset = fill.commission_asset
        if asset is None or asset == base_asset:
            summary.fee_base += fill.commission
        elif quote_asset is not None and asset == quote_asset:
            summary.fee_quote += fill.commission
        elif fill.commission:
            logger.info(
                f"Commission of {fill.commission} {asset} paid outside the "
                f"{base_asset}/{quote_asset} pair"
            )

    return summary


def build_trade_result(
    order_id: str,
    summary: ExecutionSummary,
    currency: str,
    timestamp: str,
    fills: Optional[Iterable[Fill]] = None,
) -> TradeResult:
    """Build the unified TradeResult from an execution summary."""
    fill_list: List[Fill] = list(fills or [])
    return TradeResult(
        order_id=str(order_id),
        btc_amount=summary.net_base,
        fiat_spent=summary.quote_spent,
        currency=currency,
        avg_price=summary.avg_price,
        trading_fee=summary.fee_in_quote,
        trading_fee_btc=summary.fee_in_base,
        timestamp=timestamp,
        fills=fill_list,
    )
