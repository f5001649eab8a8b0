"""
Order Sizing Tests.

============================================================
PURPOSE
============================================================
Quantity rounding, minimum notional checks and execution
reduction.

============================================================
"""

from decimal import Decimal

import pytest

from dca_execution.errors import SizingRejected
from dca_execution.sizing import (
    OrderSizer,
    build_trade_result,
    precision_digits,
    reduce_execution,
    to_decimal,
)
from dca_execution.types import ExchangeId, Fill, FillBased, OrderLevelOnly


@pytest.fixture
def sizer():
    return OrderSizer(ExchangeId.BINANCE, "Binance")


class TestPrecisionDigits:
    """Tests for step size -> decimals."""

    @pytest.mark.parametrize("step,digits", [
        ("0.00001000", 5),
        ("0.00000001", 8),
        ("0.1", 1),
        ("1", 0),
        (Decimal("0.01"), 2),
    ])
    def test_digits(self, step, digits):
        assert precision_digits(step) == digits

    def test_non_positive_step_raises(self):
        with pytest.raises(ValueError):
            precision_digits("0")


class TestOrderSizer:
    """Tests for base-quantity sizing."""

    def test_typical_order(self, sizer):
        spec = sizer.size(35, 58000, "0.00001", 5, "EUR")

        assert spec.computed_quantity == Decimal("0.00060")
        assert spec.precision_digits == 5
        assert spec.formatted_quantity() == "0.00060"
        assert spec.notional <= Decimal("35")
        assert spec.min_notional == Decimal("5")

    def test_rejects_below_minimum_before_rounding(self, sizer):
        with pytest.raises(SizingRejected) as exc_info:
            sizer.size(4, 58000, "0.00001", 5, "EUR")

        error = exc_info.value
        assert error.stage == "pre_rounding"
        assert "below Binance minimum of 5 EUR" in error.user_message

    def test_rejects_below_minimum_after_rounding(self, sizer):
        # 5 / 58000 = 0.0000862 -> 0.00008 -> 4.64 EUR
        with pytest.raises(SizingRejected) as exc_info:
            sizer.size(5, 58000, "0.00001", 5, "EUR")

        assert exc_info.value.stage == "post_rounding"
        assert "after rounding" in exc_info.value.user_message

    def test_rejects_zero_quantity(self, sizer):
        with pytest.raises(SizingRejected):
            sizer.size(6, 100000, "0.0001", 0, "EUR")

    @pytest.mark.parametrize("fiat,price,step", [
        ("35", "58000", "0.00001"),
        ("100", "43127.99", "0.00001"),
        ("250.50", "61234.5", "0.000001"),
        ("12.34", "99999.99", "0.00000001"),
        ("1000", "3.3333", "0.01"),
    ])
    def test_never_overspends(self, sizer, fiat, price, step):
        spec = sizer.size(fiat, price, step, 1, "EUR")
        assert spec.computed_quantity * Decimal(price) <= Decimal(fiat)

    def test_rounds_down(self, sizer):
        spec = sizer.size("100", "30000", "0.001", 5, "EUR")
        # 100 / 30000 = 0.003333...
        assert spec.computed_quantity == Decimal("0.003")

    def test_rejects_non_positive_amount(self, sizer):
        with pytest.raises(SizingRejected):
            sizer.size(0, 58000, "0.00001", 0, "EUR")

    def test_rejects_non_positive_price(self, sizer):
        with pytest.raises(SizingRejected):
            sizer.size(35, 0, "0.00001", 5, "EUR")

    def test_float_input_has_no_binary_artefacts(self):
        assert to_decimal(0.1) == Decimal("0.1")


class TestQuoteSizing:
    """Tests for quote-denominated sizing."""

    def test_floors_to_increment(self, sizer):
        spec = sizer.size_quote("10.007", "0.01", "1", "EUR", current_price="50000")

        assert spec.quote_size == Decimal("10.00")
        assert spec.computed_quantity == Decimal("10.00") / Decimal("50000")

    def test_rejects_below_minimum(self, sizer):
        with pytest.raises(SizingRejected) as exc_info:
            sizer.size_quote("0.5", "0.01", "1", "EUR")
        assert exc_info.value.stage == "pre_rounding"

    def test_rejects_after_rounding(self, sizer):
        with pytest.raises(SizingRejected) as exc_info:
            sizer.size_quote("1.009", "0.01", "1.009", "EUR")
        assert exc_info.value.stage == "post_rounding"


class TestReduceExecution:
    """Tests for execution reduction."""

    def test_fills_with_base_commission(self):
        detail = FillBased([
            Fill(Decimal("58000"), Decimal("0.0003"), Decimal("0.0000003"), "BTC"),
            Fill(Decimal("58010"), Decimal("0.0003"), Decimal("0.0000003"), "BTC"),
        ])

        summary = reduce_execution(detail, "BTC", "EUR")

        assert summary.total_base == Decimal("0.0006")
        assert summary.total_quote == Decimal("34.803")
        assert summary.net_base == Decimal("0.0005994")
        assert summary.avg_price == Decimal("58005")
        assert summary.fee_in_base == Decimal("0.0000006")
        assert summary.quote_spent == Decimal("34.803")

    def test_fills_with_quote_commission(self):
        detail = FillBased([
            Fill(Decimal("50000"), Decimal("0.001"), Decimal("0.13"), "EUR"),
        ])

        summary = reduce_execution(detail, "BTC", "EUR")

        assert summary.net_base == Decimal("0.001")
        assert summary.fee_in_quote == Decimal("0.13")
        assert summary.quote_spent == Decimal("50.13")
        assert summary.fee_in_base == Decimal("0.13") / Decimal("50000")

    def test_third_asset_commission_ignored(self):
        detail = FillBased([
            Fill(Decimal("50000"), Decimal("0.001"), Decimal("0.0001"), "BNB"),
        ])

        summary = reduce_execution(detail, "BTC", "EUR")

        assert summary.net_base == Decimal("0.001")
        assert summary.fee_base == 0
        assert summary.fee_quote == 0

    def test_commission_without_asset_is_base(self):
        detail = FillBased([Fill(Decimal("50000"), Decimal("0.001"), Decimal("0.000001"))])
        assert reduce_execution(detail).net_base == Decimal("0.000999")

    def test_order_level_only(self):
        detail = OrderLevelOnly(Decimal("0.0006"), Decimal("34.8"), fee_quote=Decimal("0.09"))

        summary = reduce_execution(detail, "BTC", "EUR")

        assert summary.net_base == Decimal("0.0006")
        assert summary.avg_price == Decimal("58000")
        assert summary.quote_spent == Decimal("34.89")

    def test_empty_fills(self):
        summary = reduce_execution(FillBased([]), "BTC", "EUR")
        assert summary.avg_price == 0
        assert summary.net_base == 0

    def test_build_trade_result(self):
        fills = [Fill(Decimal("50000"), Decimal("0.001"), Decimal("0.000001"), "BTC")]
        summary = reduce_execution(FillBased(fills), "BTC", "EUR")

        result = build_trade_result(123, summary, "EUR", "2024-01-01T00:00:00.000Z", fills)

        assert result.order_id == "123"
        assert result.btc_amount == Decimal("0.000999")
        assert result.fiat_spent == Decimal("50")
        assert result.trading_fee == Decimal("0.05")
        assert result.trading_fee_btc == Decimal("0.000001")
        assert result.to_dict()["btc_amount"] == "0.000999"
