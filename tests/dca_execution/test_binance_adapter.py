"""
Binance Adapter Tests.

============================================================
PURPOSE
============================================================
Signed request construction, market buy sizing and reduction,
withdrawals, and error surfacing against a scripted transport.

============================================================
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from dca_execution.adapters.binance import BinanceAdapter
from dca_execution.credentials import API_KEY, API_SECRET
from dca_execution.errors import TransportError
from dca_execution.signing import hmac_sha256_query
from dca_execution.types import ExchangeId


SECRET = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"

EXCHANGE_INFO = {
    "symbols": [
        {
            "symbol": "BTCEUR",
            "filters": [
                {"filterType": "PRICE_FILTER", "tickSize": "0.01000000"},
                {"filterType": "LOT_SIZE", "stepSize": "0.00001000", "minQty": "0.00001000"},
                {"filterType": "NOTIONAL", "minNotional": "5.00000000"},
            ],
        }
    ]
}

ORDER_FULL = {
    "symbol": "BTCEUR",
    "orderId": 28457,
    "transactTime": 1700000000000,
    "executedQty": "0.00060000",
    "cummulativeQuoteQty": "34.80300000",
    "fills": [
        {"price": "58000.00", "qty": "0.00030000", "commission": "0.00000030",
         "commissionAsset": "BTC", "tradeId": 101},
        {"price": "58010.00", "qty": "0.00030000", "commission": "0.00000030",
         "commissionAsset": "BTC", "tradeId": 102},
    ],
}


@pytest_asyncio.fixture
async def adapter(store, transport, config):
    await store.write(ExchangeId.BINANCE, API_KEY, "binance-api-key")
    await store.write(ExchangeId.BINANCE, API_SECRET, SECRET)
    return BinanceAdapter(store, transport, config)


def script_buy(transport, order=ORDER_FULL, price="58000.00"):
    transport.add("GET", "/api/v3/ticker/price", {"symbol": "BTCEUR", "price": price})
    transport.add("GET", "/api/v3/exchangeInfo", EXCHANGE_INFO)
    transport.add("POST", "/api/v3/order", order)


# ============================================================
# SIGNING
# ============================================================

class TestBinanceSigning:
    """Tests for signed request construction."""

    @pytest.mark.asyncio
    async def test_signature_covers_query(self, adapter, transport):
        transport.add("GET", "/api/v3/account", {"balances": []})

        await adapter.get_account_balances()

        request = transport.calls("GET", "/api/v3/account")[0]
        signed_part, signature = request.raw_query.split("&signature=")
        assert hmac_sha256_query(SECRET, signed_part) == signature
        assert request.query["recvWindow"] == "60000"
        assert request.query["timestamp"].isdigit()
        assert request.headers["X-MBX-APIKEY"] == "binance-api-key"

    @pytest.mark.asyncio
    async def test_signature_is_last_parameter(self, adapter, transport):
        transport.add("GET", "/api/v3/account", {"balances": []})

        await adapter.get_account_balances()

        request = transport.requests[0]
        assert request.raw_query.rsplit("&", 1)[1].startswith("signature=")
        assert request.data is None

    @pytest.mark.asyncio
    async def test_missing_keys(self, store, transport, config):
        adapter = BinanceAdapter(store, transport, config)

        result = await adapter.get_account_balances()

        assert not result.success
        assert result.error == "Binance API keys not found. Please configure them first."
        assert result.error_code == "CREDENTIALS_MISSING"
        assert transport.requests == []


# ============================================================
# BALANCES
# ============================================================

class TestBinanceBalances:
    """Tests for balance retrieval."""

    @pytest.mark.asyncio
    async def test_drops_empty_assets(self, adapter, transport):
        transport.add("GET", "/api/v3/account", {
            "balances": [
                {"asset": "BTC", "free": "0.01000000", "locked": "0.00000000"},
                {"asset": "LTC", "free": "0.00000000", "locked": "0.00000000"},
                {"asset": "EUR", "free": "0.00000000", "locked": "12.50000000"},
            ]
        })

        result = await adapter.get_account_balances()

        assert result.success
        assert [b.asset for b in result.data] == ["BTC", "EUR"]
        assert result.data[0].free == Decimal("0.01")
        assert result.data[1].locked == Decimal("12.5")


# ============================================================
# MARKET BUY
# ============================================================

class TestBinanceMarketBuy:
    """Tests for the market buy flow."""

    @pytest.mark.asyncio
    async def test_places_rounded_quantity(self, adapter, transport):
        script_buy(transport)

        result = await adapter.execute_market_buy(35, currency="EUR")

        assert result.success, result.error
        order = transport.calls("POST", "/api/v3/order")[0]
        assert order.query["symbol"] == "BTCEUR"
        assert order.query["side"] == "BUY"
        assert order.query["type"] == "MARKET"
        assert order.query["quantity"] == "0.00060"
        assert order.query["newOrderRespType"] == "FULL"

    @pytest.mark.asyncio
    async def test_reduces_fills(self, adapter, transport):
        script_buy(transport)

        result = await adapter.execute_market_buy(35, currency="EUR")
        trade = result.data

        assert trade.order_id == "28457"
        assert trade.btc_amount == Decimal("0.0005994")
        assert trade.fiat_spent == Decimal("34.803")
        assert trade.avg_price == Decimal("58005")
        assert trade.trading_fee_btc == Decimal("0.0000006")
        assert trade.currency == "EUR"
        assert trade.timestamp == "2023-11-14T22:13:20.000Z"
        assert len(trade.fills) == 2

    @pytest.mark.asyncio
    async def test_order_level_fallback(self, adapter, transport):
        order = dict(ORDER_FULL)
        order["fills"] = []
        script_buy(transport, order=order)

        result = await adapter.execute_market_buy(35, currency="EUR")

        assert result.success
        assert result.data.btc_amount == Decimal("0.0006")
        assert result.data.fiat_spent == Decimal("34.803")

    @pytest.mark.asyncio
    async def test_usd_uses_usdt_pair(self, adapter, transport):
        info = {"symbols": [dict(EXCHANGE_INFO["symbols"][0], symbol="BTCUSDT")]}
        transport.add("GET", "/api/v3/ticker/price", {"symbol": "BTCUSDT", "price": "60000"})
        transport.add("GET", "/api/v3/exchangeInfo", info)
        transport.add("POST", "/api/v3/order", {
            "orderId": 1,
            "fills": [{"price": "60000", "qty": "0.001", "commission": "0.06",
                       "commissionAsset": "USDT"}],
        })

        result = await adapter.execute_market_buy(60, currency="USD")

        assert result.success, result.error
        assert transport.requests[0].query["symbol"] == "BTCUSDT"
        assert result.data.btc_amount == Decimal("0.001")
        assert result.data.trading_fee == Decimal("0.06")
        assert result.data.currency == "USD"

    @pytest.mark.asyncio
    async def test_below_minimum_places_no_order(self, adapter, transport):
        script_buy(transport)

        result = await adapter.execute_market_buy(4, currency="EUR")

        assert not result.success
        assert result.error_code == "SIZING"
        assert "below Binance minimum of 5.00000000 EUR" in result.error
        assert transport.calls("POST", "/api/v3/order") == []

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, adapter, transport):
        result = await adapter.execute_market_buy(50, currency="JPY")

        assert not result.success
        assert result.error_code == "UNSUPPORTED"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_business_error_passes_message_through(self, adapter, transport):
        transport.add("GET", "/api/v3/ticker/price", {"symbol": "BTCEUR", "price": "58000"})
        transport.add("GET", "/api/v3/exchangeInfo", EXCHANGE_INFO)
        transport.add("POST", "/api/v3/order", {
            "code": -2010,
            "msg": "Account has insufficient balance for requested action.",
        }, status=400)

        result = await adapter.execute_market_buy(35, currency="EUR")

        assert not result.success
        assert result.error == "Account has insufficient balance for requested action."
        assert result.error_code == "INSUFFICIENT_FUNDS"

    @pytest.mark.asyncio
    async def test_html_error_page_gives_generic_message(self, adapter, transport):
        transport.add_html("GET", "/api/v3/ticker/price")

        result = await adapter.execute_market_buy(35, currency="EUR")

        assert not result.success
        assert result.error == (
            "Binance API is temporarily unavailable. Please try again in a few minutes."
        )
        assert "<html>" not in result.error
        assert result.error_code == "NETWORK"

    @pytest.mark.asyncio
    async def test_unknown_symbol(self, adapter, transport):
        transport.add("GET", "/api/v3/ticker/price", {"symbol": "BTCEUR", "price": "58000"})
        transport.add("GET", "/api/v3/exchangeInfo", {"symbols": []})

        result = await adapter.execute_market_buy(35, currency="EUR")

        assert not result.success
        assert result.error_code == "SYMBOL_NOT_FOUND"


# ============================================================
# WITHDRAWALS
# ============================================================

class TestBinanceWithdrawal:
    """Tests for withdrawals and fee lookup."""

    @pytest.mark.asyncio
    async def test_withdrawal_params(self, adapter, transport):
        transport.add("POST", "/sapi/v1/capital/withdraw/apply", {"id": "7213fea8e94b4a5593d507237e5a555b"})

        result = await adapter.execute_withdrawal("bc1qexampleaddress", "0.0015", network="BTC")

        assert result.success
        assert result.data.provider_tx_id == "7213fea8e94b4a5593d507237e5a555b"
        request = transport.requests[0]
        assert request.query["coin"] == "BTC"
        assert request.query["network"] == "BTC"
        assert request.query["address"] == "bc1qexampleaddress"
        assert request.query["amount"] == "0.0015"

    @pytest.mark.asyncio
    async def test_withdrawal_rejects_empty_destination(self, adapter, transport):
        result = await adapter.execute_withdrawal("  ", "0.001")

        assert not result.success
        assert result.error_code == "INVALID_ORDER"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_withdrawal_fee(self, adapter, transport):
        transport.add("GET", "/sapi/v1/capital/config/getall", [
            {"coin": "ETH", "networkList": [{"network": "ETH", "withdrawFee": "0.001"}]},
            {"coin": "BTC", "networkList": [
                {"network": "BNB", "withdrawFee": "0.0000061"},
                {"network": "BTC", "withdrawFee": "0.0002"},
            ]},
        ])

        assert await adapter.get_withdrawal_fee() == Decimal("0.0002")

    @pytest.mark.asyncio
    async def test_withdrawal_fee_fallback(self, adapter, transport):
        transport.add_error(
            "GET", "/sapi/v1/capital/config/getall", TransportError("connection reset")
        )

        assert await adapter.get_withdrawal_fee() == Decimal("0.0005")
