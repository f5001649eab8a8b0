"""
Coinbase Adapter Tests.

============================================================
PURPOSE
============================================================
Coinbase Advanced (CDP key, per-request JWT) and Coinbase
retail (OAuth bearer token) against a scripted transport.

============================================================
"""

import base64
import json
import time
from decimal import Decimal

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)

from dca_execution.adapters.coinbase import CoinbaseAdapter
from dca_execution.adapters.coinbase_advanced import CoinbaseAdvancedAdapter
from dca_execution.credentials import (
    API_KEY,
    API_SECRET,
    OAUTH_ACCESS_TOKEN,
    OAUTH_REFRESH_TOKEN,
    OAUTH_TOKEN_EXPIRY,
)
from dca_execution.types import ExchangeId


KEY_NAME = "organizations/org-1/apiKeys/key-1"
BROKERAGE = "/api/v3/brokerage"


def jwt_payload(authorization: str) -> dict:
    token = authorization.split(" ", 1)[1]
    segment = token.split(".")[1]
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


@pytest_asyncio.fixture
async def advanced(store, transport, config):
    pem = ec.generate_private_key(ec.SECP256R1()).private_bytes(
        Encoding.PEM, PrivateFormat.TraditionalOpenSSL, NoEncryption()
    ).decode()
    await store.write(ExchangeId.COINBASE_ADVANCED, API_KEY, KEY_NAME)
    await store.write(ExchangeId.COINBASE_ADVANCED, API_SECRET, pem)
    return CoinbaseAdvancedAdapter(store, transport, config)


@pytest_asyncio.fixture
async def retail(store, transport, config):
    expiry = int(time.time() * 1000) + 3_600_000
    await store.write(ExchangeId.COINBASE, OAUTH_ACCESS_TOKEN, "access-1")
    await store.write(ExchangeId.COINBASE, OAUTH_REFRESH_TOKEN, "refresh-1")
    await store.write(ExchangeId.COINBASE, OAUTH_TOKEN_EXPIRY, str(expiry))
    return CoinbaseAdapter(store, transport, config)


def advanced_accounts(transport):
    transport.add("GET", f"{BROKERAGE}/accounts", {
        "accounts": [
            {"uuid": "a-btc", "currency": "BTC",
             "available_balance": {"value": "0.01", "currency": "BTC"},
             "hold": {"value": "0", "currency": "BTC"}},
        ],
        "has_next": True,
        "cursor": "page-2",
    })
    transport.add("GET", f"{BROKERAGE}/accounts", {
        "accounts": [
            {"uuid": "a-eur", "currency": "EUR",
             "available_balance": {"value": "25.5", "currency": "EUR"},
             "hold": {"value": "4.5", "currency": "EUR"}},
            {"uuid": "a-eth", "currency": "ETH",
             "available_balance": {"value": "0", "currency": "ETH"},
             "hold": {"value": "0", "currency": "ETH"}},
        ],
        "has_next": False,
        "cursor": "",
    })


def retail_accounts(transport):
    transport.add("GET", "/v2/accounts", {
        "data": [
            {"id": "acc-btc", "currency": {"code": "BTC"}, "balance": {"amount": "0.02", "currency": "BTC"}},
            {"id": "acc-eur", "currency": {"code": "EUR"}, "balance": {"amount": "100.00", "currency": "EUR"}},
        ],
        "pagination": {"next_uri": None},
    })


# ============================================================
# COINBASE ADVANCED
# ============================================================

class TestCoinbaseAdvancedAuth:
    """Tests for per-request JWTs."""

    @pytest.mark.asyncio
    async def test_bearer_jwt_per_request(self, advanced, transport):
        advanced_accounts(transport)

        await advanced.get_account_balances()

        first, second = transport.requests
        assert first.headers["Authorization"] != second.headers["Authorization"]
        payload = jwt_payload(first.headers["Authorization"])
        assert payload["sub"] == KEY_NAME
        assert payload["uris"] == ["GET api.coinbase.com/api/v3/brokerage/accounts"]

    @pytest.mark.asyncio
    async def test_malformed_key(self, store, transport, config):
        await store.write(ExchangeId.COINBASE_ADVANCED, API_KEY, KEY_NAME)
        await store.write(ExchangeId.COINBASE_ADVANCED, API_SECRET, "not a pem")
        adapter = CoinbaseAdvancedAdapter(store, transport, config)

        result = await adapter.get_account_balances()

        assert not result.success
        assert result.error_code == "SIGNING"
        assert transport.requests == []


class TestCoinbaseAdvancedAccounts:
    """Tests for balances."""

    @pytest.mark.asyncio
    async def test_follows_cursor(self, advanced, transport):
        advanced_accounts(transport)

        result = await advanced.get_account_balances()

        assert result.success
        assert transport.requests[1].query["cursor"] == "page-2"
        assert transport.requests[0].query["limit"] == "250"
        assert [(b.asset, b.free, b.locked) for b in result.data] == [
            ("BTC", Decimal("0.01"), Decimal("0")),
            ("EUR", Decimal("25.5"), Decimal("4.5")),
        ]


class TestCoinbaseAdvancedMarketBuy:
    """Tests for quote-sized market buys."""

    def script_order(self, transport):
        transport.add("GET", f"{BROKERAGE}/products/BTC-EUR", {
            "product_id": "BTC-EUR",
            "price": "50000",
            "quote_increment": "0.01",
            "quote_min_size": "1",
        })
        transport.add("POST", f"{BROKERAGE}/orders", {
            "success": True,
            "success_response": {"order_id": "ord-1", "product_id": "BTC-EUR", "side": "BUY"},
        })

    @pytest.mark.asyncio
    async def test_quote_sized_order_and_fills(self, advanced, transport):
        self.script_order(transport)
        transport.add("GET", f"{BROKERAGE}/orders/historical/fills", {
            "fills": [{
                "entry_id": "e-1",
                "trade_id": "t-1",
                "order_id": "ord-1",
                "trade_time": "2024-01-01T00:00:00.000Z",
                "price": "50000",
                "size": "25",
                "commission": "0.15",
                "size_in_quote": True,
            }],
        })

        result = await advanced.execute_market_buy("25.007", currency="EUR")

        assert result.success, result.error
        body = transport.calls("POST", f"{BROKERAGE}/orders")[0].json
        assert body["product_id"] == "BTC-EUR"
        assert body["side"] == "BUY"
        assert body["order_configuration"] == {"market_market_ioc": {"quote_size": "25.00"}}
        assert body["client_order_id"]

        assert transport.calls("GET", f"{BROKERAGE}/orders/historical/fills")[0].query == {
            "order_id": "ord-1"
        }

        trade = result.data
        assert trade.order_id == "ord-1"
        assert trade.btc_amount == Decimal("0.0005")
        assert trade.fiat_spent == Decimal("25.15")
        assert trade.trading_fee == Decimal("0.15")
        assert trade.timestamp == "2024-01-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_order_fallback_without_fills(self, advanced, transport):
        self.script_order(transport)
        transport.add("GET", f"{BROKERAGE}/orders/historical/fills", {"fills": []})
        transport.add("GET", f"{BROKERAGE}/orders/historical/ord-1", {
            "order": {
                "order_id": "ord-1",
                "filled_size": "0.0005",
                "filled_value": "25",
                "total_fees": "0.15",
                "created_time": "2024-01-01T00:00:01Z",
            }
        })

        result = await advanced.execute_market_buy(25, currency="EUR")

        assert result.success, result.error
        assert result.data.btc_amount == Decimal("0.0005")
        assert result.data.fiat_spent == Decimal("25.15")
        assert result.data.timestamp == "2024-01-01T00:00:01Z"

    @pytest.mark.asyncio
    async def test_order_failure_message(self, advanced, transport):
        transport.add("GET", f"{BROKERAGE}/products/BTC-EUR", {
            "price": "50000", "quote_increment": "0.01", "quote_min_size": "1",
        })
        transport.add("POST", f"{BROKERAGE}/orders", {
            "success": False,
            "failure_reason": "UNKNOWN_FAILURE_REASON",
            "error_response": {
                "error": "INSUFFICIENT_FUND",
                "message": "Insufficient balance in source account",
            },
        })

        result = await advanced.execute_market_buy(25, currency="EUR")

        assert not result.success
        assert result.error == "Insufficient balance in source account"
        assert result.error_code == "INSUFFICIENT_FUNDS"

    @pytest.mark.asyncio
    async def test_below_quote_minimum(self, advanced, transport):
        self.script_order(transport)

        result = await advanced.execute_market_buy("0.5", currency="EUR")

        assert not result.success
        assert result.error_code == "SIZING"
        assert transport.calls("POST", f"{BROKERAGE}/orders") == []


class TestCoinbaseAdvancedWithdrawal:
    """Tests for crypto withdrawals."""

    @pytest.mark.asyncio
    async def test_withdrawal_body(self, advanced, transport):
        advanced_accounts(transport)
        transport.add("POST", f"{BROKERAGE}/withdrawals/crypto", {"id": "w-1"})

        result = await advanced.execute_withdrawal("bc1qdest", "0.001", network="bitcoin")

        assert result.success, result.error
        assert result.data.provider_tx_id == "w-1"
        body = transport.calls("POST", f"{BROKERAGE}/withdrawals/crypto")[0].json
        assert body == {
            "amount": "0.001",
            "currency": "BTC",
            "crypto_address": {"address": "bc1qdest", "network": "bitcoin"},
        }

    @pytest.mark.asyncio
    async def test_withdrawal_fee_is_constant(self, advanced, transport):
        assert await advanced.get_withdrawal_fee() == Decimal("0.0001")
        assert transport.requests == []


# ============================================================
# COINBASE RETAIL
# ============================================================

class TestCoinbaseRetailAuth:
    """Tests for OAuth bearer handling."""

    @pytest.mark.asyncio
    async def test_headers(self, retail, transport):
        retail_accounts(transport)

        await retail.get_account_balances()

        headers = transport.requests[0].headers
        assert headers["Authorization"] == "Bearer access-1"
        assert headers["CB-VERSION"] == "2024-01-01"

    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_once(self, retail, transport, store):
        transport.add("GET", "/v2/accounts", {
            "errors": [{"id": "expired_token", "message": "The access token expired"}],
        }, status=401)
        retail_accounts(transport)
        transport.add("POST", "/oauth/token", {"access_token": "access-2", "expires_in": 7200})

        result = await retail.get_account_balances()

        assert result.success, result.error
        calls = transport.calls("GET", "/v2/accounts")
        assert [c.headers["Authorization"] for c in calls] == ["Bearer access-1", "Bearer access-2"]
        assert await store.read(ExchangeId.COINBASE, OAUTH_ACCESS_TOKEN) == "access-2"

    @pytest.mark.asyncio
    async def test_rejected_refresh_after_401(self, retail, transport, backend):
        transport.add("GET", "/v2/accounts", {
            "errors": [{"id": "revoked_token", "message": "The access token was revoked"}],
        }, status=401)
        transport.add("POST", "/oauth/token", {"error": "invalid_grant"}, status=400)

        result = await retail.get_account_balances()

        assert not result.success
        assert result.error == "Session expired. Please reconnect your Coinbase account."
        assert result.error_code == "REAUTH_REQUIRED"
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_not_connected(self, store, transport, config):
        adapter = CoinbaseAdapter(store, transport, config)

        result = await adapter.get_account_balances()

        assert not result.success
        assert result.error == "Not connected to Coinbase. Please connect your account first."
        assert not await adapter.has_keys()

    @pytest.mark.asyncio
    async def test_store_keys_rejected(self, retail):
        result = await retail.store_keys("key", "secret")

        assert not result.success
        assert result.error_code == "UNSUPPORTED"
        assert "OAuth" in result.error

    @pytest.mark.asyncio
    async def test_has_and_delete_keys(self, retail):
        assert await retail.has_keys()

        result = await retail.delete_keys()

        assert result.success
        assert not await retail.has_keys()


class TestCoinbaseRetailAccounts:
    """Tests for account listing."""

    @pytest.mark.asyncio
    async def test_follows_next_uri(self, retail, transport):
        transport.add("GET", "/v2/accounts", {
            "data": [{"id": "acc-btc", "currency": {"code": "BTC"}, "balance": {"amount": "0.02"}}],
            "pagination": {"next_uri": "/v2/accounts?starting_after=acc-btc"},
        })
        transport.add("GET", "/v2/accounts", {
            "data": [
                {"id": "acc-eur", "currency": "EUR", "balance": {"amount": "10.00"}},
                {"id": "acc-ltc", "currency": {"code": "LTC"}, "balance": {"amount": "0.00"}},
            ],
            "pagination": {"next_uri": None},
        })

        result = await retail.get_account_balances()

        assert [(b.asset, b.free) for b in result.data] == [
            ("BTC", Decimal("0.02")),
            ("EUR", Decimal("10")),
        ]
        assert transport.requests[1].query == {"starting_after": "acc-btc"}


class TestCoinbaseRetailBuy:
    """Tests for buys."""

    @pytest.mark.asyncio
    async def test_buy_with_primary_payment_method(self, retail, transport):
        retail_accounts(transport)
        transport.add("GET", "/v2/payment-methods", {
            "data": [
                {"id": "pm-1", "allow_buy": True},
                {"id": "pm-2", "allow_buy": True, "primary_buy": True},
            ]
        })
        transport.add("POST", "/v2/accounts/acc-btc/buys", {
            "data": {
                "id": "buy-1",
                "status": "completed",
                "amount": {"amount": "0.0005", "currency": "BTC"},
                "subtotal": {"amount": "25.00", "currency": "EUR"},
                "total": {"amount": "25.75", "currency": "EUR"},
                "fee": {"amount": "0.75", "currency": "EUR"},
                "created_at": "2024-01-01T00:00:00Z",
            }
        })

        result = await retail.execute_market_buy(25, currency="EUR")

        assert result.success, result.error
        body = transport.calls("POST", "/v2/accounts/acc-btc/buys")[0].json
        assert body == {
            "amount": "25.00",
            "currency": "EUR",
            "payment_method": "pm-2",
            "commit": True,
        }
        trade = result.data
        assert trade.order_id == "buy-1"
        assert trade.btc_amount == Decimal("0.0005")
        assert trade.fiat_spent == Decimal("25.75")
        assert trade.trading_fee == Decimal("0.75")
        assert trade.avg_price == Decimal("50000")
        assert trade.timestamp == "2024-01-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_no_payment_method(self, retail, transport):
        retail_accounts(transport)
        transport.add("GET", "/v2/payment-methods", {"data": [{"id": "pm-1", "allow_buy": False}]})

        result = await retail.execute_market_buy(25, currency="EUR")

        assert not result.success
        assert "payment method" in result.error


class TestCoinbaseRetailSend:
    """Tests for sends."""

    @pytest.mark.asyncio
    async def test_send_body(self, retail, transport):
        retail_accounts(transport)
        transport.add("POST", "/v2/accounts/acc-btc/transactions", {
            "data": {"id": "tx-1", "type": "send", "status": "pending"},
        })

        result = await retail.execute_withdrawal("bc1qdest", "0.0025", network="bitcoin")

        assert result.success, result.error
        assert result.data.provider_tx_id == "tx-1"
        body = transport.calls("POST", "/v2/accounts/acc-btc/transactions")[0].json
        assert body == {
            "type": "send",
            "to": "bc1qdest",
            "amount": "0.0025",
            "currency": "BTC",
            "description": "DCA withdrawal to hardware wallet",
            "network": "bitcoin",
        }
