"""
DCA Execution - Coinbase Advanced Trade Adapter.

============================================================
PURPOSE
============================================================
Market buys, balances and BTC withdrawals against the Coinbase
Advanced Trade API (v3 brokerage) using CDP API keys.

AUTHENTICATION:
Every request carries its own ES256 JWT:
    Authorization: Bearer <jwt>
The token covers exactly one "<METHOD> <host><path>" and lives
120 seconds, so it is never cached or reused.

Market buys are quote-sized (market_market_ioc.quote_size):
the venue is told how much fiat to spend, not how much BTC.

============================================================
"""

import asyncio
import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from ..credentials import API_KEY, API_SECRET
from ..errors import ErrorCategory, ExchangeBusinessError, RetryEligibility
from ..signing import build_es256_jwt
from ..sizing import build_trade_result, reduce_execution, to_decimal
from ..types import (
    Balance,
    ExchangeId,
    Fill,
    FillBased,
    OrderLevelOnly,
    TradeResult,
    utc_now_iso,
)
from .base import ExchangeAdapter
from .errors import map_coinbase_error
from .transport import JsonResponse


logger = logging.getLogger(__name__)

BROKERAGE = "/api/v3/brokerage"


class CoinbaseAdvancedAdapter(ExchangeAdapter):
    """
    Coinbase Advanced Trade adapter.

    Credentials: the CDP key name (``organizations/.../apiKeys/...``)
    is stored as api_key and the SEC1 PEM private key as api_secret.
    """

    exchange_id = ExchangeId.COINBASE_ADVANCED
    exchange_name = "Coinbase"

    @property
    def _base_url(self) -> str:
        return self._config.endpoints.coinbase_url

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def _fetch_balances(self, user_id: Optional[str]) -> List[Balance]:
        accounts = await self._list_accounts(user_id)

        return [
            Balance(
                asset=account.get("currency", ""),
                free=to_decimal((account.get("available_balance") or {}).get("value", "0")),
                locked=to_decimal((account.get("hold") or {}).get("value", "0")),
            )
            for account in accounts
        ]

    async def _fetch_withdrawal_fee(self, user_id: Optional[str]) -> Decimal:
        return self._config.coinbase.network_fee

    async def _withdraw(
        self,
        destination: str,
        amount: Decimal,
        network: Optional[str],
        user_id: Optional[str],
    ) -> str:
        accounts = await self._list_accounts(user_id)
        if not any(a.get("currency") == "BTC" for a in accounts):
            raise ExchangeBusinessError(
                "No BTC account found on Coinbase",
                exchange_id=self.exchange_id.value,
                category=ErrorCategory.WITHDRAWAL_REJECTED,
                retry_eligible=RetryEligibility.NO_RETRY,
            )

        data = await self._request(
            "withdraw",
            "POST",
            f"{BROKERAGE}/withdrawals/crypto",
            user_id,
            body={
                "amount": format(amount, "f"),
                "currency": "BTC",
                "crypto_address": {
                    "address": destination,
                    "network": network or "bitcoin",
                },
            },
        )

        tx_id = data.get("id") or data.get("withdrawal_id")
        if not tx_id:
            raise ExchangeBusinessError(
                "Coinbase accepted the withdrawal but returned no id",
                exchange_id=self.exchange_id.value,
            )
        return str(tx_id)

    async def _list_accounts(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """All accounts, following cursor pagination."""
        accounts: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while True:
            query: Dict[str, Any] = {"limit": self._config.coinbase.accounts_page_limit}
            if cursor:
                query["cursor"] = cursor

            data = await self._request("list_accounts", "GET", f"{BROKERAGE}/accounts", user_id, query=query)
            accounts.extend(data.get("accounts") or [])

            cursor = data.get("cursor")
            if not data.get("has_next") or not cursor:
                return accounts

    # --------------------------------------------------------
    # MARKET BUY
    # --------------------------------------------------------

    async def _market_buy(
        self,
        fiat_amount: Decimal,
        pair: str,
        currency: str,
        user_id: Optional[str],
    ) -> TradeResult:
        product = await self._request("get_product", "GET", f"{BROKERAGE}/products/{pair}", user_id)

        price = to_decimal(product.get("price") or "0")
        spec = self._sizer.size_quote(
            fiat_amount,
            product.get("quote_increment") or "0.01",
            product.get("quote_min_size") or "0",
            currency,
            current_price=price,
        )

        created = await self._request(
            "place_order",
            "POST",
            f"{BROKERAGE}/orders",
            user_id,
            body={
                "client_order_id": str(uuid.uuid4()),
                "product_id": pair,
                "side": spec.side.value,
                "order_configuration": {
                    "market_market_ioc": {"quote_size": format(spec.quote_size, "f")},
                },
            },
        )

        order_id = (created.get("success_response") or {}).get("order_id") or created.get("order_id")
        if not order_id:
            raise ExchangeBusinessError(
                "Coinbase accepted the order but returned no order id",
                exchange_id=self.exchange_id.value,
            )

        await asyncio.sleep(self._config.fill_poll_delay_seconds)

        fills_data = await self._request(
            "get_fills",
            "GET",
            f"{BROKERAGE}/orders/historical/fills",
            user_id,
            query={"order_id": order_id},
        )
        fills = [self._parse_fill(f, currency) for f in fills_data.get("fills") or []]

        timestamp = None
        if fills:
            detail = FillBased(fills)
            timestamp = (fills_data.get("fills") or [{}])[0].get("trade_time")
        else:
            order_data = await self._request(
                "get_order", "GET", f"{BROKERAGE}/orders/historical/{order_id}", user_id
            )
            order = order_data.get("order") or {}
            detail = OrderLevelOnly(
                executed_qty=to_decimal(order.get("filled_size") or "0"),
                quote_qty=to_decimal(order.get("filled_value") or "0"),
                fee_quote=to_decimal(order.get("total_fees") or "0"),
            )
            timestamp = order.get("created_time")

        summary = reduce_execution(detail, base_asset="BTC", quote_asset=currency)
        return build_trade_result(str(order_id), summary, currency, timestamp or utc_now_iso(), fills)

    @staticmethod
    def _parse_fill(raw: Dict[str, Any], currency: str) -> Fill:
        """Fill sizes may be quote-denominated (size_in_quote)."""
        price = to_decimal(raw["price"])
        size = to_decimal(raw["size"])
        qty = size / price if raw.get("size_in_quote") and price else size

        return Fill(
            price=price,
            qty=qty,
            commission=to_decimal(raw.get("commission") or "0"),
            commission_asset=currency,
            trade_id=raw.get("trade_id") or raw.get("entry_id"),
        )

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _extract_error(self, response: JsonResponse) -> Optional[ExchangeBusinessError]:
        payload = response.payload

        if isinstance(payload, dict) and payload.get("success") is False:
            return map_coinbase_error(payload, response.status, self.exchange_id.value)

        if not response.ok:
            return map_coinbase_error(payload, response.status, self.exchange_id.value)

        return None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        user_id: Optional[str],
        query: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make a JWT-authenticated request. A fresh token per call."""
        values = await self._credentials.read_required(
            self.exchange_id,
            (API_KEY, API_SECRET),
            user_id,
            missing_message="Coinbase API keys not found. Please configure them first.",
        )

        token = build_es256_jwt(
            values[API_SECRET],
            values[API_KEY],
            method,
            path,
            host=self._config.endpoints.coinbase_host,
        )

        url = f"{self._base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        data = json.dumps(body) if body is not None else None

        response = await self._send(operation, method, url, headers, data)
        return response.payload if isinstance(response.payload, dict) else {}
