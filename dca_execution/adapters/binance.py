"""
DCA Execution - Binance Spot Adapter.

============================================================
PURPOSE
============================================================
Market buys, balances and BTC withdrawals against Binance
spot and SAPI endpoints.

SIGNING:
    query = urlencode(params) + "&timestamp=...&recvWindow=60000"
    url   = path + "?" + query + "&signature=" + HMAC_SHA256(secret, query)
    API key travels in X-MBX-APIKEY.

Signed POSTs carry everything in the query string, never in
the body, so the signed text is exactly what the venue sees.

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from ..errors import ErrorCategory, ExchangeBusinessError, RetryEligibility
from ..signing import hmac_sha256_query
from ..sizing import build_trade_result, reduce_execution, to_decimal
from ..types import (
    Balance,
    ExchangeId,
    Fill,
    FillBased,
    OrderLevelOnly,
    TradeResult,
    epoch_ms_to_iso,
    utc_now_iso,
)
from .base import ExchangeAdapter
from .errors import map_binance_error
from .transport import JsonResponse


logger = logging.getLogger(__name__)


# ============================================================
# BINANCE ADAPTER
# ============================================================

class BinanceAdapter(ExchangeAdapter):
    """
    Binance spot adapter.

    Implements the ExchangeAdapter interface for the Binance
    REST API (api/v3 and sapi/v1).
    """

    exchange_id = ExchangeId.BINANCE
    exchange_name = "Binance"

    @property
    def _base_url(self) -> str:
        return self._config.endpoints.binance_url

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def _fetch_balances(self, user_id: Optional[str]) -> List[Balance]:
        data = await self._signed("get_account", "GET", "/api/v3/account", {}, user_id)

        return [
            Balance(
                asset=item["asset"],
                free=to_decimal(item.get("free", "0")),
                locked=to_decimal(item.get("locked", "0")),
            )
            for item in data.get("balances", [])
        ]

    async def _fetch_withdrawal_fee(self, user_id: Optional[str]) -> Decimal:
        coins = await self._signed(
            "get_coin_config", "GET", "/sapi/v1/capital/config/getall", {}, user_id
        )
        network = self._config.binance.withdrawal_network

        for coin in coins or []:
            if coin.get("coin") != "BTC":
                continue
            for entry in coin.get("networkList", []):
                if entry.get("network") == network:
                    return to_decimal(entry["withdrawFee"])

        raise ExchangeBusinessError(
            f"BTC network {network} not found in coin configuration",
            exchange_id=self.exchange_id.value,
        )

    async def _withdraw(
        self,
        destination: str,
        amount: Decimal,
        network: Optional[str],
        user_id: Optional[str],
    ) -> str:
        params = {
            "coin": "BTC",
            "network": network or "BTC",
            "address": destination,
            "amount": format(amount, "f"),
        }
        data = await self._signed(
            "withdraw", "POST", "/sapi/v1/capital/withdraw/apply", params, user_id
        )
        return str(data["id"])

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
        await self._read_api_credentials(user_id)

        ticker = await self._public("get_ticker", "/api/v3/ticker/price", {"symbol": pair})
        price = to_decimal(ticker["price"])

        info = await self._public("get_exchange_info", "/api/v3/exchangeInfo", {"symbol": pair})
        step_size, min_notional = self._parse_symbol_filters(info, pair)

        spec = self._sizer.size(fiat_amount, price, step_size, min_notional, currency)

        order = await self._signed(
            "place_order",
            "POST",
            "/api/v3/order",
            {
                "symbol": pair,
                "side": spec.side.value,
                "type": "MARKET",
                "quantity": spec.formatted_quantity(),
                "newOrderRespType": "FULL",
            },
            user_id,
        )

        fills = [
            Fill(
                price=to_decimal(f["price"]),
                qty=to_decimal(f["qty"]),
                commission=to_decimal(f.get("commission", "0")),
                commission_asset=f.get("commissionAsset"),
                trade_id=str(f["tradeId"]) if "tradeId" in f else None,
            )
            for f in order.get("fills") or []
        ]

        if fills:
            detail = FillBased(fills)
        else:
            detail = OrderLevelOnly(
                executed_qty=to_decimal(order.get("executedQty", "0")),
                quote_qty=to_decimal(order.get("cummulativeQuoteQty", "0")),
            )

        summary = reduce_execution(detail, base_asset="BTC", quote_asset=pair[len("BTC"):])

        transact_time = order.get("transactTime")
        timestamp = epoch_ms_to_iso(int(transact_time)) if transact_time else utc_now_iso()

        return build_trade_result(str(order["orderId"]), summary, currency, timestamp, fills)

    def _parse_symbol_filters(self, info: Dict[str, Any], pair: str) -> Tuple[Decimal, Decimal]:
        """
        Extract (step_size, min_notional) from exchangeInfo.

        NOTIONAL replaced MIN_NOTIONAL on spot; either is accepted.
        """
        symbols = info.get("symbols") or []
        symbol = next((s for s in symbols if s.get("symbol") == pair), None)
        if symbol is None:
            raise ExchangeBusinessError(
                f"Trading pair {pair} not found on Binance",
                exchange_id=self.exchange_id.value,
                category=ErrorCategory.SYMBOL_NOT_FOUND,
                retry_eligible=RetryEligibility.NO_RETRY,
            )

        step_size: Optional[Decimal] = None
        min_notional: Optional[Decimal] = None

        for f in symbol.get("filters", []):
            filter_type = f.get("filterType")
            if filter_type == "LOT_SIZE":
                step_size = to_decimal(f["stepSize"])
            elif filter_type in ("NOTIONAL", "MIN_NOTIONAL") and f.get("minNotional"):
                min_notional = to_decimal(f["minNotional"])

        if step_size is None:
            raise ExchangeBusinessError(
                f"No LOT_SIZE filter for {pair}",
                exchange_id=self.exchange_id.value,
            )

        return step_size, min_notional or self._config.binance.default_min_notional

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _extract_error(self, response: JsonResponse) -> Optional[ExchangeBusinessError]:
        payload = response.payload

        if isinstance(payload, dict) and "code" in payload and "msg" in payload:
            code = payload["code"]
            if not response.ok or (isinstance(code, int) and code < 0):
                return map_binance_error(code, payload["msg"], response.status)

        if not response.ok:
            return map_binance_error(
                None, f"Binance request failed (HTTP {response.status})", response.status
            )

        return None

    async def _public(self, operation: str, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        response = await self._send(operation, "GET", url)
        return response.payload

    async def _signed(
        self,
        operation: str,
        method: str,
        path: str,
        params: Dict[str, Any],
        user_id: Optional[str],
    ) -> Any:
        """Make a signed request. Credentials are read per call."""
        api_key, api_secret = await self._read_api_credentials(user_id)

        signed_params = dict(params)
        signed_params["timestamp"] = str(self._now_ms())
        signed_params["recvWindow"] = str(self._config.binance.recv_window_ms)

        query = urlencode(signed_params)
        signature = hmac_sha256_query(api_secret, query)

        url = f"{self._base_url}{path}?{query}&signature={signature}"
        headers = {"X-MBX-APIKEY": api_key}

        response = await self._send(operation, method, url, headers=headers)
        return response.payload
