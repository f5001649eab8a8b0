"""
DCA Execution - Kraken Adapter.

============================================================
PURPOSE
============================================================
Market buys, balances and BTC withdrawals against the Kraken
REST API.

SIGNING:
    POST /0/private/<Method>, form body "nonce=...&..."
    API-Sign = kraken_signature(secret, path, body, nonce)

Nonces are milliseconds and strictly increasing per adapter
instance; Kraken rejects a nonce that does not grow.

ASSET CODES:
Kraken prefixes legacy assets with X (crypto) or Z (fiat) and
calls bitcoin XBT: XXBT -> BTC, ZEUR -> EUR.

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from ..errors import ErrorCategory, ExchangeBusinessError, RetryEligibility
from ..signing import kraken_signature
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
from .errors import map_kraken_error
from .transport import JsonResponse


logger = logging.getLogger(__name__)

KRAKEN_BTC = "XBT"


def normalize_asset(code: str) -> str:
    """
    Map a Kraken asset code to its common symbol.

    Only four-letter X/Z codes carry the legacy prefix; anything
    else (USDT, DOT, XTZ) is left alone apart from XBT.
    """
    asset = code.split(".", 1)[0]
    if len(asset) == 4 and asset[0] in ("X", "Z"):
        asset = asset[1:]
    if asset == KRAKEN_BTC:
        return "BTC"
    return asset


# ============================================================
# KRAKEN ADAPTER
# ============================================================

class KrakenAdapter(ExchangeAdapter):
    """
    Kraken spot adapter.

    Withdrawal destinations are the labels of withdrawal keys the
    user pre-registered on kraken.com, not raw addresses.
    """

    exchange_id = ExchangeId.KRAKEN
    exchange_name = "Kraken"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._last_nonce = 0

    @property
    def _base_url(self) -> str:
        return self._config.endpoints.kraken_url

    def _next_nonce(self) -> int:
        nonce = max(self._last_nonce + 1, self._now_ms())
        self._last_nonce = nonce
        return nonce

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def _fetch_balances(self, user_id: Optional[str]) -> List[Balance]:
        result = await self._private("Balance", {}, user_id)

        balances: Dict[str, Balance] = {}
        for code, amount in (result or {}).items():
            asset = normalize_asset(code)
            balance = balances.setdefault(asset, Balance(asset=asset))
            balance.free += to_decimal(amount)

        return list(balances.values())

    async def _fetch_withdrawal_fee(self, user_id: Optional[str]) -> Decimal:
        result = await self._private(
            "WithdrawInfo",
            {
                "asset": KRAKEN_BTC,
                "key": self._config.kraken.fee_estimate_key,
                "amount": self._config.kraken.fee_estimate_amount,
            },
            user_id,
        )
        return to_decimal(result["fee"])

    async def _withdraw(
        self,
        destination: str,
        amount: Decimal,
        network: Optional[str],
        user_id: Optional[str],
    ) -> str:
        result = await self._private(
            "Withdraw",
            {"asset": KRAKEN_BTC, "key": destination, "amount": format(amount, "f")},
            user_id,
        )
        return str(result["refid"])

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

        ticker = self._first_entry(await self._public("Ticker", {"pair": pair}), pair)
        price = to_decimal(ticker["a"][0])

        pair_info = self._first_entry(await self._public("AssetPairs", {"pair": pair}), pair)
        step_size, min_notional = self._parse_pair_limits(pair_info, price)

        spec = self._sizer.size(fiat_amount, price, step_size, min_notional, currency)

        added = await self._private(
            "AddOrder",
            {
                "pair": pair,
                "type": "buy",
                "ordertype": "market",
                "volume": spec.formatted_quantity(),
            },
            user_id,
        )
        txids = added.get("txid") or []
        if not txids:
            raise ExchangeBusinessError(
                "Kraken accepted the order but returned no transaction id",
                exchange_id=self.exchange_id.value,
            )
        order_id = str(txids[0])

        await asyncio.sleep(self._config.fill_poll_delay_seconds)

        orders = await self._private("QueryOrders", {"txid": order_id, "trades": "true"}, user_id)
        order = (orders or {}).get(order_id)

        fills: List[Fill] = []
        timestamp = utc_now_iso()

        if order is None:
            # Market orders fill at once; fall back to the submitted size
            self._log.warning(f"Order {order_id} not visible yet, using submitted quantity")
            detail = OrderLevelOnly(
                executed_qty=spec.computed_quantity,
                quote_qty=spec.computed_quantity * price,
            )
        else:
            close_time = order.get("closetm") or order.get("opentm")
            if close_time:
                timestamp = epoch_ms_to_iso(int(float(close_time) * 1000))

            trade_ids = order.get("trades") or []
            if trade_ids:
                fills = await self._query_fills(trade_ids, currency, user_id)

            if fills:
                detail = FillBased(fills)
            else:
                detail = OrderLevelOnly(
                    executed_qty=to_decimal(order.get("vol_exec", "0")),
                    quote_qty=to_decimal(order.get("cost", "0")),
                    fee_quote=to_decimal(order.get("fee", "0")),
                )

        summary = reduce_execution(detail, base_asset="BTC", quote_asset=currency)
        return build_trade_result(order_id, summary, currency, timestamp, fills)

    async def _query_fills(
        self,
        trade_ids: List[str],
        currency: str,
        user_id: Optional[str],
    ) -> List[Fill]:
        """Kraken charges spot fees in the quote currency by default."""
        trades = await self._private("QueryTrades", {"txid": ",".join(trade_ids)}, user_id)

        fills = []
        for trade_id in trade_ids:
            trade = (trades or {}).get(trade_id)
            if trade is None:
                continue
            fills.append(Fill(
                price=to_decimal(trade["price"]),
                qty=to_decimal(trade["vol"]),
                commission=to_decimal(trade.get("fee", "0")),
                commission_asset=currency,
                trade_id=trade_id,
            ))
        return fills

    def _parse_pair_limits(self, pair_info: Dict[str, Any], price: Decimal) -> Tuple[Decimal, Decimal]:
        """
        Extract (step_size, min_notional) from AssetPairs.

        costmin is the quote-side minimum; without it the base-side
        ordermin is converted at the current price.
        """
        lot_decimals = int(pair_info.get("lot_decimals", self._config.kraken.default_lot_decimals))
        step_size = Decimal(1).scaleb(-lot_decimals)

        if pair_info.get("costmin"):
            min_notional = to_decimal(pair_info["costmin"])
        elif pair_info.get("ordermin"):
            min_notional = to_decimal(pair_info["ordermin"]) * price
        else:
            min_notional = Decimal("0")

        return step_size, min_notional

    def _first_entry(self, result: Dict[str, Any], pair: str) -> Dict[str, Any]:
        """Kraken keys results by its own pair name (XBTEUR -> XXBTZEUR)."""
        if not result:
            raise ExchangeBusinessError(
                f"Trading pair {pair} not found on Kraken",
                exchange_id=self.exchange_id.value,
                category=ErrorCategory.SYMBOL_NOT_FOUND,
                retry_eligible=RetryEligibility.NO_RETRY,
            )
        if pair in result:
            return result[pair]
        return next(iter(result.values()))

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _extract_error(self, response: JsonResponse) -> Optional[ExchangeBusinessError]:
        payload = response.payload
        errors = payload.get("error") if isinstance(payload, dict) else None

        if errors:
            return map_kraken_error(errors, response.status)

        if not response.ok:
            return map_kraken_error(
                [f"Kraken request failed (HTTP {response.status})"], response.status
            )

        return None

    async def _public(self, method: str, params: Dict[str, Any]) -> Any:
        url = f"{self._base_url}/0/public/{method}"
        if params:
            url = f"{url}?{urlencode(params)}"
        response = await self._send(method, "GET", url)
        return response.payload.get("result")

    async def _private(self, method: str, params: Dict[str, Any], user_id: Optional[str]) -> Any:
        """Make a signed request. Credentials are read per call."""
        api_key, api_secret = await self._read_api_credentials(user_id)

        path = f"/0/private/{method}"
        nonce = self._next_nonce()
        post_data = urlencode({"nonce": str(nonce), **params})

        headers = {
            "API-Key": api_key,
            "API-Sign": kraken_signature(api_secret, path, post_data, nonce),
            "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
        }

        response = await self._send(method, "POST", f"{self._base_url}{path}", headers, post_data)
        return response.payload.get("result")
