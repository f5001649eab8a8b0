"""
DCA Execution - Coinbase Retail (OAuth) Adapter.

============================================================
PURPOSE
============================================================
Buys, balances and sends against the Coinbase v2 API using an
OAuth access token instead of API keys.

AUTHENTICATION:
    Authorization: Bearer <access token>
    CB-VERSION: 2024-01-01

Tokens are refreshed before the call when close to expiry. If a
call still comes back 401, the token is force-refreshed and the
call is repeated exactly once.

============================================================
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..errors import (
    ErrorCategory,
    ExchangeBusinessError,
    RetryEligibility,
    UnsupportedOperation,
)
from ..oauth import CoinbaseOAuthClient
from ..sizing import build_trade_result, reduce_execution, to_decimal
from ..types import (
    Balance,
    ExchangeId,
    OperationResult,
    OrderLevelOnly,
    TradeResult,
    utc_now_iso,
)
from .base import ExchangeAdapter
from .errors import map_coinbase_error
from .transport import JsonResponse


logger = logging.getLogger(__name__)

WITHDRAWAL_DESCRIPTION = "DCA withdrawal to hardware wallet"
RETAIL_QUOTE_INCREMENT = Decimal("0.01")


class CoinbaseAdapter(ExchangeAdapter):
    """Coinbase retail adapter."""

    exchange_id = ExchangeId.COINBASE
    exchange_name = "Coinbase"

    def __init__(self, *args, oauth: Optional[CoinbaseOAuthClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._oauth = oauth or CoinbaseOAuthClient(self._credentials, self._transport, self._config)

    @property
    def oauth(self) -> CoinbaseOAuthClient:
        return self._oauth

    # --------------------------------------------------------
    # KEY MANAGEMENT
    # --------------------------------------------------------

    async def store_keys(
        self,
        api_key: str,
        api_secret: str,
        user_id: Optional[str] = None,
    ) -> OperationResult[None]:
        """Coinbase retail has no API keys."""
        async def reject() -> None:
            raise UnsupportedOperation(
                "Coinbase retail does not accept API keys. Use the OAuth flow instead.",
                exchange_id=self.exchange_id.value,
            )

        return await self._guard("store_keys", reject)

    async def has_keys(self, user_id: Optional[str] = None) -> bool:
        return await self._oauth.load_tokens(user_id) is not None

    async def delete_keys(self, user_id: Optional[str] = None) -> OperationResult[None]:
        return await self._guard("delete_keys", lambda: self._oauth.disconnect(user_id))

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def _fetch_balances(self, user_id: Optional[str]) -> List[Balance]:
        return [
            Balance(
                asset=self._account_currency(account),
                free=to_decimal((account.get("balance") or {}).get("amount", "0")),
            )
            for account in await self._list_accounts(user_id)
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
        account_id = await self._btc_account_id(user_id)

        body: Dict[str, Any] = {
            "type": "send",
            "to": destination,
            "amount": format(amount, "f"),
            "currency": "BTC",
            "description": WITHDRAWAL_DESCRIPTION,
        }
        if network:
            body["network"] = network

        data = await self._request(
            "send", "POST", f"/v2/accounts/{account_id}/transactions", user_id, body=body
        )
        return str((data.get("data") or {})["id"])

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
        spec = self._sizer.size_quote(fiat_amount, RETAIL_QUOTE_INCREMENT, Decimal("0"), currency)

        account_id = await self._btc_account_id(user_id)
        payment_method = await self._payment_method_id(user_id)

        data = await self._request(
            "buy",
            "POST",
            f"/v2/accounts/{account_id}/buys",
            user_id,
            body={
                "amount": format(spec.quote_size, "f"),
                "currency": currency,
                "payment_method": payment_method,
                "commit": True,
            },
        )
        buy = data.get("data") or {}

        fee = to_decimal((buy.get("fee") or {}).get("amount") or "0")
        if (buy.get("subtotal") or {}).get("amount"):
            quote_qty = to_decimal(buy["subtotal"]["amount"])
        else:
            quote_qty = to_decimal((buy.get("total") or {}).get("amount") or "0") - fee

        detail = OrderLevelOnly(
            executed_qty=to_decimal((buy.get("amount") or {}).get("amount") or "0"),
            quote_qty=quote_qty,
            fee_quote=fee,
        )

        summary = reduce_execution(detail, base_asset="BTC", quote_asset=currency)
        timestamp = buy.get("created_at") or utc_now_iso()
        return build_trade_result(str(buy.get("id", "")), summary, currency, timestamp)

    # --------------------------------------------------------
    # LOOKUPS
    # --------------------------------------------------------

    async def _list_accounts(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """All accounts, following next_uri pagination."""
        accounts: List[Dict[str, Any]] = []
        path: Optional[str] = f"/v2/accounts?limit={self._config.coinbase.accounts_page_limit}"

        while path:
            data = await self._request("list_accounts", "GET", path, user_id)
            accounts.extend(data.get("data") or [])
            path = (data.get("pagination") or {}).get("next_uri")

        return accounts

    async def _btc_account_id(self, user_id: Optional[str]) -> str:
        for account in await self._list_accounts(user_id):
            if self._account_currency(account) == "BTC":
                return account["id"]

        raise ExchangeBusinessError(
            "No BTC account found on Coinbase",
            exchange_id=self.exchange_id.value,
            category=ErrorCategory.SYMBOL_NOT_FOUND,
            retry_eligible=RetryEligibility.NO_RETRY,
        )

    async def _payment_method_id(self, user_id: Optional[str]) -> str:
        data = await self._request("list_payment_methods", "GET", "/v2/payment-methods", user_id)
        methods = data.get("data") or []

        chosen = next((m for m in methods if m.get("primary_buy")), None)
        if chosen is None:
            chosen = next((m for m in methods if m.get("allow_buy", True)), None)
        if chosen is None:
            raise ExchangeBusinessError(
                "No payment method available for buying on Coinbase",
                exchange_id=self.exchange_id.value,
                category=ErrorCategory.INSUFFICIENT_FUNDS,
                retry_eligible=RetryEligibility.NO_RETRY,
            )
        return chosen["id"]

    @staticmethod
    def _account_currency(account: Dict[str, Any]) -> str:
        currency = account.get("currency")
        if isinstance(currency, dict):
            return currency.get("code", "")
        return currency or ""

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _extract_error(self, response: JsonResponse) -> Optional[ExchangeBusinessError]:
        payload = response.payload

        if isinstance(payload, dict) and payload.get("errors"):
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
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """OAuth request with one forced refresh on 401."""
        token = await self._oauth.get_access_token(user_id)
        try:
            response = await self._send_with_token(operation, method, path, token, body)
        except ExchangeBusinessError as e:
            if e.http_status != 401:
                raise
            self._log.info(f"{operation} got 401, refreshing token and retrying once")
            token = await self._oauth.get_access_token(user_id, force_refresh=True)
            response = await self._send_with_token(operation, method, path, token, body)

        return response.payload if isinstance(response.payload, dict) else {}

    async def _send_with_token(
        self,
        operation: str,
        method: str,
        path: str,
        token: str,
        body: Optional[Dict[str, Any]],
    ) -> JsonResponse:
        headers = {
            "Authorization": f"Bearer {token}",
            "CB-VERSION": self._config.coinbase.api_version,
            "Content-Type": "application/json",
        }
        data = json.dumps(body) if body is not None else None
        url = f"{self._config.endpoints.coinbase_url}{path}"
        return await self._send(operation, method, url, headers, data)
