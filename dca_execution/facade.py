"""
DCA Execution - Exchange Facade.

============================================================
PURPOSE
============================================================
Single entry point for the host application. Routes every call
to the adapter of an explicitly passed exchange and returns an
OperationResult.

RULES:
- The exchange is passed on every call, never read from storage
- Unknown exchanges fail with "Unsupported exchange"
- Anything an adapter did not anticipate is logged with its
  traceback and returned as the generic "temporarily unavailable"
  message
- No geo-gating here; eligibility is a separate pure lookup

WITHDRAWAL NETWORK:
    binance            -> as given (default "BTC")
    kraken             -> dropped (the key label fixes the network)
    coinbase*          -> "bitcoin"

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .adapters.base import ExchangeAdapter
from .adapters.coinbase import CoinbaseAdapter
from .adapters.factory import AdapterFactory
from .adapters.transport import AiohttpTransport, HttpTransport
from .config import EngineConfig
from .credentials import CredentialStore
from .eligibility import EXCHANGES, ExchangeInfo, get_available_exchanges
from .errors import ErrorCategory, ExecutionError, UnsupportedExchange, unavailable_message
from .markets import DEFAULT_CURRENCY
from .oauth import AuthorizationRequest
from .types import (
    Balance,
    ExchangeId,
    OperationResult,
    TradeResult,
    WithdrawalResult,
)


logger = logging.getLogger(__name__)

ExchangeRef = Union[str, ExchangeId]

COINBASE_NETWORK = "bitcoin"


class ExchangeFacade:
    """
    Exchange-agnostic execution surface.

    Usage:
        async with ExchangeFacade(CredentialStore(backend)) as facade:
            result = await facade.execute_market_buy("binance", 50, currency="EUR")
    """

    def __init__(
        self,
        credentials: CredentialStore,
        transport: Optional[HttpTransport] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize facade.

        Args:
            credentials: Credential store backed by the host keystore
            transport: HTTP transport (aiohttp when omitted)
            config: Engine configuration
        """
        self._credentials = credentials
        self._config = config or EngineConfig()
        self._transport = transport or AiohttpTransport(self._config.http_timeout_seconds)
        self._adapters: Dict[ExchangeId, ExchangeAdapter] = {}

    async def __aenter__(self) -> "ExchangeFacade":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the HTTP session."""
        await self._transport.close()

    def get_adapter(self, exchange_id: ExchangeRef) -> ExchangeAdapter:
        """
        Adapter for an exchange, created on first use.

        Raises:
            UnsupportedExchange: If the exchange is unknown
        """
        try:
            exchange = ExchangeId.parse(exchange_id)
        except ValueError:
            raise UnsupportedExchange(
                f"Unsupported exchange: {exchange_id}",
                user_message="Unsupported exchange",
            ) from None

        adapter = self._adapters.get(exchange)
        if adapter is None:
            adapter = AdapterFactory.create(exchange, self._credentials, self._transport, self._config)
            self._adapters[exchange] = adapter
        return adapter

    # --------------------------------------------------------
    # ELIGIBILITY
    # --------------------------------------------------------

    async def get_available_exchanges_for_user(self, country_code: str) -> OperationResult[List[ExchangeInfo]]:
        """Exchanges offered in a country."""
        return OperationResult.ok([EXCHANGES[e] for e in get_available_exchanges(country_code)])

    # --------------------------------------------------------
    # KEY MANAGEMENT
    # --------------------------------------------------------

    async def store_exchange_keys(
        self,
        exchange_id: ExchangeRef,
        api_key: str,
        api_secret: str,
        user_id: Optional[str] = None,
    ) -> OperationResult[None]:
        return await self._dispatch(
            "store_exchange_keys", exchange_id,
            lambda adapter: adapter.store_keys(api_key, api_secret, user_id),
        )

    async def has_exchange_keys(
        self,
        exchange_id: ExchangeRef,
        user_id: Optional[str] = None,
    ) -> OperationResult[bool]:
        async def check(adapter: ExchangeAdapter) -> OperationResult[bool]:
            return OperationResult.ok(await adapter.has_keys(user_id))

        return await self._dispatch("has_exchange_keys", exchange_id, check)

    async def delete_exchange_keys(
        self,
        exchange_id: ExchangeRef,
        user_id: Optional[str] = None,
    ) -> OperationResult[None]:
        return await self._dispatch(
            "delete_exchange_keys", exchange_id,
            lambda adapter: adapter.delete_keys(user_id),
        )

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def get_account_balances(
        self,
        exchange_id: ExchangeRef,
        user_id: Optional[str] = None,
    ) -> OperationResult[List[Balance]]:
        return await self._dispatch(
            "get_account_balances", exchange_id,
            lambda adapter: adapter.get_account_balances(user_id),
        )

    async def get_withdrawal_fee(
        self,
        exchange_id: ExchangeRef,
        user_id: Optional[str] = None,
    ) -> OperationResult[Decimal]:
        """BTC withdrawal fee; falls back to the configured default on failure."""
        async def fee(adapter: ExchangeAdapter) -> OperationResult[Decimal]:
            return OperationResult.ok(await adapter.get_withdrawal_fee(user_id))

        return await self._dispatch("get_withdrawal_fee", exchange_id, fee)

    async def execute_withdrawal(
        self,
        exchange_id: ExchangeRef,
        destination: str,
        amount_btc: Any,
        network: Optional[str] = "BTC",
        user_id: Optional[str] = None,
    ) -> OperationResult[WithdrawalResult]:
        """
        Withdraw BTC to a hardware wallet.

        Args:
            exchange_id: Exchange identifier
            destination: Address, or the withdrawal key label on Kraken
            amount_btc: Amount in BTC
            network: Network identifier; rewritten per exchange
            user_id: Optional user namespace

        Returns:
            OperationResult with WithdrawalResult
        """
        async def withdraw(adapter: ExchangeAdapter) -> OperationResult[WithdrawalResult]:
            venue_network = withdrawal_network(adapter.exchange_id, network)
            return await adapter.execute_withdrawal(destination, amount_btc, venue_network, user_id)

        return await self._dispatch("execute_withdrawal", exchange_id, withdraw)

    async def execute_market_buy(
        self,
        exchange_id: ExchangeRef,
        fiat_amount: Any,
        trading_fee_percent: Optional[Any] = None,
        currency: str = DEFAULT_CURRENCY,
        user_id: Optional[str] = None,
    ) -> OperationResult[TradeResult]:
        """
        Buy BTC at market for a fiat amount.

        Args:
            exchange_id: Exchange identifier
            fiat_amount: Amount to spend
            trading_fee_percent: Expected fee, informational only
            currency: Quote currency code
            user_id: Optional user namespace

        Returns:
            OperationResult with TradeResult
        """
        async def buy(adapter: ExchangeAdapter) -> OperationResult[TradeResult]:
            fee_hint = trading_fee_percent
            if fee_hint is None:
                fee_hint = EXCHANGES[adapter.exchange_id].trading_fee_percent
            return await adapter.execute_market_buy(fiat_amount, fee_hint, currency, user_id)

        return await self._dispatch("execute_market_buy", exchange_id, buy)

    # --------------------------------------------------------
    # COINBASE OAUTH
    # --------------------------------------------------------

    async def begin_coinbase_oauth(
        self,
        user_id: Optional[str] = None,
    ) -> OperationResult[AuthorizationRequest]:
        """Start the Coinbase connect flow. Keep the verifier for completion."""
        async def begin(adapter: CoinbaseAdapter) -> OperationResult[AuthorizationRequest]:
            logger.info(f"Starting Coinbase OAuth for user {user_id or '-'}")
            return OperationResult.ok(adapter.oauth.build_authorization_request())

        return await self._dispatch("begin_coinbase_oauth", ExchangeId.COINBASE, begin)

    async def complete_coinbase_oauth(
        self,
        code: str,
        code_verifier: str,
        user_id: Optional[str] = None,
    ) -> OperationResult[bool]:
        """Exchange the redirect's code for tokens and store them."""
        async def complete(adapter: CoinbaseAdapter) -> OperationResult[bool]:
            await adapter.oauth.complete_authorization(code, code_verifier, user_id)
            return OperationResult.ok(True)

        return await self._dispatch("complete_coinbase_oauth", ExchangeId.COINBASE, complete)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _dispatch(
        self,
        operation: str,
        exchange_id: ExchangeRef,
        call: Callable[[Any], Awaitable[OperationResult]],
    ) -> OperationResult:
        try:
            adapter = self.get_adapter(exchange_id)
        except UnsupportedExchange as e:
            logger.warning(f"{operation}: {e.message}")
            return OperationResult.fail(e.user_message, e.code)

        try:
            return await call(adapter)
        except ExecutionError as e:
            logger.warning(f"{operation} on {adapter.exchange_id.value} failed: [{e.code}] {e.message}")
            return OperationResult.fail(e.user_message, e.code)
        except Exception:
            logger.exception(f"Unexpected error in {operation} on {adapter.exchange_id.value}")
            return OperationResult.fail(
                unavailable_message(adapter.exchange_name),
                ErrorCategory.NETWORK.value,
            )


def withdrawal_network(exchange_id: ExchangeId, network: Optional[str]) -> Optional[str]:
    """Rewrite the caller's network to what each exchange expects."""
    if exchange_id == ExchangeId.BINANCE:
        return network or "BTC"
    if exchange_id == ExchangeId.KRAKEN:
        return None
    return COINBASE_NETWORK
