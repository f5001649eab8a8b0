"""
DCA Execution - Exchange Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface shared by the four exchange adapters.

DESIGN PRINCIPLES:
- One result contract for every venue (OperationResult)
- Expected failures (ExecutionError) come back as results,
  unexpected ones propagate to the facade
- Secrets are re-read from the credential store on every call
- Fully testable with a scripted HttpTransport

============================================================
"""

import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from ..config import EngineConfig
from ..credentials import API_KEY, API_SECRET, CredentialStore
from ..errors import (
    ErrorCategory,
    ExchangeBusinessError,
    ExecutionError,
    InvalidRequest,
    TransportError,
)
from ..markets import pair_for
from ..sizing import OrderSizer, to_decimal
from ..types import (
    Balance,
    ExchangeId,
    OperationResult,
    TradeResult,
    WithdrawalResult,
)
from .logging_utils import AdapterLogger
from .transport import HttpTransport, JsonResponse


logger = logging.getLogger(__name__)


def parse_amount(value: Any, label: str) -> Decimal:
    """
    Caller-supplied amount as a finite Decimal.

    Raises:
        InvalidRequest: If the value is not a finite number
    """
    try:
        amount = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRequest(f"{label} is not a number: {value!r}") from None
    if not amount.is_finite():
        raise InvalidRequest(f"{label} must be a finite number, got {value!r}")
    return amount


# ============================================================
# ABSTRACT EXCHANGE ADAPTER
# ============================================================

class ExchangeAdapter(ABC):
    """
    Abstract interface for exchange adapters.

    Implementations:
    - BinanceAdapter: Binance spot + SAPI
    - KrakenAdapter: Kraken REST
    - CoinbaseAdvancedAdapter: Coinbase Advanced Trade (CDP keys)
    - CoinbaseAdapter: Coinbase retail (OAuth)

    Subclasses implement the underscore hooks and raise
    ExecutionError subclasses for expected failures; the public
    methods here turn those into OperationResult.
    """

    exchange_id: ExchangeId
    exchange_name: str

    def __init__(
        self,
        credentials: CredentialStore,
        transport: HttpTransport,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize adapter.

        Args:
            credentials: Credential store for this adapter's secrets
            transport: HTTP transport
            config: Engine configuration
        """
        self._credentials = credentials
        self._transport = transport
        self._config = config or EngineConfig()
        self._log = AdapterLogger(self.exchange_id.value)
        self._sizer = OrderSizer(self.exchange_id, self.exchange_name)

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def get_account_balances(
        self,
        user_id: Optional[str] = None,
    ) -> OperationResult[List[Balance]]:
        """
        Get non-empty balances.

        Assets with zero free AND zero locked balance are dropped.
        """
        async def fetch() -> List[Balance]:
            balances = await self._fetch_balances(user_id)
            return [b for b in balances if not b.is_empty]

        return await self._guard("get_account_balances", fetch)

    async def get_withdrawal_fee(self, user_id: Optional[str] = None) -> Decimal:
        """
        Get the BTC withdrawal fee.

        Never raises: any failure degrades to the configured fallback.
        """
        try:
            fee = await self._fetch_withdrawal_fee(user_id)
        except Exception as e:
            self._log.warning(
                f"Withdrawal fee lookup failed ({type(e).__name__}: {e}), "
                f"using fallback {self._config.withdrawal_fee_fallback}"
            )
            return self._config.withdrawal_fee_fallback
        return fee

    async def execute_withdrawal(
        self,
        destination: str,
        amount_btc: Any,
        network: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> OperationResult[WithdrawalResult]:
        """
        Withdraw BTC.

        Args:
            destination: Address, or a whitelisted key label on Kraken
            amount_btc: Amount in BTC
            network: Venue network identifier
            user_id: Optional user namespace

        Returns:
            OperationResult with WithdrawalResult
        """
        async def withdraw() -> WithdrawalResult:
            if not destination or not str(destination).strip():
                raise InvalidRequest("Withdrawal destination is required")
            amount = parse_amount(amount_btc, "Withdrawal amount")
            if amount <= 0:
                raise InvalidRequest(f"Withdrawal amount must be positive, got {amount}")

            self._log.info(f"Withdrawing {amount} BTC")
            tx_id = await self._withdraw(str(destination).strip(), amount, network, user_id)
            self._log.info(f"Withdrawal accepted: {tx_id}")
            return WithdrawalResult(success=True, provider_tx_id=tx_id)

        return await self._guard("execute_withdrawal", withdraw)

    async def execute_market_buy(
        self,
        fiat_amount: Any,
        fee_percent_hint: Optional[Any] = None,
        currency: str = "EUR",
        user_id: Optional[str] = None,
    ) -> OperationResult[TradeResult]:
        """
        Buy BTC for a fiat amount at market.

        Args:
            fiat_amount: Amount to spend
            fee_percent_hint: Expected fee percent, for logs only
            currency: Quote currency code
            user_id: Optional user namespace

        Returns:
            OperationResult with TradeResult
        """
        async def buy() -> TradeResult:
            currency_code = (currency or "").upper()
            pair = pair_for(self.exchange_id, currency_code)
            amount = parse_amount(fiat_amount, "Buy amount")

            if fee_percent_hint is not None:
                hint = parse_amount(fee_percent_hint, "Trading fee percent")
                self._log.info(
                    f"Market buy {amount} {currency_code} on {pair} "
                    f"(expected fee ~{amount * hint / 100:.2f} {currency_code})"
                )
            else:
                self._log.info(f"Market buy {amount} {currency_code} on {pair}")

            result = await self._market_buy(amount, pair, currency_code, user_id)
            self._log.info(
                f"Order {result.order_id} filled: {result.btc_amount} BTC "
                f"for {result.fiat_spent} {currency_code} @ {result.avg_price}"
            )
            return result

        return await self._guard("execute_market_buy", buy)

    # --------------------------------------------------------
    # KEY MANAGEMENT
    # --------------------------------------------------------

    async def store_keys(
        self,
        api_key: str,
        api_secret: str,
        user_id: Optional[str] = None,
    ) -> OperationResult[None]:
        """Store API credentials."""
        async def store() -> None:
            key = (api_key or "").strip()
            secret = (api_secret or "").strip()
            if not key or not secret:
                raise InvalidRequest("API key and secret are required")
            await self._credentials.write(self.exchange_id, API_KEY, key, user_id)
            await self._credentials.write(self.exchange_id, API_SECRET, secret, user_id)
            self._log.info("API keys stored")

        return await self._guard("store_keys", store)

    async def has_keys(self, user_id: Optional[str] = None) -> bool:
        """Check whether credentials are stored."""
        key = await self._credentials.read(self.exchange_id, API_KEY, user_id)
        secret = await self._credentials.read(self.exchange_id, API_SECRET, user_id)
        return bool(key and secret)

    async def delete_keys(self, user_id: Optional[str] = None) -> OperationResult[None]:
        """Delete stored credentials."""
        async def delete() -> None:
            await self._credentials.delete_all(self.exchange_id, user_id)

        return await self._guard("delete_keys", delete)

    # --------------------------------------------------------
    # VENUE HOOKS
    # --------------------------------------------------------

    @abstractmethod
    async def _fetch_balances(self, user_id: Optional[str]) -> List[Balance]:
        """Fetch all balances from the venue."""
        pass

    @abstractmethod
    async def _fetch_withdrawal_fee(self, user_id: Optional[str]) -> Decimal:
        """Fetch the BTC withdrawal fee from the venue."""
        pass

    @abstractmethod
    async def _withdraw(
        self,
        destination: str,
        amount: Decimal,
        network: Optional[str],
        user_id: Optional[str],
    ) -> str:
        """Submit a withdrawal. Returns the venue's transaction id."""
        pass

    @abstractmethod
    async def _market_buy(
        self,
        fiat_amount: Decimal,
        pair: str,
        currency: str,
        user_id: Optional[str],
    ) -> TradeResult:
        """Size, place and reduce a market buy."""
        pass

    @abstractmethod
    def _extract_error(self, response: JsonResponse) -> Optional[ExchangeBusinessError]:
        """Return the venue error carried by a response, if any."""
        pass

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _read_api_credentials(self, user_id: Optional[str]) -> Tuple[str, str]:
        values = await self._credentials.read_required(
            self.exchange_id,
            (API_KEY, API_SECRET),
            user_id,
            missing_message=f"{self.exchange_name} API keys not found. Please configure them first.",
        )
        return values[API_KEY], values[API_SECRET]

    async def _guard(
        self,
        operation: str,
        func: Callable[[], Awaitable[Any]],
    ) -> OperationResult:
        try:
            data = await func()
        except ExecutionError as e:
            self._log.warning(f"{operation} failed: [{e.code}] {e.message}")
            return OperationResult.fail(e.user_message, e.code)
        return OperationResult.ok(data)

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        data: Optional[str] = None,
    ) -> JsonResponse:
        """
        Send a request and classify the response.

        Raises:
            TransportError: Unreachable host or non-JSON body
            ExchangeBusinessError: Venue reported an error
        """
        request_id = self._log.log_request(operation, method, url, headers, data)
        started = time.monotonic()

        try:
            response = await self._transport.request_json(
                method,
                url,
                headers=headers,
                data=data,
                exchange_name=self.exchange_name,
                exchange_id=self.exchange_id.value,
            )
        except TransportError as e:
            self._log.log_response(
                operation, request_id, e.http_status or 0, started, False,
                error_code=e.code, error_message=e.message,
            )
            if e.exchange_id is None:
                raise TransportError(
                    e.message,
                    exchange_name=self.exchange_name,
                    exchange_id=self.exchange_id.value,
                    http_status=e.http_status,
                    timeout=e.category == ErrorCategory.TIMEOUT,
                ) from e
            raise

        error = self._extract_error(response)
        self._log.log_response(
            operation,
            request_id,
            response.status,
            started,
            error is None,
            error_code=error.exchange_code if error else None,
            error_message=error.message if error else None,
        )
        if error is not None:
            raise error
        return response

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)