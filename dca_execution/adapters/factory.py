"""
Exchange Adapter Factory.

============================================================
PURPOSE
============================================================
Maps an ExchangeId to its adapter class.

FEATURES:
- Exhaustive registry over ExchangeId
- Credential store, transport and config injection
- register()/unregister() for substituting adapters in tests

============================================================
USAGE
============================================================
```python
store = CredentialStore(InMemorySecretBackend())
adapter = create_adapter("kraken", store, AiohttpTransport())
result = await adapter.execute_market_buy(Decimal("50"), currency="EUR")
```

============================================================
"""

import logging
from typing import Dict, Optional, Type, Union

from ..config import EngineConfig
from ..credentials import CredentialStore
from ..errors import UnsupportedExchange
from ..types import ExchangeId
from .base import ExchangeAdapter
from .binance import BinanceAdapter
from .coinbase import CoinbaseAdapter
from .coinbase_advanced import CoinbaseAdvancedAdapter
from .kraken import KrakenAdapter
from .transport import HttpTransport


logger = logging.getLogger(__name__)


# ============================================================
# ADAPTER FACTORY
# ============================================================

class AdapterFactory:
    """
    Factory for creating exchange adapters.

    Every ExchangeId has exactly one registered adapter class.
    """

    _registry: Dict[ExchangeId, Type[ExchangeAdapter]] = {
        ExchangeId.BINANCE: BinanceAdapter,
        ExchangeId.KRAKEN: KrakenAdapter,
        ExchangeId.COINBASE_ADVANCED: CoinbaseAdvancedAdapter,
        ExchangeId.COINBASE: CoinbaseAdapter,
    }

    @classmethod
    def register(
        cls,
        exchange_id: Union[str, ExchangeId],
        adapter_class: Type[ExchangeAdapter],
    ) -> None:
        """
        Register an adapter class.

        Args:
            exchange_id: Exchange identifier
            adapter_class: Adapter class to register
        """
        cls._registry[ExchangeId.parse(exchange_id)] = adapter_class

    @classmethod
    def unregister(cls, exchange_id: Union[str, ExchangeId]) -> None:
        cls._registry.pop(ExchangeId.parse(exchange_id), None)

    @classmethod
    def supported(cls) -> list:
        return list(cls._registry.keys())

    @classmethod
    def create(
        cls,
        exchange_id: Union[str, ExchangeId],
        credentials: CredentialStore,
        transport: HttpTransport,
        config: Optional[EngineConfig] = None,
    ) -> ExchangeAdapter:
        """
        Create an exchange adapter.

        Args:
            exchange_id: Exchange identifier
            credentials: Credential store
            transport: HTTP transport
            config: Engine configuration

        Returns:
            ExchangeAdapter instance

        Raises:
            UnsupportedExchange: If exchange not supported
        """
        try:
            exchange = ExchangeId.parse(exchange_id)
        except ValueError as e:
            raise UnsupportedExchange(str(e), user_message="Unsupported exchange") from None

        adapter_class = cls._registry.get(exchange)
        if adapter_class is None:
            raise UnsupportedExchange(
                f"No adapter registered for {exchange.value}",
                user_message="Unsupported exchange",
                exchange_id=exchange.value,
            )

        logger.debug(f"Creating {adapter_class.__name__} for {exchange.value}")
        return adapter_class(credentials, transport, config)


def create_adapter(
    exchange_id: Union[str, ExchangeId],
    credentials: CredentialStore,
    transport: HttpTransport,
    config: Optional[EngineConfig] = None,
) -> ExchangeAdapter:
    """Convenience function to create an adapter."""
    return AdapterFactory.create(exchange_id, credentials, transport, config)
