"""
DCA Execution - Credential Store.

============================================================
PURPOSE
============================================================
Per-exchange, per-user secret retrieval and storage on top of a
host-provided secure key-value backend.

RULES:
- Keys are addressed by a composite CredentialKey, never by
  ad-hoc string building in callers
- No caching: every signed call re-reads its secrets, so a
  deleted credential can never be used mid-flight
- Secret values are never logged

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional

from .errors import CredentialsMissing
from .types import ExchangeId


logger = logging.getLogger(__name__)


# ============================================================
# CREDENTIAL FIELDS
# ============================================================

API_KEY = "api_key"
API_SECRET = "api_secret"
OAUTH_ACCESS_TOKEN = "oauth_access_token"
OAUTH_REFRESH_TOKEN = "oauth_refresh_token"
OAUTH_TOKEN_EXPIRY = "oauth_token_expiry"

EXCHANGE_FIELDS: Dict[ExchangeId, FrozenSet[str]] = {
    ExchangeId.BINANCE: frozenset({API_KEY, API_SECRET}),
    ExchangeId.KRAKEN: frozenset({API_KEY, API_SECRET}),
    # CDP key name in api_key, SEC1 PEM private key in api_secret
    ExchangeId.COINBASE_ADVANCED: frozenset({API_KEY, API_SECRET}),
    ExchangeId.COINBASE: frozenset({OAUTH_ACCESS_TOKEN, OAUTH_REFRESH_TOKEN, OAUTH_TOKEN_EXPIRY}),
}


@dataclass(frozen=True)
class CredentialKey:
    """
    Composite storage key: exchange, field and optional user.

    Fields are a closed set per exchange, so the rendered key is
    deterministic and cannot collide across exchanges.
    """

    exchange: ExchangeId
    field: str
    user_id: Optional[str] = None

    def __post_init__(self):
        if self.field not in EXCHANGE_FIELDS[self.exchange]:
            raise ValueError(
                f"Field '{self.field}' is not a credential of {self.exchange.value}"
            )

    @property
    def storage_key(self) -> str:
        base = f"{self.exchange.value}_{self.field}"
        if self.user_id:
            return f"{base}_{self.user_id}"
        return base


# ============================================================
# BACKENDS
# ============================================================

class SecretBackend(ABC):
    """
    Async, secret-capable key-value store provided by the host.

    On a device this is the platform keystore.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a value."""
        pass

    @abstractmethod
    async def delete_item(self, key: str) -> None:
        """Delete a value. Deleting a missing key is not an error."""
        pass


class InMemorySecretBackend(SecretBackend):
    """Process-local backend for development and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def delete_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self):
        return list(self._items.keys())

    def __len__(self) -> int:
        return len(self._items)


# ============================================================
# CREDENTIAL STORE
# ============================================================

class CredentialStore:
    """
    Namespaced credential access for the exchange adapters.
    """

    def __init__(self, backend: SecretBackend):
        self._backend = backend

    async def read(
        self,
        exchange: ExchangeId,
        field: str,
        user_id: Optional[str] = None,
    ) -> Optional[str]:
        """Read one credential field."""
        key = CredentialKey(exchange, field, user_id)
        return await self._backend.get_item(key.storage_key)

    async def write(
        self,
        exchange: ExchangeId,
        field: str,
        value: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Write one credential field."""
        key = CredentialKey(exchange, field, user_id)
        await self._backend.set_item(key.storage_key, value)
        logger.debug(f"Stored credential field {field} for {exchange.value}")

    async def delete(
        self,
        exchange: ExchangeId,
        field: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Delete one credential field."""
        key = CredentialKey(exchange, field, user_id)
        await self._backend.delete_item(key.storage_key)

    async def read_required(
        self,
        exchange: ExchangeId,
        fields: Iterable[str],
        user_id: Optional[str] = None,
        missing_message: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Read several fields, failing if any is absent.

        Args:
            exchange: Exchange identifier
            fields: Field names to read
            user_id: Optional user namespace
            missing_message: User-facing message when a field is absent

        Returns:
            Field name to value

        Raises:
            CredentialsMissing: If any field is empty
        """
        values: Dict[str, str] = {}
        for name in fields:
            value = await self.read(exchange, name, user_id)
            if not value:
                raise CredentialsMissing(
                    f"Missing {name} for {exchange.value}",
                    user_message=missing_message
                    or "API keys not found. Please configure them first.",
                    exchange_id=exchange.value,
                )
            values[name] = value
        return values

    async def delete_all(
        self,
        exchange: ExchangeId,
        user_id: Optional[str] = None,
    ) -> None:
        """Delete every credential field of an exchange for a user."""
        for name in sorted(EXCHANGE_FIELDS[exchange]):
            await self.delete(exchange, name, user_id)
        logger.info(f"Deleted credentials for {exchange.value}")
