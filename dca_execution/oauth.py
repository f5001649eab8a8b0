"""
DCA Execution - Coinbase OAuth2 Token Lifecycle.

============================================================
PURPOSE
============================================================
Authorization-code flow with PKCE for Coinbase retail accounts,
token storage in the credential store, and refresh.

FLOW:
1. build_authorization_request() -> URL the host opens in a browser
2. Coinbase redirects back with ?code=...&state=...
3. complete_authorization(code, verifier) -> tokens stored
4. get_access_token() refreshes proactively within 60 s of expiry

A rejected refresh deletes the stored tokens; the user has to
reconnect (ReauthRequired).

LIMITATION:
Refresh is not serialised. Two calls racing on an expired token
both refresh; the loser's refresh token may already be rotated.

============================================================
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from .config import EngineConfig
from .credentials import (
    OAUTH_ACCESS_TOKEN,
    OAUTH_REFRESH_TOKEN,
    OAUTH_TOKEN_EXPIRY,
    CredentialStore,
)
from .adapters.errors import map_coinbase_error
from .adapters.logging_utils import AdapterLogger
from .adapters.transport import HttpTransport
from .errors import (
    CredentialsMissing,
    ErrorCategory,
    ExchangeBusinessError,
    ReauthRequired,
    TransportError,
)
from .signing import generate_pkce_pair, generate_state
from .types import ExchangeId, OAuthTokenPair


logger = logging.getLogger(__name__)

NOT_CONNECTED_MESSAGE = "Not connected to Coinbase. Please connect your account first."
SESSION_EXPIRED_MESSAGE = "Session expired. Please reconnect your Coinbase account."


@dataclass
class AuthorizationRequest:
    """Everything the host needs to start and later finish the flow."""

    url: str
    state: str
    code_verifier: str
    """Keep until the redirect arrives; never send it to the authorize URL."""

    redirect_uri: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "state": self.state,
            "code_verifier": self.code_verifier,
            "redirect_uri": self.redirect_uri,
        }


class CoinbaseOAuthClient:
    """
    Coinbase retail OAuth client.

    Public client: PKCE replaces the client secret.
    """

    exchange_id = ExchangeId.COINBASE

    def __init__(
        self,
        credentials: CredentialStore,
        transport: HttpTransport,
        config: Optional[EngineConfig] = None,
    ):
        self._credentials = credentials
        self._transport = transport
        self._config = config or EngineConfig()
        self._log = AdapterLogger("coinbase_oauth")

    # --------------------------------------------------------
    # AUTHORIZATION
    # --------------------------------------------------------

    def build_authorization_request(self) -> AuthorizationRequest:
        """
        Build the authorize URL with a fresh PKCE pair and state.

        Returns:
            AuthorizationRequest
        """
        settings = self._config.coinbase
        verifier, challenge = generate_pkce_pair()
        state = generate_state()

        params = {
            "response_type": "code",
            "client_id": settings.client_id,
            "redirect_uri": settings.redirect_uri,
            "scope": " ".join(settings.scopes),
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }

        return AuthorizationRequest(
            url=f"{self._config.endpoints.coinbase_authorize_url}?{urlencode(params)}",
            state=state,
            code_verifier=verifier,
            redirect_uri=settings.redirect_uri,
        )

    async def complete_authorization(
        self,
        code: str,
        code_verifier: str,
        user_id: Optional[str] = None,
    ) -> OAuthTokenPair:
        """
        Exchange an authorization code for tokens and store them.

        Raises:
            ExchangeBusinessError: Coinbase rejected the code
            TransportError: Token endpoint unreachable
        """
        payload = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._config.coinbase.client_id,
            "redirect_uri": self._config.coinbase.redirect_uri,
            "code_verifier": code_verifier,
        })

        tokens = self._parse_tokens(payload)
        await self._store_tokens(tokens, user_id)
        self._log.info("Coinbase account connected")
        return tokens

    # --------------------------------------------------------
    # TOKENS
    # --------------------------------------------------------

    async def load_tokens(self, user_id: Optional[str] = None) -> Optional[OAuthTokenPair]:
        """Stored tokens, or None when not connected."""
        access = await self._credentials.read(self.exchange_id, OAUTH_ACCESS_TOKEN, user_id)
        if not access:
            return None

        refresh = await self._credentials.read(self.exchange_id, OAUTH_REFRESH_TOKEN, user_id)
        expiry_raw = await self._credentials.read(self.exchange_id, OAUTH_TOKEN_EXPIRY, user_id)

        try:
            expiry = int(expiry_raw) if expiry_raw else None
        except ValueError:
            self._log.warning("Stored token expiry is not a number, treating token as expired")
            expiry = 0

        return OAuthTokenPair(access_token=access, refresh_token=refresh, expiry_epoch_ms=expiry)

    async def get_access_token(
        self,
        user_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> str:
        """
        A usable access token, refreshed first if it is about to expire.

        Raises:
            CredentialsMissing: Not connected
            ReauthRequired: Refresh was rejected
        """
        tokens = await self.load_tokens(user_id)
        if tokens is None:
            raise CredentialsMissing(
                "No Coinbase OAuth tokens stored",
                user_message=NOT_CONNECTED_MESSAGE,
                exchange_id=self.exchange_id.value,
            )

        now_ms = int(time.time() * 1000)
        if force_refresh or tokens.is_expired(now_ms, self._config.coinbase.token_refresh_skew_seconds):
            tokens = await self.refresh(user_id, current=tokens)

        return tokens.access_token

    async def refresh(
        self,
        user_id: Optional[str] = None,
        current: Optional[OAuthTokenPair] = None,
    ) -> OAuthTokenPair:
        """
        Refresh the access token.

        Raises:
            ReauthRequired: No refresh token, or Coinbase rejected it
            TransportError: Token endpoint unreachable (tokens kept)
        """
        current = current or await self.load_tokens(user_id)
        if current is None or not current.refresh_token:
            await self._credentials.delete_all(self.exchange_id, user_id)
            raise ReauthRequired(
                "No Coinbase refresh token stored",
                user_message=SESSION_EXPIRED_MESSAGE,
                exchange_id=self.exchange_id.value,
            )

        self._log.info("Refreshing Coinbase access token")
        try:
            payload = await self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
                "client_id": self._config.coinbase.client_id,
            })
            tokens = self._parse_tokens(payload)
        except ExchangeBusinessError as e:
            self._log.warning(f"Token refresh rejected: {e.message}")
            await self._credentials.delete_all(self.exchange_id, user_id)
            raise ReauthRequired(
                f"Coinbase token refresh rejected: {e.message}",
                user_message=SESSION_EXPIRED_MESSAGE,
                exchange_id=self.exchange_id.value,
            ) from e

        # Coinbase may not rotate the refresh token
        if not tokens.refresh_token:
            tokens.refresh_token = current.refresh_token

        await self._store_tokens(tokens, user_id)
        return tokens

    async def disconnect(self, user_id: Optional[str] = None) -> None:
        await self._credentials.delete_all(self.exchange_id, user_id)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        url = self._config.endpoints.coinbase_token_url
        body = urlencode(form)
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        started = time.monotonic()
        request_id = self._log.log_request(form["grant_type"], "POST", url, headers, body)
        try:
            response = await self._transport.request_json(
                "POST",
                url,
                headers=headers,
                data=body,
                exchange_name="Coinbase",
                exchange_id=self.exchange_id.value,
            )
        except TransportError as e:
            self._log.log_response(
                form["grant_type"], request_id, e.http_status or 0, started, False,
                error_code=e.code, error_message=e.message,
            )
            if e.exchange_id is None:
                raise TransportError(
                    e.message,
                    exchange_name="Coinbase",
                    exchange_id=self.exchange_id.value,
                    http_status=e.http_status,
                    timeout=e.category == ErrorCategory.TIMEOUT,
                ) from e
            raise

        payload = response.payload if isinstance(response.payload, dict) else {}
        failed = not response.ok or not payload.get("access_token")
        self._log.log_response(
            form["grant_type"], request_id, response.status, started, not failed,
            error_message=None if not failed else str(payload.get("error") or "no access_token"),
        )

        if failed:
            raise map_coinbase_error(payload, response.status, self.exchange_id.value)
        return payload

    def _parse_tokens(self, payload: Dict[str, Any]) -> OAuthTokenPair:
        lifetime = payload.get("expires_in") or self._config.coinbase.default_token_lifetime_seconds
        expiry_ms = int(time.time() * 1000) + int(lifetime) * 1000
        return OAuthTokenPair(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expiry_epoch_ms=expiry_ms,
        )

    async def _store_tokens(self, tokens: OAuthTokenPair, user_id: Optional[str]) -> None:
        await self._credentials.write(self.exchange_id, OAUTH_ACCESS_TOKEN, tokens.access_token, user_id)
        if tokens.refresh_token:
            await self._credentials.write(
                self.exchange_id, OAUTH_REFRESH_TOKEN, tokens.refresh_token, user_id
            )
        await self._credentials.write(
            self.exchange_id, OAUTH_TOKEN_EXPIRY, str(tokens.expiry_epoch_ms), user_id
        )
