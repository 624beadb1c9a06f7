from __future__ import annotations

import asyncio
import time
import weakref
from dataclasses import dataclass

import httpx

from auth import oauth_client, pkce
from auth.errors import (
    AuthenticationRequiredError,
    CSRFStateMismatchError,
    RefreshFailedError,
)
from auth.token_store import StoredTokens, TokenStore
from doorflow.configuration import ApiConfiguration
from doorflow.constants import (
    DEFAULT_BASE_PATH,
    DEFAULT_REFRESH_BUFFER_SECONDS,
    DEFAULT_SCOPES,
    LOGGER,
)

# One refresh at a time per token store; DoorFlow rotates the refresh token,
# so a second concurrent refresh would present an already-revoked token.
# Keyed by id() so unhashable stores work; entries go away with their store.
_REFRESH_LOCKS: dict[int, asyncio.Lock] = {}


def _refresh_lock(storage: TokenStore) -> asyncio.Lock | None:
    """Return the lock shared by every manager using ``storage``.

    None when the store cannot be weakly referenced (``__slots__`` without
    ``__weakref__``); the caller then uses a lock of its own.
    """
    key = id(storage)
    lock = _REFRESH_LOCKS.get(key)
    if lock is None:
        try:
            weakref.finalize(storage, _REFRESH_LOCKS.pop, key, None)
        except TypeError:
            return None
        lock = asyncio.Lock()
        _REFRESH_LOCKS[key] = lock
    return lock


@dataclass
class AuthorizationUrlResult:
    url: str
    state: str
    code_verifier: str | None = None


@dataclass
class TokenInfo:
    expires_at: int
    scope: str | None = None


class OAuthManager:
    """DoorFlow OAuth 2.0 authorization code flow with automatic refresh.

    The manager keeps the state and PKCE verifier of the last authorization
    URL it built so a single-server app can call ``handle_callback`` without
    persisting them. That slot holds one flow at a time; servers handling
    several users should store ``state``/``code_verifier`` per user and pass
    them back explicitly.
    """

    def __init__(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        storage: TokenStore,
        client_secret: str | None = None,
        scopes: list[str] | None = None,
        refresh_buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS,
        base_path: str = DEFAULT_BASE_PATH,
        http_client: httpx.AsyncClient | None = None,
        exchange_code_fn=oauth_client.exchange_code,
        refresh_token_fn=oauth_client.refresh_token,
        revoke_token_fn=oauth_client.revoke_token,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.storage = storage
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.base_path = base_path.rstrip("/")

        self.pending_state: str | None = None
        self.pending_code_verifier: str | None = None

        self._http_client = http_client
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn
        self._revoke_token_fn = revoke_token_fn
        self._own_refresh_lock = asyncio.Lock()

    @property
    def token_url(self) -> str:
        return f"{self.base_path}{oauth_client.TOKEN_PATH}"

    @property
    def revoke_url(self) -> str:
        return f"{self.base_path}{oauth_client.REVOKE_PATH}"

    @property
    def authorize_url(self) -> str:
        base = oauth_client.authorization_base_url(self.base_path)
        return f"{base}{oauth_client.AUTHORIZE_PATH}"

    # -- authorization ---------------------------------------------------------

    def get_authorization_url(
        self,
        *,
        state: str | None = None,
        use_pkce: bool = False,
        scopes: list[str] | None = None,
    ) -> AuthorizationUrlResult:
        state = state or pkce.generate_state()

        code_verifier = None
        code_challenge = None
        if use_pkce:
            code_verifier = pkce.generate_code_verifier()
            code_challenge = pkce.generate_code_challenge(code_verifier)

        self.pending_state = state
        self.pending_code_verifier = code_verifier

        url = oauth_client.build_authorization_url(
            self.authorize_url,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=scopes or self.scopes,
            state=state,
            code_challenge=code_challenge,
        )
        return AuthorizationUrlResult(url=url, state=state, code_verifier=code_verifier)

    async def handle_callback(
        self,
        code: str,
        state: str,
        expected_state: str | None = None,
        code_verifier: str | None = None,
    ) -> StoredTokens:
        valid_state = expected_state or self.pending_state
        if valid_state and state != valid_state:
            LOGGER.warning("OAuth callback state mismatch; refusing token exchange")
            raise CSRFStateMismatchError()

        response = await self._exchange_code_fn(
            self.token_url,
            client_id=self.client_id,
            client_secret=self.client_secret,
            code=code,
            redirect_uri=self.redirect_uri,
            code_verifier=code_verifier or self.pending_code_verifier,
            client=self._http_client,
        )

        tokens = StoredTokens(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            expires_at=response.expires_at,
            scope=response.scope,
        )
        await self.storage.save(tokens)

        self.pending_state = None
        self.pending_code_verifier = None

        LOGGER.info("DoorFlow tokens obtained; access token expires at %s", tokens.expires_at)
        return tokens

    # -- token lifecycle -------------------------------------------------------

    def _lock(self) -> asyncio.Lock:
        return _refresh_lock(self.storage) or self._own_refresh_lock

    def _needs_refresh(self, tokens: StoredTokens) -> bool:
        remaining = tokens.expires_at - int(time.time())
        return remaining < self.refresh_buffer_seconds

    async def _load_or_raise(self) -> StoredTokens:
        tokens = await self.storage.load()
        if tokens is None:
            raise AuthenticationRequiredError()
        return tokens

    async def get_access_token(self) -> str:
        tokens = await self._load_or_raise()
        if not self._needs_refresh(tokens):
            return tokens.access_token

        async with self._lock():
            # Another caller may have refreshed while we waited.
            tokens = await self._load_or_raise()
            if not self._needs_refresh(tokens):
                return tokens.access_token
            refreshed = await self._refresh(tokens)
        return refreshed.access_token

    async def refresh_access_token(self) -> StoredTokens:
        async with self._lock():
            tokens = await self._load_or_raise()
            return await self._refresh(tokens)

    async def _refresh(self, tokens: StoredTokens) -> StoredTokens:
        try:
            response = await self._refresh_token_fn(
                self.token_url,
                client_id=self.client_id,
                client_secret=self.client_secret,
                refresh_token=tokens.refresh_token,
                client=self._http_client,
            )
        except Exception as error:
            LOGGER.warning("DoorFlow token refresh failed; clearing stored tokens: %s", error)
            await self.storage.clear()
            raise RefreshFailedError() from error

        new_tokens = StoredTokens(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            expires_at=response.expires_at,
            scope=response.scope or tokens.scope,
        )
        await self.storage.save(new_tokens)

        LOGGER.info("Refreshed DoorFlow access token; expires at %s", new_tokens.expires_at)
        return new_tokens

    async def is_authenticated(self) -> bool:
        return await self.storage.load() is not None

    async def get_token_info(self) -> TokenInfo | None:
        tokens = await self.storage.load()
        if tokens is None:
            return None
        return TokenInfo(expires_at=tokens.expires_at, scope=tokens.scope)

    async def disconnect(self) -> None:
        tokens = await self.storage.load()

        if tokens is not None and self.client_secret:
            try:
                await self._revoke_token_fn(
                    self.revoke_url,
                    client_id=self.client_id,
                    client_secret=self.client_secret,
                    token=tokens.refresh_token,
                    client=self._http_client,
                )
            except Exception as error:
                LOGGER.error("Failed to revoke DoorFlow token: %s", error)
            else:
                LOGGER.info("Revoked DoorFlow refresh token")

        await self.storage.clear()

    def get_configuration(self) -> ApiConfiguration:
        return ApiConfiguration(base_path=self.base_path, access_token=self.get_access_token)
