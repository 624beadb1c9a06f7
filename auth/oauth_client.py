from __future__ import annotations

import time
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.errors import TokenExchangeError

AUTHORIZE_PATH = "/oauth/authorize"
TOKEN_PATH = "/oauth/token"
REVOKE_PATH = "/oauth/revoke"


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str
    created_at: int
    expires_in: int
    scope: str | None = None

    @property
    def expires_at(self) -> int:
        return self.created_at + self.expires_in

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        created_at = payload.get("created_at")
        expires_in = payload.get("expires_in")
        scope = payload.get("scope")

        if not isinstance(access_token, str) or not access_token:
            raise TokenExchangeError("Token response missing access_token.")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise TokenExchangeError("Token response missing refresh_token.")
        if not isinstance(expires_in, int):
            raise TokenExchangeError("Token response missing expires_in.")
        if created_at is None:
            created_at = int(time.time())
        if not isinstance(created_at, int):
            raise TokenExchangeError("Token response created_at must be an integer.")
        if scope is not None and not isinstance(scope, str):
            raise TokenExchangeError("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            created_at=created_at,
            expires_in=expires_in,
            scope=scope,
        )


def authorization_base_url(base_path: str) -> str:
    """Swap the ``api.`` host for the ``admin.`` host that serves the consent page."""
    parsed = urllib.parse.urlparse(base_path.rstrip("/"))
    host = parsed.netloc
    if host.startswith("api."):
        host = "admin." + host[len("api."):]
    return urllib.parse.urlunparse(parsed._replace(netloc=host))


def build_authorization_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str | None = None,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
    }
    if code_challenge is not None:
        query["code_challenge"] = code_challenge
        query["code_challenge_method"] = "S256"
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


async def _token_request(
    token_url: str,
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(token_url, data=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise TokenExchangeError(
            f"Token request failed with status {error.response.status_code}: {detail}"
        ) from error
    finally:
        if own_client:
            await http_client.aclose()

    return TokenResponse.from_payload(response.json())


async def exchange_code(
    token_url: str,
    client_id: str,
    client_secret: str | None,
    code: str,
    redirect_uri: str,
    code_verifier: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    payload = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "code": code,
        "redirect_uri": redirect_uri,
    }
    if client_secret:
        payload["client_secret"] = client_secret
    if code_verifier:
        payload["code_verifier"] = code_verifier
    return await _token_request(token_url, payload, client=client)


async def refresh_token(
    token_url: str,
    client_id: str,
    client_secret: str | None,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    payload = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "refresh_token": refresh_token,
    }
    if client_secret:
        payload["client_secret"] = client_secret
    return await _token_request(token_url, payload, client=client)


async def revoke_token(
    revoke_url: str,
    client_id: str,
    client_secret: str,
    token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> None:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            revoke_url,
            data={"token": token, "token_type_hint": "refresh_token"},
            auth=httpx.BasicAuth(client_id, client_secret),
        )
        response.raise_for_status()
    finally:
        if own_client:
            await http_client.aclose()
