from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import httpx

from .configuration import ApiConfiguration
from .constants import LOGGER

if TYPE_CHECKING:
    from auth.oauth_manager import AuthorizationUrlResult, OAuthManager
    from auth.token_store import StoredTokens


class ApiRequestError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body=None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.request_id = request_id


def _friendly_error_message(status_code: int) -> str:
    if status_code == 401:
        return "Authentication failed. Your DoorFlow token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return "The requested resource was not found on DoorFlow."
    if status_code == 422:
        return "DoorFlow rejected the request data."
    if status_code == 429:
        return "Rate limit exceeded. Please try again later."
    if status_code >= 500:
        return "DoorFlow API is experiencing issues. Please try again later."
    return f"DoorFlow API request failed with status {status_code}."


def _extract_error_message(body) -> str | None:
    if not isinstance(body, dict):
        return None
    if isinstance(body.get("message"), str):
        return body["message"]
    error = body.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


async def raise_for_api_error(response: httpx.Response) -> None:
    if response.status_code < 400:
        return

    await response.aread()
    try:
        body = response.json()
    except ValueError:
        body = response.text

    message = _extract_error_message(body) or _friendly_error_message(response.status_code)
    raise ApiRequestError(
        message,
        status_code=response.status_code,
        body=body,
        request_id=response.headers.get("x-request-id"),
    )


async def log_request(request: httpx.Request) -> None:
    LOGGER.debug("DoorFlow API request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.debug(
        "DoorFlow API response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        request_id = response.headers.get("x-request-id")
        if request_id:
            LOGGER.warning("DoorFlow API x-request-id: %s", request_id)


def build_http_client(
    configuration: ApiConfiguration,
    *,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    async def inject_access_token(request: httpx.Request) -> None:
        header = await configuration.authorization_header()
        if header:
            request.headers["Authorization"] = header

    return httpx.AsyncClient(
        base_url=configuration.base_path,
        headers={"Accept": "application/json"},
        timeout=timeout,
        transport=transport,
        event_hooks={
            "request": [inject_access_token, log_request],
            "response": [log_response, raise_for_api_error],
        },
    )


class Resource:
    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    async def _get(self, path: str) -> dict:
        response = await self._http.get(path)
        return response.json()


class EventsResource(Resource):
    async def retrieve(self, event_id: int | str) -> dict:
        return await self._get(f"/api/3/events/{int(event_id)}")


class CredentialsResource(Resource):
    async def retrieve(self, credential_id: str, *, person_id: int) -> dict:
        return await self._get(f"/api/3/people/{int(person_id)}/credentials/{credential_id}")


class PeopleResource(Resource):
    async def retrieve(self, person_id: int | str) -> dict:
        return await self._get(f"/api/3/people/{int(person_id)}")


RESOURCE_FACTORIES: dict[str, type[Resource]] = {
    "events": EventsResource,
    "credentials": CredentialsResource,
    "people": PeopleResource,
}


class ResourceRegistry:
    """Builds resource wrappers on first use and caches them until ``reset``."""

    def __init__(
        self,
        http_client_factory: Callable[[], httpx.AsyncClient],
        factories: dict[str, type[Resource]] | None = None,
    ) -> None:
        self._http_client_factory = http_client_factory
        self._factories = dict(factories or RESOURCE_FACTORIES)
        self._instances: dict[str, Resource] = {}

    def register(self, name: str, factory: type[Resource]) -> None:
        self._factories[name] = factory
        self._instances.pop(name, None)

    def get(self, name: str) -> Resource:
        instance = self._instances.get(name)
        if instance is not None:
            return instance

        factory = self._factories.get(name)
        if factory is None:
            raise KeyError(f"Unknown DoorFlow resource: {name}")
        instance = factory(self._http_client_factory())
        self._instances[name] = instance
        return instance

    def reset(self) -> None:
        self._instances.clear()


class DoorFlow:
    """DoorFlow API entry point bound to an ``OAuthManager``.

    Every request asks the manager for a token, so expiring tokens are
    refreshed transparently.
    """

    def __init__(
        self,
        auth: "OAuthManager",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.auth = auth
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None
        self.resources = ResourceRegistry(self._http_client)

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = build_http_client(
                self.auth.get_configuration(),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http

    def resource(self, name: str) -> Resource:
        return self.resources.get(name)

    async def is_authenticated(self) -> bool:
        return await self.auth.is_authenticated()

    def get_authorization_url(
        self,
        *,
        state: str | None = None,
        use_pkce: bool = False,
        scopes: list[str] | None = None,
    ) -> "AuthorizationUrlResult":
        return self.auth.get_authorization_url(state=state, use_pkce=use_pkce, scopes=scopes)

    async def handle_callback(
        self,
        code: str,
        state: str,
        expected_state: str | None = None,
        code_verifier: str | None = None,
    ) -> "StoredTokens":
        return await self.auth.handle_callback(code, state, expected_state, code_verifier)

    async def refresh_access_token(self) -> "StoredTokens":
        return await self.auth.refresh_access_token()

    async def disconnect(self) -> None:
        await self.auth.disconnect()
        self.resources.reset()
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
