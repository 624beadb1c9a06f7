from __future__ import annotations

import inspect
from collections.abc import Mapping
from typing import Any, Awaitable, Callable

from doorflow.constants import LOGGER
from webhooks.fetchers import ResourceFetchers
from webhooks.verify import WebhookEvent, verify_webhook

WILDCARD = "*"

WebhookCallback = Callable[[WebhookEvent, Any], "Awaitable[None] | None"]


def _header_value(headers: Mapping | None, name: str) -> str | None:
    if not headers:
        return None

    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == name:
                value = candidate
                break

    # Some frameworks hand over every header as a list of values.
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return value


class WebhookHandler:
    """Verify DoorFlow deliveries and dispatch them to registered callbacks.

    Callbacks are registered per ``"ResourceType.ACTION"`` pattern (for
    example ``"Event.CREATE"``) or for ``"*"``. For every event the specific
    callbacks run first, then the wildcard ones, one at a time in the order
    they were registered. Callback exceptions are not caught.

    When a DoorFlow client is given, the full resource is fetched before
    dispatch and passed as the second callback argument; it is None when the
    type is unknown or the fetch fails.
    """

    def __init__(
        self,
        secret: str,
        doorflow=None,
        *,
        fetchers: ResourceFetchers | None = None,
    ) -> None:
        if not secret:
            raise ValueError("WebhookHandler requires a secret")
        self._secret = secret
        self._doorflow = doorflow
        self._fetchers = fetchers or ResourceFetchers()
        self._handlers: dict[str, list[WebhookCallback]] = {}

    @property
    def fetchers(self) -> ResourceFetchers:
        return self._fetchers

    def on(self, pattern: str, callback: WebhookCallback) -> "WebhookHandler":
        self._handlers.setdefault(pattern, []).append(callback)
        return self

    async def handle(self, body: Any, headers: Mapping | None) -> list[WebhookEvent]:
        signature = _header_value(headers, "signature")
        timestamp = _header_value(headers, "timestamp")

        events = verify_webhook(body, signature, timestamp, self._secret)
        LOGGER.info("Verified DoorFlow webhook with %d event(s)", len(events))

        for event in events:
            resource = await self._fetchers.fetch(self._doorflow, event)
            await self._dispatch(event, resource)
        return events

    async def _dispatch(self, event: WebhookEvent, resource: Any) -> None:
        for callback in list(self._handlers.get(event.pattern, ())):
            await self._invoke(callback, event, resource)

        for callback in list(self._handlers.get(WILDCARD, ())):
            await self._invoke(callback, event, resource)

    @staticmethod
    async def _invoke(callback: WebhookCallback, event: WebhookEvent, resource: Any) -> None:
        result = callback(event, resource)
        if inspect.isawaitable(result):
            await result
