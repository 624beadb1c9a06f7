from __future__ import annotations

import re
from typing import Any, Awaitable, Callable

from doorflow.constants import LOGGER
from webhooks.verify import WebhookEvent

Fetcher = Callable[[Any, WebhookEvent], Awaitable[Any]]

# /api/3/people/{person_id}/credentials/{id}
PERSON_CREDENTIAL_URL = re.compile(r"/people/(\d+)/credentials/")


async def fetch_event(client, event: WebhookEvent) -> Any:
    return await client.resource("events").retrieve(int(event.resource_id))


async def fetch_person_credential(client, event: WebhookEvent) -> Any:
    match = PERSON_CREDENTIAL_URL.search(event.resource or "")
    if match is None:
        return None
    return await client.resource("credentials").retrieve(
        event.resource_id,
        person_id=int(match.group(1)),
    )


DEFAULT_FETCHERS: dict[str, Fetcher] = {
    "Event": fetch_event,
    "PersonCredential": fetch_person_credential,
}


class ResourceFetchers:
    """Maps a webhook ``resource_type`` to the call that loads the full resource."""

    def __init__(self, fetchers: dict[str, Fetcher] | None = None) -> None:
        self._fetchers: dict[str, Fetcher] = dict(DEFAULT_FETCHERS)
        if fetchers:
            self._fetchers.update(fetchers)

    def register(self, resource_type: str, fetcher: Fetcher) -> "ResourceFetchers":
        self._fetchers[resource_type] = fetcher
        return self

    def get(self, resource_type: str) -> Fetcher | None:
        return self._fetchers.get(resource_type)

    async def fetch(self, client, event: WebhookEvent) -> Any:
        """Return the resource behind ``event`` or None. Never raises."""
        if client is None:
            return None

        fetcher = self.get(event.resource_type)
        if fetcher is None:
            return None

        try:
            return await fetcher(client, event)
        except Exception as error:
            LOGGER.debug(
                "Skipping auto-fetch for %s %s: %s",
                event.resource_type,
                event.resource_id,
                error,
            )
            return None
